"""
Allocation models for the decision engine.

Defines:
- TransactionCost: cost breakdown of a rebalance (fractions of portfolio value)
- AllocationResult: target weights with expected return/risk and costs
- ExecutionPlanEntry: how and how fast to trade one symbol

Allocations are the output of the transaction-cost-aware allocator and the
input to the external order-execution layer.

Key constraints:
- Target weights are long-only and sum to 1.0
- Every cost component is non-negative
"""

from enum import Enum
from typing import Annotated, Dict, List
from pydantic import Field, model_validator

from shared.models.base import BaseModel, TimestampMixin, SymbolMixin


class RebalanceRecommendation(str, Enum):
    EXECUTE = "EXECUTE"
    DEFER = "DEFER"
    PARTIAL = "PARTIAL"


class ExecutionStrategy(str, Enum):
    TWAP = "TWAP"
    VWAP = "VWAP"
    IMPLEMENTATION_SHORTFALL = "IMPLEMENTATION_SHORTFALL"
    ARRIVAL_PRICE = "ARRIVAL_PRICE"


class Urgency(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return {"LOW": 1, "MEDIUM": 2, "HIGH": 3}[self.value]


class TransactionCost(BaseModel):
    """Cost breakdown, each component a fraction of portfolio value."""

    spread_cost: Annotated[float, Field(default=0.0, ge=0.0)]
    market_impact: Annotated[float, Field(default=0.0, ge=0.0)]
    commission_cost: Annotated[float, Field(default=0.0, ge=0.0)]
    slippage_cost: Annotated[float, Field(default=0.0, ge=0.0)]
    financing_cost: Annotated[float, Field(default=0.0, ge=0.0)]

    @property
    def total_cost(self) -> float:
        return (
            self.spread_cost
            + self.market_impact
            + self.commission_cost
            + self.slippage_cost
            + self.financing_cost
        )


class ExecutionPlanEntry(BaseModel, SymbolMixin):
    """
    Execution instruction for a single symbol.

    ``trade_volume`` is the absolute weight change; ``time_horizon`` is in minutes.
    """

    target_weight: Annotated[float, Field(ge=0.0, le=1.0)]
    current_weight: Annotated[float, Field(description="Weight held before the rebalance")]
    trade_volume: Annotated[float, Field(ge=0.0, description="|target - current|")]
    execution_strategy: ExecutionStrategy
    time_horizon: Annotated[float, Field(ge=0.0, description="Execution horizon in minutes")]
    urgency: Urgency
    expected_cost: Annotated[float, Field(ge=0.0)]

    @property
    def is_buy(self) -> bool:
        return self.target_weight > self.current_weight


class AllocationResult(BaseModel, TimestampMixin):
    """
    Result of one allocator run.

    Example:
        AllocationResult(
            target_weights={'AAPL': 0.4, 'MSFT': 0.6},
            expected_return=0.0012,
            expected_risk=0.18,
            sharpe_ratio=0.0067,
            costs=TransactionCost(spread_cost=1e-5),
            turnover=0.2,
            recommendation=RebalanceRecommendation.EXECUTE,
        )
    """

    target_weights: Annotated[Dict[str, float], Field(min_length=1)]
    expected_return: float
    expected_risk: Annotated[float, Field(ge=0.0)]
    sharpe_ratio: float
    costs: TransactionCost
    turnover: Annotated[float, Field(ge=0.0)]
    recommendation: RebalanceRecommendation
    iterations: Annotated[int, Field(default=0, ge=0)]
    converged: bool = True
    low_confidence: bool = False
    excluded_symbols: List[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_weights(self) -> 'AllocationResult':
        """Weights must be long-only and fully invested."""
        total = sum(self.target_weights.values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Target weights must sum to 1.0, got {total:.8f}")
        negative = [s for s, w in self.target_weights.items() if w < -1e-12]
        if negative:
            raise ValueError(f"Negative target weights for {negative}")
        return self

    @property
    def cost_benefit_ratio(self) -> float:
        if self.expected_return == 0:
            return float('inf')
        return self.costs.total_cost / abs(self.expected_return)
