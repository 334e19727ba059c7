"""
Risk models for the decision engine.

Defines:
- Severity / AlertType / MetricState / VaRMethod / ActionKind enums
- RiskSnapshot: risk metrics computed on one monitoring cycle
- Alert: limit warning/breach surfaced to the trading engine and UI
- StressScenario / StressTestResult: hypothetical shocks and their outcome
- CircuitBreakerAction: emergency action signalled on a new breaker trip
- RiskBudget: limits handed from the risk monitor to the allocator

Snapshots are recomputed on every cycle; alerts live until acknowledged.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Optional, Tuple
from pydantic import Field

from shared.models.base import BaseModel, TimestampMixin


class Severity(str, Enum):
    """Alert / breach severity levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3, Severity.CRITICAL: 4}


class AlertType(str, Enum):
    """Alert categories."""
    LIMIT_BREACH = "LIMIT_BREACH"
    ANOMALY_DETECTED = "ANOMALY_DETECTED"
    CORRELATION_SPIKE = "CORRELATION_SPIKE"
    LIQUIDITY_STRESS = "LIQUIDITY_STRESS"
    DRAWDOWN_WARNING = "DRAWDOWN_WARNING"


class MetricState(str, Enum):
    """Per-metric state of the risk state machine."""
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    BREACHED = "BREACHED"
    CIRCUIT_BROKEN = "CIRCUIT_BROKEN"


class VaRMethod(str, Enum):
    HISTORICAL = "HISTORICAL"
    PARAMETRIC = "PARAMETRIC"


class ActionKind(str, Enum):
    """Emergency risk-reduction signals emitted by circuit breakers."""
    REDUCE_HIGH_RISK = "REDUCE_HIGH_RISK"
    LIQUIDATE_WORST = "LIQUIDATE_WORST"
    HALT_AND_REDUCE = "HALT_AND_REDUCE"


class RiskSnapshot(BaseModel, TimestampMixin):
    """
    Risk metrics for one monitoring cycle.

    VaR/CVaR/drawdown/daily loss are positive loss fractions of portfolio value.
    """

    var_95: Annotated[float, Field(ge=0.0, description="1-day VaR at 95% (loss fraction)")]
    var_99: Annotated[float, Field(ge=0.0, description="1-day VaR at 99% (loss fraction)")]
    var_method: Annotated[VaRMethod, Field(description="Method used for VaR")]
    conditional_var: Annotated[float, Field(ge=0.0, description="Expected shortfall beyond VaR95")]
    sharpe_ratio: Annotated[float, Field(description="Annualized Sharpe ratio")]
    max_drawdown: Annotated[float, Field(ge=0.0, le=1.0, description="Largest peak-to-trough decline")]
    volatility: Annotated[float, Field(ge=0.0, description="Annualized volatility")]
    beta: Annotated[float, Field(description="Portfolio beta")]
    correlation_risk: Annotated[float, Field(ge=-1.0, le=1.0, description="Average pairwise correlation")]
    concentration_risk: Annotated[float, Field(ge=0.0, le=1.0, description="Herfindahl-Hirschman index")]
    liquidity_risk: Annotated[float, Field(ge=0.0, le=1.0, description="Weighted illiquidity score")]
    counterparty_risk: Annotated[float, Field(ge=0.0, le=1.0, description="Counterparty risk score")]
    daily_loss: Annotated[float, Field(description="Today's loss as a fraction of portfolio value")]
    portfolio_value: Annotated[float, Field(ge=0.0, description="Total market value")]
    num_observations: Annotated[int, Field(ge=0, description="Portfolio return observations used")]


class Alert(BaseModel, TimestampMixin):
    """
    Risk alert.

    Kept in the monitor's active set until acknowledged.

    Example:
        Alert(
            id='5a1c...',
            type=AlertType.LIMIT_BREACH,
            severity=Severity.HIGH,
            metric='Value at Risk',
            value=0.041,
            threshold=0.03,
            message='Value at Risk breach: 4.10% exceeds limit of 3.00%',
            recommended_action='Reduce high-risk positions immediately',
            auto_triggered=False,
        )
    """

    id: Annotated[str, Field(min_length=1, max_length=100)]
    type: Annotated[AlertType, Field(description="Alert category")]
    severity: Annotated[Severity, Field(description="LOW, MEDIUM, HIGH or CRITICAL")]
    metric: Annotated[str, Field(min_length=1, max_length=100)]
    value: Annotated[float, Field(description="Observed value")]
    threshold: Annotated[float, Field(description="Threshold that was crossed")]
    message: Annotated[str, Field(min_length=1, max_length=500)]
    recommended_action: Annotated[str, Field(min_length=1, max_length=200)]
    auto_triggered: Annotated[bool, Field(default=False, description="Raised by a circuit breaker")]


class StressScenario(BaseModel):
    """Static stress scenario definition."""

    name: Annotated[str, Field(min_length=1, max_length=100)]
    description: Annotated[str, Field(default="", max_length=500)]
    shocks: Annotated[
        Dict[str, float],
        Field(default_factory=dict, description="Per-symbol price shocks (override market_shock)")
    ]
    market_shock: Annotated[float, Field(gt=-1.0, description="Uniform price shock, e.g. -0.35")]
    volatility_multiplier: Annotated[float, Field(default=1.0, gt=0.0)]
    correlation_shift: Annotated[float, Field(default=0.0, ge=-1.0, le=1.0)]

    def shock_for(self, symbol: str) -> float:
        return self.shocks.get(symbol, self.market_shock)


class StressTestResult(BaseModel):
    """Outcome of applying one scenario to a copy of the portfolio."""

    scenario: str
    portfolio_value: float
    portfolio_change: float
    portfolio_change_percent: float
    worst_asset: Optional[str] = None
    worst_asset_change: float = 0.0
    risk_metrics_change: Dict[str, float] = Field(default_factory=dict)
    breached_limits: List[str] = Field(default_factory=list)


class CircuitBreakerAction(BaseModel, TimestampMixin):
    """
    Emergency action recommended when a circuit breaker trips.

    A signal for the execution layer only; no orders are placed by the monitor.
    """

    metric: Annotated[str, Field(min_length=1)]
    kind: ActionKind
    fraction: Annotated[float, Field(ge=0.0, le=1.0, description="Fraction of exposure to cut")]
    symbols: Annotated[Tuple[str, ...], Field(default=(), description="Positions targeted")]
    halt_new_trades: bool = False
    message: Annotated[str, Field(min_length=1, max_length=300)]


class RiskBudget(BaseModel):
    """Limits the allocator must respect given the monitor's current state."""

    trading_halted: bool = False
    max_position_size: Annotated[float, Field(gt=0.0, le=1.0)]
    risk_aversion_multiplier: Annotated[float, Field(default=1.0, gt=0.0)]
    tripped_breakers: Tuple[str, ...] = ()
    as_of: Optional[datetime] = None
