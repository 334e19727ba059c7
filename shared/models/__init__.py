"""
Shared data models for the decision engine.

These models are the single source of truth for the contracts between:
- Factor model: observations in, predicted returns out
- Risk monitor: positions and market stats in, snapshots/alerts/budgets out
- Allocator: predictions and budgets in, allocations and execution plans out
"""

from shared.models.base import BaseModel, TimestampMixin, SymbolMixin, utc_now
from shared.models.market import Observation, MarketStats
from shared.models.portfolio import Position
from shared.models.allocation import (
    AllocationResult,
    ExecutionPlanEntry,
    ExecutionStrategy,
    RebalanceRecommendation,
    TransactionCost,
    Urgency,
)
from shared.models.risk import (
    ActionKind,
    Alert,
    AlertType,
    CircuitBreakerAction,
    MetricState,
    RiskBudget,
    RiskSnapshot,
    Severity,
    StressScenario,
    StressTestResult,
    VaRMethod,
)

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "SymbolMixin",
    "utc_now",
    # Market
    "Observation",
    "MarketStats",
    # Portfolio
    "Position",
    # Allocation
    "AllocationResult",
    "ExecutionPlanEntry",
    "ExecutionStrategy",
    "RebalanceRecommendation",
    "TransactionCost",
    "Urgency",
    # Risk
    "ActionKind",
    "Alert",
    "AlertType",
    "CircuitBreakerAction",
    "MetricState",
    "RiskBudget",
    "RiskSnapshot",
    "Severity",
    "StressScenario",
    "StressTestResult",
    "VaRMethod",
]
