"""
Error taxonomy for the decision engine.

Fail-fast errors (raised to the caller):
- DataInsufficient: not enough history/periods, or inconsistent panel shapes
- ModelNotTrained: prediction requested before training
- ConfigError: unreadable configuration

Recovered conditions (logged or returned, never raised inside a component):
- NumericalInstability: singular or degenerate linear system
- ExternalDataUnavailable: missing market data for an asset
- LimitWarning / LimitBreach: soft and hard risk limit violations
- OptimizationNonConvergent: iteration cap reached (warning category)
"""

from typing import Optional


class QuantCoreError(Exception):
    """Base class for all decision engine errors."""


class ConfigError(QuantCoreError):
    """Configuration file could not be parsed."""


class DataInsufficient(QuantCoreError):
    """Not enough data to run a numerical routine."""


class ModelNotTrained(QuantCoreError):
    """The factor model has no trained state yet."""


class NumericalInstability(QuantCoreError):
    """
    Singular matrix or degenerate regression.

    Returned inside a LinAlgResult rather than raised, so the caller decides
    on the fallback (usually the previous iterate).
    """

    def __init__(self, message: str, operation: str = "", condition_number: Optional[float] = None):
        super().__init__(message)
        self.operation = operation
        self.condition_number = condition_number


class ExternalDataUnavailable(QuantCoreError):
    """Market data for an asset is missing; a documented default is used."""

    def __init__(self, symbol: str, field: str = "market_stats"):
        super().__init__(f"{field} unavailable for {symbol}")
        self.symbol = symbol
        self.field = field


class RiskLimitEvent(QuantCoreError):
    """A tracked risk metric crossed one of its thresholds."""

    def __init__(self, metric: str, value: float, threshold: float, severity: str):
        super().__init__(
            f"{metric}: {value:.4f} exceeds {threshold:.4f} ({severity})"
        )
        self.metric = metric
        self.value = value
        self.threshold = threshold
        self.severity = severity


class LimitWarning(RiskLimitEvent):
    """Soft breach (above the warning threshold, below the hard limit)."""


class LimitBreach(RiskLimitEvent):
    """Hard breach of a risk limit."""


class OptimizationNonConvergent(RuntimeWarning):
    """Allocator hit its iteration cap; best iterate returned with low confidence."""
