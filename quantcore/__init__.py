"""
quantcore: factor-model return prediction, real-time risk monitoring and
transaction-cost-aware portfolio allocation.
"""

from quantcore.config import DEFAULT_CONFIG, default_config, load_config, save_config
from quantcore.engine import CycleResult, DecisionEngine
from quantcore.exceptions import (
    ConfigError,
    DataInsufficient,
    ExternalDataUnavailable,
    LimitBreach,
    LimitWarning,
    ModelNotTrained,
    NumericalInstability,
    OptimizationNonConvergent,
    QuantCoreError,
)

__version__ = "0.1.0"

__all__ = [
    "DecisionEngine",
    "CycleResult",
    "DEFAULT_CONFIG",
    "default_config",
    "load_config",
    "save_config",
    "QuantCoreError",
    "ConfigError",
    "DataInsufficient",
    "ModelNotTrained",
    "NumericalInstability",
    "ExternalDataUnavailable",
    "LimitWarning",
    "LimitBreach",
    "OptimizationNonConvergent",
]
