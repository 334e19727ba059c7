"""
Configuration management with YAML loading.

The configuration is a plain dict with upper-case sections. Components
receive the whole dict and read their own section with ``.get(..., default)``
so a partial file still yields a working engine.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from quantcore.exceptions import ConfigError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "SEED": 42,
    "FACTOR_MODEL": {
        "NUM_FACTORS": 5,
        "GAMMA": 0.01,               # ridge term on the factor Gram matrix
        "LAMBDA": 0.001,             # ridge term on loadings and beta
        "BLEND_RATIO": 0.6,          # weight of empirical loadings vs characteristic-implied
        "MAX_ITERATIONS": 1000,
        "CONVERGENCE_THRESHOLD": 1e-6,
        "INIT_SCALE": 0.1,
    },
    "RISK": {
        "MAX_POSITION_SIZE": 0.10,
        "MAX_DRAWDOWN": 0.15,
        "MAX_DAILY_LOSS": 0.05,
        "MAX_VAR": 0.03,
        "MAX_CONCENTRATION": 0.5,
        "CONCENTRATION_WARNING": 0.4,
        "CORRELATION_THRESHOLD": 0.8,
        "VOLATILITY_THRESHOLD": 0.5,
        "MAX_LIQUIDITY_RISK": 0.5,
        "WARNING_RATIO": 0.8,
        "ENABLE_CIRCUIT_BREAKERS": True,
        "HISTORICAL_VAR_MIN_OBS": 50,
        "HISTORY_WINDOW": 252,
        "RISK_FREE_RATE": 0.02,
        "DEFAULT_LIQUIDITY_SCORE": 0.5,
        "DEFAULT_CORRELATION": 0.6,
        "COUNTERPARTY_RISK": 0.05,
        "VAR_REDUCTION_FRACTION": 0.25,
        "DRAWDOWN_LIQUIDATION_FRACTION": 0.5,
        "DAILY_LOSS_REDUCTION_FRACTION": 0.30,
    },
    "ALLOCATION": {
        "MAX_POSITION_SIZE": 0.10,
        "MIN_LIQUIDITY": 1_000_000.0,   # minimum average daily volume (dollars)
        "ALLOWED_SECTORS": [],          # empty = all sectors allowed
        "FORBIDDEN_ASSETS": [],
        "RISK_AVERSION": 3.0,
        "LEARNING_RATE": 0.01,
        "MAX_ITERATIONS": 1000,
        "CONVERGENCE_THRESHOLD": 1e-6,
        "PAIRWISE_CORRELATION": 0.3,
        "TURNOVER_PENALTY": 0.01,
        "MATERIALITY_THRESHOLD": 0.001,
        "PORTFOLIO_VALUE": 1_000_000.0,
        "EXECUTE_THRESHOLD": 0.2,
        "DEFER_THRESHOLD": 0.8,
        "COSTS": {
            "BASE_IMPACT": 0.001,
            "BASE_SLIPPAGE": 0.0005,
            "FINANCING_RATE": 0.03,
        },
        "EXECUTION": {
            "LARGE_TRADE_PARTICIPATION": 0.10,
            "HIGH_LIQUIDITY_SCORE": 0.8,
            "MEDIUM_TRADE_SIZE": 0.05,
            "BASE_HORIZON_MINUTES": 60.0,
            "MAX_HORIZON_MINUTES": 480.0,
            "HIGH_URGENCY_DELTA": 0.05,
            "HIGH_URGENCY_VOLATILITY": 0.3,
            "MEDIUM_URGENCY_DELTA": 0.02,
            "MEDIUM_URGENCY_LIQUIDITY": 0.5,
        },
    },
    "STRESS_SCENARIOS": [
        {
            "name": "2008 Financial Crisis",
            "description": "Market crash scenario similar to 2008",
            "shocks": {},
            "market_shock": -0.35,
            "volatility_multiplier": 2.5,
            "correlation_shift": 0.3,
        },
        {
            "name": "COVID-19 Market Crash",
            "description": "Rapid market decline scenario",
            "shocks": {},
            "market_shock": -0.25,
            "volatility_multiplier": 3.0,
            "correlation_shift": 0.25,
        },
        {
            "name": "Interest Rate Shock",
            "description": "Sudden interest rate increase",
            "shocks": {},
            "market_shock": -0.15,
            "volatility_multiplier": 1.5,
            "correlation_shift": 0.1,
        },
        {
            "name": "Sector Rotation",
            "description": "Major sector rotation event",
            "shocks": {},
            "market_shock": -0.05,
            "volatility_multiplier": 1.2,
            "correlation_shift": -0.1,
        },
        {
            "name": "Liquidity Crisis",
            "description": "Market liquidity dries up",
            "shocks": {},
            "market_shock": -0.20,
            "volatility_multiplier": 2.0,
            "correlation_shift": 0.4,
        },
    ],
    "LOGGING": {
        "SERVICE_NAME": "quantcore",
        "ENVIRONMENT": "development",
        "LEVEL": "INFO",
        "JSON_OUTPUT": True,
        "PROPAGATE": False,          # also hand records to the root logger
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base`` (nested dicts merged, everything else replaced)."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def default_config() -> Dict[str, Any]:
    """Return a fresh copy of the default configuration."""
    return copy.deepcopy(DEFAULT_CONFIG)


def load_config(filepath: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file and merge it over the defaults.

    Args:
        filepath: Path to a YAML file. ``None`` or a missing file yields the defaults.

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file exists but is not valid YAML or not a mapping
    """
    if filepath is None:
        return default_config()

    path = Path(filepath)
    if not path.exists():
        logger.warning(f"Config file {path} not found, using defaults")
        return default_config()

    try:
        with open(path, "r", encoding="utf-8") as file:
            loaded = yaml.safe_load(file) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config {path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain a mapping, got {type(loaded).__name__}")

    logger.info(f"Config file {path} loaded")
    return _deep_merge(DEFAULT_CONFIG, loaded)


def save_config(config: Dict[str, Any], filepath: Union[str, Path]) -> None:
    """Write a configuration dictionary to YAML."""
    with open(filepath, "w", encoding="utf-8") as file:
        yaml.dump(config, file, allow_unicode=True, default_flow_style=False, sort_keys=False)
