"""
Risk metric calculations.

Pure functions over numpy arrays / pandas objects used by the real-time
risk monitor and by the stress tester. Loss-type metrics (VaR, CVaR,
drawdown) are reported as non-negative fractions of portfolio value.
"""

from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import norm

from shared.models import Position, VaRMethod

Z_95 = 1.645
Z_99 = 2.326
TRADING_DAYS = 252

PriceHistory = Union[pd.DataFrame, Mapping[str, Sequence[float]]]


def position_weights(positions: Sequence[Position]) -> Dict[str, float]:
    """
    Portfolio weights from absolute market values.

    Falls back to the reported position weights when market values sum to
    zero, and to equal weights when those are zero as well.
    """
    if not positions:
        return {}
    values = {p.symbol: abs(p.market_value) for p in positions}
    total = sum(values.values())
    if total <= 0:
        values = {p.symbol: abs(p.weight) for p in positions}
        total = sum(values.values())
    if total <= 0:
        return {p.symbol: 1.0 / len(positions) for p in positions}
    return {symbol: value / total for symbol, value in values.items()}


def asset_returns(price_history: Optional[PriceHistory], symbols: Sequence[str], window: int = TRADING_DAYS) -> pd.DataFrame:
    """
    Simple returns for ``symbols`` over the last ``window`` prices.

    Series of different lengths are right-aligned (most recent prices line
    up); symbols without history are dropped.
    """
    if price_history is None:
        return pd.DataFrame()

    if isinstance(price_history, pd.DataFrame):
        prices = price_history[[s for s in symbols if s in price_history.columns]]
    else:
        series = {}
        for symbol in symbols:
            history = price_history.get(symbol)
            if history is None or len(history) == 0:
                continue
            values = np.asarray(history, dtype=float)
            series[symbol] = pd.Series(values, index=range(-len(values), 0))
        prices = pd.DataFrame(series)

    if prices.empty:
        return pd.DataFrame()

    prices = prices.tail(window).dropna(how="any")
    returns = prices.pct_change(fill_method=None).iloc[1:]
    returns = returns.replace([np.inf, -np.inf], np.nan).dropna(how="any")
    return returns


def portfolio_returns(returns: pd.DataFrame, weights: Mapping[str, float]) -> np.ndarray:
    """Weighted portfolio returns, renormalized over the assets that have history."""
    if returns.empty:
        return np.zeros(0)
    held = [s for s in returns.columns if weights.get(s, 0.0) != 0.0]
    if not held:
        return np.zeros(0)
    w = np.array([weights[s] for s in held], dtype=float)
    total = np.abs(w).sum()
    if total <= 0:
        return np.zeros(0)
    return returns[held].values @ (w / total)


def historical_quantile(returns: np.ndarray, confidence: float) -> float:
    """Empirical lower-tail quantile: sorted returns at index floor(n * (1 - confidence))."""
    ordered = np.sort(np.asarray(returns, dtype=float))
    index = int(np.floor(len(ordered) * (1.0 - confidence)))
    return float(ordered[min(index, len(ordered) - 1)])


def value_at_risk(returns: np.ndarray, min_observations: int = 50) -> Tuple[float, float, VaRMethod]:
    """
    1-day VaR at 95% and 99%.

    Historical method with at least ``min_observations`` returns, otherwise a
    Gaussian estimate ``mean - z * sigma``.

    Returns:
        (var_95, var_99, method) with VaR as non-negative loss fractions
    """
    returns = np.asarray(returns, dtype=float)
    if len(returns) == 0:
        return 0.0, 0.0, VaRMethod.PARAMETRIC

    if len(returns) >= min_observations:
        var_95 = -historical_quantile(returns, 0.95)
        var_99 = -historical_quantile(returns, 0.99)
        method = VaRMethod.HISTORICAL
    else:
        mean = returns.mean()
        sigma = returns.std()
        var_95 = -(mean - Z_95 * sigma)
        var_99 = -(mean - Z_99 * sigma)
        method = VaRMethod.PARAMETRIC

    return max(float(var_95), 0.0), max(float(var_99), 0.0), method


def conditional_var(returns: np.ndarray, confidence: float = 0.95, min_observations: int = 50) -> float:
    """
    Expected shortfall: average return at or below the VaR quantile.

    Gaussian expected shortfall when history is shorter than ``min_observations``.
    """
    returns = np.asarray(returns, dtype=float)
    if len(returns) == 0:
        return 0.0

    if len(returns) >= min_observations:
        cutoff = historical_quantile(returns, confidence)
        tail = returns[returns <= cutoff]
        cvar = -float(tail.mean())
    else:
        alpha = 1.0 - confidence
        z = norm.ppf(confidence)
        cvar = -(returns.mean() - returns.std() * norm.pdf(z) / alpha)

    return max(float(cvar), 0.0)


def sharpe_ratio(returns: np.ndarray, risk_free_rate: float = 0.02, periods: int = TRADING_DAYS) -> float:
    """Annualized Sharpe ratio (0 for flat or empty series)."""
    returns = np.asarray(returns, dtype=float)
    if len(returns) == 0:
        return 0.0
    std = returns.std()
    if std <= 1e-12:
        return 0.0
    return float((returns.mean() - risk_free_rate / periods) / std * np.sqrt(periods))


def max_drawdown(returns: np.ndarray) -> float:
    """Largest peak-to-trough decline of the cumulative-return path (starting at 1)."""
    returns = np.asarray(returns, dtype=float)
    if len(returns) == 0:
        return 0.0
    equity = np.concatenate([[1.0], np.cumprod(1.0 + returns)])
    peak = np.maximum.accumulate(equity)
    drawdown = (peak - equity) / np.where(peak > 0, peak, np.nan)
    return float(np.clip(np.nanmax(drawdown), 0.0, 1.0))


def annualized_volatility(returns: np.ndarray, periods: int = TRADING_DAYS) -> float:
    returns = np.asarray(returns, dtype=float)
    if len(returns) < 2:
        return 0.0
    return float(returns.std(ddof=1) * np.sqrt(periods))


def concentration_risk(weights: Mapping[str, float]) -> float:
    """Herfindahl-Hirschman index of normalized absolute weights, in [1/N, 1]."""
    w = np.abs(np.array(list(weights.values()), dtype=float))
    total = w.sum()
    if total <= 0:
        return 0.0
    w = w / total
    return float(np.clip(np.sum(w ** 2), 0.0, 1.0))


def liquidity_risk(
    weights: Mapping[str, float],
    liquidity_scores: Mapping[str, Optional[float]],
    default_score: float = 0.5,
) -> float:
    """Weight-averaged illiquidity (1 - liquidity score); missing scores use ``default_score``."""
    total = sum(abs(w) for w in weights.values())
    if total <= 0:
        return 0.0
    risk = 0.0
    for symbol, weight in weights.items():
        score = liquidity_scores.get(symbol)
        if score is None:
            score = default_score
        risk += abs(weight) * (1.0 - score)
    return float(np.clip(risk / total, 0.0, 1.0))


def average_correlation(returns: pd.DataFrame, default: float) -> float:
    """Mean pairwise correlation of asset returns; ``default`` if it cannot be estimated."""
    if returns.shape[1] < 2 or returns.shape[0] < 3:
        return default
    corr = returns.corr().values
    off_diagonal = corr[~np.eye(corr.shape[0], dtype=bool)]
    off_diagonal = off_diagonal[np.isfinite(off_diagonal)]
    if off_diagonal.size == 0:
        return default
    return float(np.clip(off_diagonal.mean(), -1.0, 1.0))


def portfolio_beta(weights: Mapping[str, float], betas: Mapping[str, Optional[float]], default: float = 1.0) -> float:
    beta = 0.0
    for symbol, weight in weights.items():
        asset_beta = betas.get(symbol)
        beta += weight * (default if asset_beta is None else asset_beta)
    return float(beta)


def daily_loss(positions: Sequence[Position]) -> float:
    """Today's loss as a fraction of portfolio value (negative when the day is profitable)."""
    total_value = sum(p.market_value for p in positions)
    if total_value <= 0:
        return 0.0
    return float(-sum(p.daily_pnl for p in positions) / total_value)


def is_return_anomaly(returns: np.ndarray, z_threshold: float = 4.0, min_observations: int = 20) -> bool:
    """True if the latest return lies more than ``z_threshold`` sigmas from the prior mean."""
    returns = np.asarray(returns, dtype=float)
    if len(returns) < min_observations:
        return False
    history, latest = returns[:-1], returns[-1]
    sigma = history.std()
    if sigma <= 1e-12:
        return False
    return bool(abs(latest - history.mean()) / sigma > z_threshold)
