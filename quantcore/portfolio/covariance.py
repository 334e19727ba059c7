import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.covariance import LedoitWolf

logger = logging.getLogger(__name__)


def build_covariance(
    volatilities: Sequence[float],
    pairwise_correlation: float = 0.3,
    correlation: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Covariance matrix from per-asset volatilities.

    Diagonal is vol_i², off-diagonal ρ·vol_i·vol_j with a constant ρ unless
    a full correlation matrix is supplied.

    Parameters:
    volatilities: per-asset volatilities (N)
    pairwise_correlation: constant ρ used when ``correlation`` is None
    correlation: optional N x N correlation matrix

    Returns:
    np.ndarray: N x N positive semi-definite covariance matrix. Inconsistent
    correlations (e.g. a constant ρ below -1/(N-1)) are repaired by clipping
    negative eigenvalues to zero.
    """
    vol = np.asarray(volatilities, dtype=float)
    n = len(vol)

    if correlation is None:
        corr = np.full((n, n), pairwise_correlation)
        np.fill_diagonal(corr, 1.0)
    else:
        corr = np.asarray(correlation, dtype=float)
        if corr.shape != (n, n):
            raise ValueError(f"Correlation matrix must be {n}x{n}, got {corr.shape}")

    cov = np.outer(vol, vol) * corr
    if n == 0:
        return cov

    smallest = float(np.linalg.eigvalsh((cov + cov.T) / 2)[0])
    if smallest < -1e-12:
        logger.warning(
            "Covariance matrix not positive semi-definite; clipping eigenvalues",
            extra={"extra_fields": {"min_eigenvalue": smallest, "assets": n}},
        )
        cov = _fix_psd(cov, floor=0.0)
    return cov


def _fix_psd(matrix: np.ndarray, floor: float = 1e-8) -> np.ndarray:
    """Clip eigenvalues at ``floor`` so the matrix is positive semi-definite."""
    values, vectors = np.linalg.eigh((matrix + matrix.T) / 2)
    values = np.maximum(values, floor)
    return vectors @ np.diag(values) @ vectors.T


def estimate_correlation(prices: pd.DataFrame, symbols: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Ledoit-Wolf shrunk correlation matrix from a price history.

    Parameters:
    prices: one column per symbol
    symbols: column order of the result (defaults to the price columns)

    Returns:
    pd.DataFrame: correlation matrix indexed by symbol; off-diagonal entries
    are NaN where there is too little history to estimate them
    """
    symbols = list(symbols) if symbols is not None else list(prices.columns)
    available = [s for s in symbols if s in prices.columns]
    returns = prices[available].pct_change(fill_method=None).iloc[1:]
    returns = returns.replace([np.inf, -np.inf], np.nan).dropna(how="any")

    blank = np.full((len(symbols), len(symbols)), np.nan)
    np.fill_diagonal(blank, 1.0)
    result = pd.DataFrame(blank, index=symbols, columns=symbols)
    if len(available) < 2 or len(returns) < 3:
        logger.warning(
            "Not enough history for a correlation estimate",
            extra={"extra_fields": {"assets": len(available), "observations": len(returns)}},
        )
        return result

    cov = _fix_psd(LedoitWolf().fit(returns.values).covariance_)
    std = np.sqrt(np.diag(cov))
    corr = np.clip(cov / np.outer(std, std), -1.0, 1.0)
    np.fill_diagonal(corr, 1.0)

    result.loc[available, available] = corr
    return result
