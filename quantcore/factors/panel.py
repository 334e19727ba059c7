"""Assemble Observation records into the dense panel the factor model trains on."""

from typing import Iterable, List, Tuple

import numpy as np

from quantcore.exceptions import DataInsufficient
from shared.models import Observation


def build_panel(observations: Iterable[Observation]) -> Tuple[np.ndarray, np.ndarray, List, List[str]]:
    """
    Convert observations into ``(returns, characteristics, timestamps, symbols)``.

    Periods are ordered by timestamp and assets by first appearance. Shapes are
    T x N for returns and T x N x L for characteristics.

    Raises:
        DataInsufficient: If the panel is empty or ragged (a missing
            (period, asset) cell or inconsistent characteristic lengths)
    """
    observations = list(observations)
    if not observations:
        raise DataInsufficient("No observations to build a panel from")

    timestamps = sorted({obs.timestamp for obs in observations})
    symbols: List[str] = []
    for obs in observations:
        if obs.symbol not in symbols:
            symbols.append(obs.symbol)

    n_chars = {len(obs.characteristics) for obs in observations}
    if len(n_chars) != 1:
        raise DataInsufficient(f"Inconsistent characteristic lengths: {sorted(n_chars)}")
    L = n_chars.pop()

    t_index = {ts: t for t, ts in enumerate(timestamps)}
    a_index = {sym: i for i, sym in enumerate(symbols)}
    T, N = len(timestamps), len(symbols)

    returns = np.full((T, N), np.nan)
    characteristics = np.full((T, N, L), np.nan)
    for obs in observations:
        t, i = t_index[obs.timestamp], a_index[obs.symbol]
        if not np.isnan(returns[t, i]):
            raise DataInsufficient(f"Duplicate observation for {obs.symbol} at {obs.timestamp}")
        returns[t, i] = obs.asset_return
        characteristics[t, i] = obs.characteristics

    missing = int(np.isnan(returns).sum())
    if missing:
        raise DataInsufficient(f"Ragged panel: {missing} of {T * N} (period, asset) cells missing")

    return returns, characteristics, timestamps, symbols
