"""Market data source adapters."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from quantcore.exceptions import ExternalDataUnavailable
from shared.models import MarketStats

logger = logging.getLogger(__name__)

STATS_COLUMNS = (
    "price",
    "volume",
    "spread",
    "volatility",
    "market_cap",
    "average_daily_volume",
    "liquidity_score",
)


class MarketDataSource(ABC):
    """Supplies market statistics, prices and characteristics to the engine."""

    @abstractmethod
    def get_market_stats(self, symbols: Sequence[str]) -> List[MarketStats]:
        """Latest statistics; symbols without data are omitted."""

    @abstractmethod
    def get_price_history(self, symbols: Sequence[str], lookback: int = 252) -> pd.DataFrame:
        """Last ``lookback`` prices, one column per symbol."""

    @abstractmethod
    def get_characteristics(self, symbols: Sequence[str]) -> np.ndarray:
        """Latest characteristics, N x L in ``symbols`` order."""


class CSVMarketDataSource(MarketDataSource):
    """
    CSV data source adapter.

    Files:
    - prices: ``date`` column plus one price column per symbol
    - stats: one row per symbol with the MarketStats fields
    - characteristics: ``symbol`` column plus one column per characteristic;
      if a ``date`` column is present the latest row per symbol is used
    """

    def __init__(self, prices_path: str, stats_path: str, characteristics_path: Optional[str] = None):
        self.prices_path = Path(prices_path)
        self.stats_path = Path(stats_path)
        self.characteristics_path = Path(characteristics_path) if characteristics_path else None
        self._prices: Optional[pd.DataFrame] = None
        self._stats: Optional[pd.DataFrame] = None
        self._characteristics: Optional[pd.DataFrame] = None

    def _load_prices(self) -> pd.DataFrame:
        if self._prices is None:
            prices = pd.read_csv(self.prices_path, parse_dates=["date"])
            self._prices = prices.sort_values("date").set_index("date")
        return self._prices

    def _load_stats(self) -> pd.DataFrame:
        if self._stats is None:
            stats = pd.read_csv(self.stats_path)
            stats["symbol"] = stats["symbol"].str.upper()
            self._stats = stats.set_index("symbol")
        return self._stats

    def _load_characteristics(self) -> pd.DataFrame:
        if self._characteristics is None:
            if self.characteristics_path is None:
                raise ExternalDataUnavailable("*", "characteristics")
            chars = pd.read_csv(self.characteristics_path)
            chars["symbol"] = chars["symbol"].str.upper()
            if "date" in chars.columns:
                chars = chars.sort_values("date").groupby("symbol").tail(1).drop(columns="date")
            self._characteristics = chars.set_index("symbol")
        return self._characteristics

    def get_market_stats(self, symbols: Sequence[str]) -> List[MarketStats]:
        table = self._load_stats()
        result = []
        for symbol in symbols:
            if symbol not in table.index:
                logger.warning(str(ExternalDataUnavailable(symbol)))
                continue
            row = table.loc[symbol]
            fields = {col: float(row[col]) for col in STATS_COLUMNS if col in row and pd.notna(row[col])}
            if "sector" in row and pd.notna(row["sector"]):
                fields["sector"] = str(row["sector"])
            if "beta" in row and pd.notna(row["beta"]):
                fields["beta"] = float(row["beta"])
            result.append(MarketStats(symbol=symbol, **fields))
        return result

    def get_price_history(self, symbols: Sequence[str], lookback: int = 252) -> pd.DataFrame:
        prices = self._load_prices()
        available = [s for s in symbols if s in prices.columns]
        for symbol in set(symbols) - set(available):
            logger.warning(str(ExternalDataUnavailable(symbol, "price_history")))
        return prices[available].tail(lookback)

    def get_characteristics(self, symbols: Sequence[str]) -> np.ndarray:
        table = self._load_characteristics()
        missing = [s for s in symbols if s not in table.index]
        if missing:
            raise ExternalDataUnavailable(missing[0], "characteristics")
        return table.loc[list(symbols)].values.astype(float)


class SimulatedMarketDataSource(MarketDataSource):
    """
    Synthetic market data for demos and tests.

    Generates:
    - Geometric random-walk prices with slight drift
    - Plausible market statistics
    - Standard-normal characteristics

    Deterministic for a given seed.
    """

    def __init__(self, seed: int = 42, num_characteristics: int = 4, initial_price: float = 100.0):
        self.seed = seed
        self.num_characteristics = num_characteristics
        self.initial_price = initial_price

    def _rng(self, symbol: str, salt: int) -> np.random.Generator:
        # Per-symbol streams so results do not depend on request order
        return np.random.default_rng([self.seed, salt, *symbol.encode()])

    def get_market_stats(self, symbols: Sequence[str]) -> List[MarketStats]:
        result = []
        for symbol in symbols:
            rng = self._rng(symbol, 0)
            price = float(rng.uniform(10, 500))
            volume = float(rng.uniform(5e5, 2e7))
            result.append(MarketStats(
                symbol=symbol,
                price=price,
                volume=volume,
                spread=price * float(rng.uniform(1e-4, 1e-3)),
                volatility=float(rng.uniform(0.15, 0.45)),
                market_cap=price * float(rng.uniform(1e8, 1e10)),
                average_daily_volume=price * volume,
                liquidity_score=float(rng.uniform(0.3, 1.0)),
                beta=float(rng.uniform(0.6, 1.6)),
            ))
        return result

    def get_price_history(self, symbols: Sequence[str], lookback: int = 252) -> pd.DataFrame:
        index = pd.bdate_range(end=pd.Timestamp("2024-12-31"), periods=lookback + 1)
        columns = {}
        for symbol in symbols:
            rng = self._rng(symbol, 1)
            returns = rng.normal(0.0005, 0.02, size=lookback)
            columns[symbol] = self.initial_price * np.concatenate([[1.0], np.cumprod(1 + returns)])
        return pd.DataFrame(columns, index=index)

    def get_characteristics(self, symbols: Sequence[str]) -> np.ndarray:
        rows = [self._rng(symbol, 2).standard_normal(self.num_characteristics) for symbol in symbols]
        return np.array(rows).reshape(len(symbols), self.num_characteristics)
