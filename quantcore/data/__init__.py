"""Market data adapters."""

from .sources import CSVMarketDataSource, MarketDataSource, SimulatedMarketDataSource

__all__ = ['MarketDataSource', 'CSVMarketDataSource', 'SimulatedMarketDataSource']
