"""
Unit tests for the market data sources.
"""

import numpy as np
import pandas as pd
import pytest

from quantcore.data import CSVMarketDataSource, SimulatedMarketDataSource
from quantcore.exceptions import ExternalDataUnavailable


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def csv_files(tmp_path):
    dates = pd.bdate_range("2024-01-02", periods=5)
    prices = pd.DataFrame({
        "date": dates.strftime("%Y-%m-%d"),
        "AAPL": [190.0, 191.0, 189.5, 192.0, 193.0],
        "MSFT": [410.0, 412.0, 409.0, 415.0, 416.0],
    })
    # Rows deliberately out of order
    prices = prices.iloc[[3, 0, 4, 1, 2]]
    prices.to_csv(tmp_path / "prices.csv", index=False)

    pd.DataFrame([
        {"symbol": "aapl", "price": 193.0, "volume": 5e7, "spread": 0.02, "volatility": 0.25,
         "market_cap": 3e12, "average_daily_volume": 9.5e9, "liquidity_score": 0.95,
         "sector": "Technology", "beta": 1.2},
        {"symbol": "MSFT", "price": 416.0, "volume": 2.5e7, "spread": 0.03, "volatility": 0.22,
         "market_cap": 3.1e12, "average_daily_volume": 1.0e10, "liquidity_score": 0.9,
         "sector": None, "beta": None},
    ]).to_csv(tmp_path / "stats.csv", index=False)

    pd.DataFrame([
        {"date": "2024-01-02", "symbol": "AAPL", "momentum": 0.1, "value": -0.2},
        {"date": "2024-01-03", "symbol": "AAPL", "momentum": 0.3, "value": -0.1},
        {"date": "2024-01-02", "symbol": "MSFT", "momentum": 0.0, "value": 0.4},
    ]).to_csv(tmp_path / "characteristics.csv", index=False)

    return tmp_path


@pytest.fixture
def csv_source(csv_files):
    return CSVMarketDataSource(
        csv_files / "prices.csv",
        csv_files / "stats.csv",
        csv_files / "characteristics.csv",
    )


# ============================================================================
# CSV source
# ============================================================================

@pytest.mark.unit
class TestCSVMarketDataSource:
    """Test the CSV adapter."""

    def test_market_stats(self, csv_source):
        stats = {s.symbol: s for s in csv_source.get_market_stats(["AAPL", "MSFT"])}
        assert stats["AAPL"].sector == "Technology"
        assert stats["AAPL"].beta == 1.2
        assert stats["MSFT"].sector is None
        assert stats["MSFT"].beta is None

    def test_unknown_symbol_omitted(self, csv_source):
        stats = csv_source.get_market_stats(["AAPL", "NOPE"])
        assert [s.symbol for s in stats] == ["AAPL"]

    def test_price_history_sorted_and_trimmed(self, csv_source):
        history = csv_source.get_price_history(["AAPL", "MSFT", "NOPE"], lookback=3)
        assert list(history.columns) == ["AAPL", "MSFT"]
        assert len(history) == 3
        assert history.index.is_monotonic_increasing
        assert history["AAPL"].iloc[-1] == 193.0

    def test_latest_characteristics(self, csv_source):
        chars = csv_source.get_characteristics(["MSFT", "AAPL"])
        assert chars.shape == (2, 2)
        assert np.allclose(chars[0], [0.0, 0.4])
        assert np.allclose(chars[1], [0.3, -0.1])

    def test_missing_characteristics(self, csv_source):
        with pytest.raises(ExternalDataUnavailable) as excinfo:
            csv_source.get_characteristics(["AAPL", "XOM"])
        assert excinfo.value.symbol == "XOM"

    def test_no_characteristics_file(self, csv_files):
        source = CSVMarketDataSource(csv_files / "prices.csv", csv_files / "stats.csv")
        with pytest.raises(ExternalDataUnavailable):
            source.get_characteristics(["AAPL"])


# ============================================================================
# Simulated source
# ============================================================================

@pytest.mark.unit
class TestSimulatedMarketDataSource:
    """Test the synthetic data generator."""

    def test_deterministic_for_seed(self):
        a = SimulatedMarketDataSource(seed=7)
        b = SimulatedMarketDataSource(seed=7)
        pd.testing.assert_frame_equal(a.get_price_history(["AAPL", "MSFT"]), b.get_price_history(["AAPL", "MSFT"]))
        assert a.get_market_stats(["AAPL"]) == b.get_market_stats(["AAPL"])

    def test_independent_of_request_order(self):
        source = SimulatedMarketDataSource(seed=7)
        forward = source.get_price_history(["AAPL", "MSFT"])
        backward = source.get_price_history(["MSFT", "AAPL"])
        pd.testing.assert_series_equal(forward["AAPL"], backward["AAPL"])

    def test_seeds_differ(self):
        a = SimulatedMarketDataSource(seed=1).get_characteristics(["AAPL"])
        b = SimulatedMarketDataSource(seed=2).get_characteristics(["AAPL"])
        assert not np.allclose(a, b)

    def test_shapes(self):
        source = SimulatedMarketDataSource(num_characteristics=3, initial_price=50.0)
        history = source.get_price_history(["AAPL", "MSFT"], lookback=20)
        assert history.shape == (21, 2)
        assert (history.iloc[0] == 50.0).all()
        assert source.get_characteristics(["AAPL", "MSFT", "XOM"]).shape == (3, 3)

    def test_stats_are_valid_for_allocation(self):
        for stats in SimulatedMarketDataSource().get_market_stats(["AAPL", "MSFT", "XOM"]):
            assert stats.average_daily_volume == pytest.approx(stats.price * stats.volume)
            assert 0.0 <= stats.liquidity_score <= 1.0
