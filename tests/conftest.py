"""
pytest configuration and global fixtures.

This file is automatically loaded by pytest and provides:
- Random seed management for reproducibility
- Common market data, position and configuration fixtures
- Marker registration and Hypothesis profiles
"""

import os
import random
from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd
import pytest
from hypothesis import HealthCheck, Verbosity, settings

from fixtures import FIXTURES_DIR, fixture_seed, load_seeds
from quantcore.config import default_config
from shared.models import MarketStats, Position


@pytest.fixture(scope="session", autouse=True)
def set_random_seeds():
    """
    Set all random seeds globally for deterministic tests.

    This fixture runs once per test session and ensures reproducibility
    across all tests.
    """
    seeds_file = FIXTURES_DIR / "seeds.yaml"
    if not seeds_file.exists():
        pytest.fail(f"Seeds file not found: {seeds_file}")

    seeds_config = load_seeds()
    np.random.seed(seeds_config["numpy_seed"])
    random.seed(seeds_config["random_seed"])

    yield

    np.random.seed(None)
    random.seed(None)


@pytest.fixture
def seeds():
    """Provide access to seeds configuration."""
    return load_seeds()


@pytest.fixture
def fixtures_dir():
    """Provide path to fixtures directory."""
    return FIXTURES_DIR


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def config():
    """
    Default configuration for tests.

    Log records propagate to the root logger so ``caplog`` sees them.
    """
    cfg = default_config()
    cfg["LOGGING"]["PROPAGATE"] = True
    cfg["LOGGING"]["LEVEL"] = "DEBUG"
    return cfg


@pytest.fixture
def factor_config(config):
    """Small, fast factor model configuration."""
    config["FACTOR_MODEL"].update({
        "NUM_FACTORS": 2,
        "MAX_ITERATIONS": 200,
        "CONVERGENCE_THRESHOLD": 1e-8,
    })
    return config


# ============================================================================
# Market Data Fixtures
# ============================================================================


@pytest.fixture
def dominant_factor_panel():
    """
    Three assets driven by one dominant factor.

    N=3, T=60, L=4. The first factor has ~10x the volatility of the second
    and the idiosyncratic noise is small.

    Returns:
        (returns T x N, characteristics T x N x L, timestamps, symbols)
    """
    rng = np.random.default_rng(fixture_seed("factor_panel"))
    T, N, L = 60, 3, 4

    f1 = rng.normal(0.0, 0.05, size=T)
    f2 = rng.normal(0.0, 0.005, size=T)
    loadings_1 = np.array([1.0, 0.8, 1.2])
    loadings_2 = np.array([0.3, -0.2, 0.1])
    noise = rng.normal(0.0, 0.005, size=(T, N))
    returns = np.outer(f1, loadings_1) + np.outer(f2, loadings_2) + noise

    characteristics = rng.normal(0.0, 1.0, size=(T, N, L))
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    timestamps = [start + timedelta(days=t) for t in range(T)]
    symbols = ["AAPL", "MSFT", "GOOGL"]
    return returns, characteristics, timestamps, symbols


@pytest.fixture
def market_stats():
    """Market statistics for a five-asset universe."""
    return [
        MarketStats(symbol="AAPL", price=190.0, volume=5.0e7, spread=0.02, volatility=0.25,
                    market_cap=3.0e12, average_daily_volume=9.5e9, liquidity_score=0.95,
                    sector="Technology", beta=1.2),
        MarketStats(symbol="MSFT", price=410.0, volume=2.5e7, spread=0.03, volatility=0.22,
                    market_cap=3.1e12, average_daily_volume=1.0e10, liquidity_score=0.9,
                    sector="Technology", beta=1.1),
        MarketStats(symbol="GOOGL", price=140.0, volume=3.0e7, spread=0.02, volatility=0.28,
                    market_cap=1.8e12, average_daily_volume=4.2e9, liquidity_score=0.85,
                    sector="Communication", beta=1.05),
        MarketStats(symbol="XOM", price=105.0, volume=1.8e7, spread=0.02, volatility=0.24,
                    market_cap=4.2e11, average_daily_volume=1.9e9, liquidity_score=0.8,
                    sector="Energy", beta=0.9),
        MarketStats(symbol="TSLA", price=8.0, volume=1.0e6, spread=0.02, volatility=0.55,
                    market_cap=7.0e11, average_daily_volume=2.0e8, liquidity_score=0.4,
                    sector="Consumer", beta=2.0),
    ]


@pytest.fixture
def stats_by_symbol(market_stats):
    return {s.symbol: s for s in market_stats}


@pytest.fixture
def price_history():
    """252 days of correlated random-walk prices for AAPL, MSFT, GOOGL, XOM, TSLA."""
    rng = np.random.default_rng(fixture_seed("price_history"))
    symbols = ["AAPL", "MSFT", "GOOGL", "XOM", "TSLA"]
    market = rng.normal(0.0003, 0.01, size=252)
    idio = rng.normal(0.0, 0.008, size=(252, len(symbols)))
    returns = market[:, None] + idio
    prices = 100.0 * np.cumprod(1 + returns, axis=0)
    index = pd.bdate_range("2024-01-02", periods=252)
    return pd.DataFrame(prices, index=index, columns=symbols)


def make_position(symbol, market_value, price=100.0, daily_pnl=0.0, average_cost=None, unrealized_pnl=0.0):
    quantity = market_value / price
    return Position(
        symbol=symbol,
        quantity=quantity,
        current_price=price,
        market_value=market_value,
        daily_pnl=daily_pnl,
        unrealized_pnl=unrealized_pnl,
        average_cost=price if average_cost is None else average_cost,
    )


@pytest.fixture
def position_factory():
    """Build positions from a symbol and market value."""
    return make_position


@pytest.fixture
def balanced_positions():
    """Four equal positions worth 25,000 each."""
    return [make_position(s, 25_000.0) for s in ["AAPL", "MSFT", "GOOGL", "XOM"]]


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """
    Pytest configuration hook.

    Register custom markers.
    """
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "property: Property-based tests")
    config.addinivalue_line("markers", "metamorphic: Metamorphic tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow-running tests")


def pytest_collection_modifyitems(config, items):
    """
    Pytest hook to modify test collection.

    Auto-mark tests based on their location.
    """
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "property" in path:
            item.add_marker(pytest.mark.property)
        elif "metamorphic" in path:
            item.add_marker(pytest.mark.metamorphic)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)


# ============================================================================
# Hypothesis Configuration
# ============================================================================

settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,  # No deadline for numerical tests
    suppress_health_check=[HealthCheck.too_slow],
)

settings.register_profile(
    "ci",
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
    verbosity=Verbosity.verbose,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))
