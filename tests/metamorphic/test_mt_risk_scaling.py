"""
Metamorphic Testing: Scaling Relations for Risk Metrics

Metamorphic Relations:
    MR1: Scaling every return by α > 0 scales VaR, CVaR and volatility by α
    MR2: Scaling every position by c > 0 leaves weight-based metrics unchanged
    MR3: Scaling a portfolio by c scales stress-test losses by c, percentages unchanged

Rationale:
    Risk measured as a fraction of portfolio value must not depend on the
    size of the book, and loss quantiles are positively homogeneous.
"""

import numpy as np
import pytest

from fixtures import fixture_seed
from quantcore.risk import RealTimeRiskMonitor, metrics


@pytest.fixture
def returns():
    rng = np.random.default_rng(fixture_seed("metamorphic_scaling"))
    return rng.standard_t(5, size=250) * 0.01


@pytest.mark.metamorphic
@pytest.mark.parametrize("alpha", [0.1, 0.5, 2.0, 7.3])
def test_var_positive_homogeneity(returns, alpha):
    """MR1: VaR(α·r) = α·VaR(r) for both methods."""
    for min_obs in (50, 10_000):
        base_95, base_99, method = metrics.value_at_risk(returns, min_obs)
        scaled_95, scaled_99, scaled_method = metrics.value_at_risk(alpha * returns, min_obs)
        assert scaled_method == method
        assert scaled_95 == pytest.approx(alpha * base_95)
        assert scaled_99 == pytest.approx(alpha * base_99)


@pytest.mark.metamorphic
@pytest.mark.parametrize("alpha", [0.1, 2.0])
def test_cvar_and_volatility_homogeneity(returns, alpha):
    """MR1b: CVaR and volatility scale with the returns."""
    assert metrics.conditional_var(alpha * returns) == pytest.approx(alpha * metrics.conditional_var(returns))
    assert metrics.annualized_volatility(alpha * returns) == pytest.approx(
        alpha * metrics.annualized_volatility(returns)
    )


@pytest.mark.metamorphic
def test_time_reordering_keeps_distribution_metrics(returns):
    """MR1c: VaR and volatility ignore the order of returns."""
    rng = np.random.default_rng(fixture_seed("metamorphic_scaling") + 1)
    shuffled = rng.permutation(returns)
    base_95, base_99, base_method = metrics.value_at_risk(returns)
    var_95, var_99, method = metrics.value_at_risk(shuffled)
    assert method == base_method
    assert (var_95, var_99) == pytest.approx((base_95, base_99))
    assert metrics.annualized_volatility(shuffled) == pytest.approx(metrics.annualized_volatility(returns))


@pytest.mark.metamorphic
@pytest.mark.parametrize("scale", [0.01, 3.0, 1000.0])
def test_book_size_invariance(config, position_factory, price_history, market_stats, scale):
    """MR2: snapshot ratios do not depend on the size of the book."""
    symbols = ["AAPL", "MSFT", "GOOGL", "XOM"]
    values = [40_000.0, 30_000.0, 20_000.0, 10_000.0]
    pnl = [-400.0, 100.0, -250.0, 50.0]

    base = [position_factory(s, v, daily_pnl=p) for s, v, p in zip(symbols, values, pnl)]
    scaled = [position_factory(s, v * scale, daily_pnl=p * scale) for s, v, p in zip(symbols, values, pnl)]

    a = RealTimeRiskMonitor(config).update_risk_metrics(base, price_history, market_stats)
    b = RealTimeRiskMonitor(config).update_risk_metrics(scaled, price_history, market_stats)

    for field in ("var_95", "var_99", "max_drawdown", "volatility", "concentration_risk",
                  "liquidity_risk", "beta", "daily_loss", "correlation_risk"):
        assert getattr(b, field) == pytest.approx(getattr(a, field)), field
    assert b.portfolio_value == pytest.approx(a.portfolio_value * scale)


@pytest.mark.metamorphic
@pytest.mark.parametrize("scale", [0.5, 4.0])
def test_stress_losses_scale_with_book(config, balanced_positions, position_factory, scale):
    """MR3: stressed losses scale with the book, percentage changes do not."""
    scaled = [position_factory(p.symbol, p.market_value * scale) for p in balanced_positions]
    monitor = RealTimeRiskMonitor(config)

    for base, big in zip(monitor.run_stress_tests(balanced_positions), monitor.run_stress_tests(scaled)):
        assert big.portfolio_change == pytest.approx(base.portfolio_change * scale)
        assert big.portfolio_change_percent == pytest.approx(base.portfolio_change_percent)
        assert big.breached_limits == base.breached_limits
