"""
Scenario stress testing.

Scenarios come from ``config["STRESS_SCENARIOS"]``. Each scenario is applied
to copies of the live positions; the monitor's state is never touched.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from quantcore.risk.limits import CORRELATION, DAILY_LOSS, POSITION_SIZE, VOLATILITY
from quantcore.risk.metrics import position_weights
from shared.models import Position, RiskSnapshot, StressScenario, StressTestResult

logger = logging.getLogger(__name__)


def load_scenarios(config: Dict) -> List[StressScenario]:
    """Parse the configured stress scenarios."""
    scenarios = []
    for raw in config.get("STRESS_SCENARIOS", []):
        scenarios.append(StressScenario(**raw))
    return scenarios


def apply_scenario(positions: Sequence[Position], scenario: StressScenario) -> List[Position]:
    """Revalue copies of ``positions`` at ``price * (1 + shock)``."""
    return [
        p.with_price(p.current_price * (1.0 + scenario.shock_for(p.symbol)))
        for p in positions
    ]


class StressTester:
    """
    Applies stress scenarios to a portfolio.

    Reported per scenario:
    - stressed portfolio value and change (absolute and percent)
    - worst-hit asset
    - stressed volatility (x multiplier) and correlation (+ shift)
    - limits that would be breached after the shock
    """

    def __init__(self, config: Dict):
        self.config = config
        self.risk_config = config.get("RISK", {})
        self.scenarios = load_scenarios(config)

    def run(
        self,
        positions: Sequence[Position],
        snapshot: Optional[RiskSnapshot] = None,
    ) -> List[StressTestResult]:
        results = [self.run_scenario(positions, scenario, snapshot) for scenario in self.scenarios]
        logger.info(
            "Stress tests completed",
            extra={"extra_fields": {"scenarios": len(results), "positions": len(positions)}},
        )
        return results

    def run_scenario(
        self,
        positions: Sequence[Position],
        scenario: StressScenario,
        snapshot: Optional[RiskSnapshot] = None,
    ) -> StressTestResult:
        base_value = sum(p.market_value for p in positions)
        stressed = apply_scenario(positions, scenario)
        stressed_value = sum(p.market_value for p in stressed)

        change = stressed_value - base_value
        change_percent = change / base_value * 100 if base_value > 0 else 0.0

        worst_asset = None
        worst_change = 0.0
        for before, after in zip(positions, stressed):
            if before.market_value == 0:
                continue
            asset_change = (after.market_value - before.market_value) / abs(before.market_value) * 100
            if worst_asset is None or asset_change < worst_change:
                worst_asset = before.symbol
                worst_change = asset_change

        default_corr = self.risk_config.get("DEFAULT_CORRELATION", 0.6)
        base_vol = snapshot.volatility if snapshot is not None else 0.0
        base_corr = snapshot.correlation_risk if snapshot is not None else default_corr
        stressed_vol = base_vol * scenario.volatility_multiplier
        stressed_corr = float(np.clip(base_corr + scenario.correlation_shift, -1.0, 1.0))

        breached = self._breached_limits(stressed, change, base_value, stressed_vol, stressed_corr)

        return StressTestResult(
            scenario=scenario.name,
            portfolio_value=float(stressed_value),
            portfolio_change=float(change),
            portfolio_change_percent=float(change_percent),
            worst_asset=worst_asset,
            worst_asset_change=float(worst_change),
            risk_metrics_change={
                "volatility": float(stressed_vol - base_vol),
                "correlation": float(stressed_corr - base_corr),
                "stressed_volatility": float(stressed_vol),
                "stressed_correlation": stressed_corr,
            },
            breached_limits=breached,
        )

    def _breached_limits(
        self,
        stressed: Sequence[Position],
        change: float,
        base_value: float,
        stressed_vol: float,
        stressed_corr: float,
    ) -> List[str]:
        breached = []

        if base_value > 0 and -change / base_value > self.risk_config.get("MAX_DAILY_LOSS", 0.05):
            breached.append(DAILY_LOSS)

        max_position = self.risk_config.get("MAX_POSITION_SIZE", 0.10)
        for symbol, weight in position_weights(stressed).items():
            if weight > max_position:
                breached.append(f"{POSITION_SIZE} ({symbol})")

        if stressed_vol > self.risk_config.get("VOLATILITY_THRESHOLD", 0.5):
            breached.append(VOLATILITY)

        if stressed_corr > self.risk_config.get("CORRELATION_THRESHOLD", 0.8):
            breached.append(CORRELATION)

        return breached
