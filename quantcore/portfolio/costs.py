import logging
from typing import Dict, Mapping

import numpy as np

from shared.models import MarketStats, TransactionCost

logger = logging.getLogger(__name__)

# Volume floor for the slippage volume factor (shares)
MIN_VOLUME = 1e4

# Participation cap (multiples of ADV) for the impact term
MAX_PARTICIPATION = 100.0

# =============================================================================
# Transaction Cost Model
# =============================================================================

class CostModel:
    """
    Rebalancing cost model. Every component is a fraction of portfolio value:
    - Spread: half the quoted spread on the traded weight
    - Market impact: square-root law in ADV participation, scaled by volatility / liquidity
    - Commission: tiered by share price
    - Slippage: grows with volatility, thin volume and trade size
    - Financing: daily carry on leverage above 100%
    """

    def __init__(self, config: Dict):
        allocation = config.get("ALLOCATION", {})
        costs = allocation.get("COSTS", {})
        self.base_impact = costs.get("BASE_IMPACT", 0.001)
        self.base_slippage = costs.get("BASE_SLIPPAGE", 0.0005)
        self.financing_rate = costs.get("FINANCING_RATE", 0.03)
        self.materiality = allocation.get("MATERIALITY_THRESHOLD", 0.001)
        self.portfolio_value = allocation.get("PORTFOLIO_VALUE", 1_000_000.0)

    @staticmethod
    def commission_rate(price: float) -> float:
        """20 bps up to $10, 10 bps up to $100, 5 bps above."""
        if price > 100:
            return 0.0005
        if price > 10:
            return 0.0010
        return 0.0020

    def marginal_rate(self, stats: MarketStats) -> float:
        """Linear cost per unit of traded weight (half spread + commission)."""
        return 0.5 * stats.spread / stats.price + self.commission_rate(stats.price)

    def participation(self, delta: float, stats: MarketStats) -> float:
        """Traded dollars as a fraction of average daily traded value."""
        if stats.average_daily_volume <= 0:
            return 1.0
        adv = max(stats.average_daily_volume, MIN_VOLUME * stats.price)
        return min(abs(delta) * self.portfolio_value / adv, MAX_PARTICIPATION)

    def asset_cost(self, delta: float, stats: MarketStats) -> TransactionCost:
        """Cost of changing one asset's weight by ``delta``."""
        size = abs(delta)
        if size < self.materiality:
            return TransactionCost()

        spread = size * 0.5 * stats.spread / stats.price
        impact = (
            size * self.base_impact * np.sqrt(self.participation(delta, stats))
            * stats.volatility / max(0.1, stats.liquidity_score)
        )
        commission = size * self.commission_rate(stats.price)

        volume = stats.volume
        if volume <= 0:
            volume = stats.average_daily_volume / stats.price
        volume_factor = 1.0 / np.sqrt(max(volume, MIN_VOLUME) / 1e6)
        slippage = (
            size * self.base_slippage * (1 + 5 * stats.volatility)
            * volume_factor * (1 + 10 * size)
        )

        return TransactionCost(
            spread_cost=float(spread),
            market_impact=float(impact),
            commission_cost=float(commission),
            slippage_cost=float(slippage),
        )

    def financing_cost(self, target_weights: Mapping[str, float]) -> float:
        """One day of financing on gross exposure above 1.0."""
        leverage = sum(target_weights.values()) - 1.0
        if leverage <= 1e-12:
            return 0.0
        return float(leverage * self.financing_rate / 365)

    def calculate(
        self,
        target_weights: Mapping[str, float],
        current_weights: Mapping[str, float],
        market_stats: Mapping[str, MarketStats],
    ) -> TransactionCost:
        """
        Total cost of moving from ``current_weights`` to ``target_weights``.

        Symbols missing from one side count as weight 0; symbols without
        market stats are skipped.
        """
        totals = {"spread_cost": 0.0, "market_impact": 0.0, "commission_cost": 0.0, "slippage_cost": 0.0}
        for symbol in set(target_weights) | set(current_weights):
            stats = market_stats.get(symbol)
            if stats is None:
                logger.warning(f"No market stats for {symbol}; trade cost not estimated")
                continue
            delta = target_weights.get(symbol, 0.0) - current_weights.get(symbol, 0.0)
            cost = self.asset_cost(delta, stats)
            for key in totals:
                totals[key] += getattr(cost, key)

        return TransactionCost(financing_cost=self.financing_cost(target_weights), **totals)
