"""Execution planning for a rebalance."""

from typing import Dict, List, Mapping

import numpy as np

from quantcore.portfolio.costs import CostModel
from shared.models import ExecutionPlanEntry, ExecutionStrategy, MarketStats, Urgency

STRATEGY_COST_MULTIPLIERS = {
    ExecutionStrategy.ARRIVAL_PRICE: 0.5,
    ExecutionStrategy.TWAP: 0.7,
    ExecutionStrategy.VWAP: 0.6,
    ExecutionStrategy.IMPLEMENTATION_SHORTFALL: 0.8,
}


class ExecutionPlanner:
    """Chooses strategy, horizon and urgency for each material weight change."""

    def __init__(self, config: Dict, cost_model: CostModel = None):
        allocation = config.get("ALLOCATION", {})
        execution = allocation.get("EXECUTION", {})
        self.cost_model = cost_model or CostModel(config)
        self.materiality = allocation.get("MATERIALITY_THRESHOLD", 0.001)

        self.large_trade_participation = execution.get("LARGE_TRADE_PARTICIPATION", 0.10)
        self.high_liquidity_score = execution.get("HIGH_LIQUIDITY_SCORE", 0.8)
        self.medium_trade_size = execution.get("MEDIUM_TRADE_SIZE", 0.05)
        self.base_horizon = execution.get("BASE_HORIZON_MINUTES", 60)
        self.max_horizon = execution.get("MAX_HORIZON_MINUTES", 480)
        self.high_urgency_delta = execution.get("HIGH_URGENCY_DELTA", 0.05)
        self.high_urgency_volatility = execution.get("HIGH_URGENCY_VOLATILITY", 0.3)
        self.medium_urgency_delta = execution.get("MEDIUM_URGENCY_DELTA", 0.02)
        self.medium_urgency_liquidity = execution.get("MEDIUM_URGENCY_LIQUIDITY", 0.5)

    def select_strategy(self, delta: float, stats: MarketStats) -> ExecutionStrategy:
        if self.cost_model.participation(delta, stats) > self.large_trade_participation:
            return ExecutionStrategy.IMPLEMENTATION_SHORTFALL
        if stats.liquidity_score > self.high_liquidity_score:
            return ExecutionStrategy.VWAP
        if abs(delta) > self.medium_trade_size:
            return ExecutionStrategy.TWAP
        return ExecutionStrategy.ARRIVAL_PRICE

    def time_horizon(self, delta: float, stats: MarketStats) -> float:
        """Minutes to work the order: grows with trade size and volatility."""
        horizon = self.base_horizon * np.sqrt(abs(delta) * 100) * (stats.volatility * 10)
        return float(min(self.max_horizon, horizon))

    def urgency(self, delta: float, stats: MarketStats) -> Urgency:
        size = abs(delta)
        if size > self.high_urgency_delta or stats.volatility > self.high_urgency_volatility:
            return Urgency.HIGH
        if size > self.medium_urgency_delta or stats.liquidity_score < self.medium_urgency_liquidity:
            return Urgency.MEDIUM
        return Urgency.LOW

    def plan(
        self,
        target_weights: Mapping[str, float],
        current_weights: Mapping[str, float],
        market_stats: Mapping[str, MarketStats],
    ) -> List[ExecutionPlanEntry]:
        """
        Plan entries for every material weight change, most urgent first and
        cheapest first within an urgency level.
        """
        entries = []
        for symbol in set(target_weights) | set(current_weights):
            stats = market_stats.get(symbol)
            if stats is None:
                continue
            target = target_weights.get(symbol, 0.0)
            current = current_weights.get(symbol, 0.0)
            delta = target - current
            if abs(delta) < self.materiality:
                continue

            strategy = self.select_strategy(delta, stats)
            horizon = self.time_horizon(delta, stats)
            expected_cost = (
                abs(delta) * stats.spread / stats.price
                * STRATEGY_COST_MULTIPLIERS[strategy] * np.sqrt(horizon / 60)
            )
            entries.append(ExecutionPlanEntry(
                symbol=symbol,
                target_weight=float(np.clip(target, 0.0, 1.0)),
                current_weight=float(current),
                trade_volume=float(abs(delta)),
                execution_strategy=strategy,
                time_horizon=horizon,
                urgency=self.urgency(delta, stats),
                expected_cost=float(expected_cost),
            ))

        entries.sort(key=lambda e: (-e.urgency.rank, e.expected_cost, e.symbol))
        return entries
