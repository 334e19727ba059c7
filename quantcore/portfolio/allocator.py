"""
Transaction-Cost-Aware Allocator
================================

Long-only mean-variance allocation that pays for its own trading.

Features:
---------
1. Asset screening (market data, liquidity, forbidden list, sectors)
2. Constant-correlation or supplied-correlation risk model
3. Five-component transaction cost model
4. Projected gradient ascent under a per-position cap
5. Cost/benefit rebalance recommendation and execution plan
6. Risk budget from the risk monitor (tighter caps, higher risk aversion, halt)

Objective Function:
------------------
maximize: μ'w - λ·w'Σw - (cost(w) + κ·turnover(w))

subject to: 0 ≤ w_i ≤ max_position_size, Σw_i = 1

Example:
--------
    from quantcore.portfolio import TransactionCostAllocator

    allocator = TransactionCostAllocator(config)
    result, plan = allocator.optimize(
        predicted_returns={"AAPL": 0.0012, "MSFT": 0.0009},
        current_weights={"AAPL": 0.5, "MSFT": 0.5},
        market_stats=stats,
    )
"""

import logging
import warnings
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from quantcore.exceptions import DataInsufficient, ExternalDataUnavailable, OptimizationNonConvergent
from quantcore.portfolio.costs import CostModel
from quantcore.portfolio.covariance import build_covariance
from quantcore.portfolio.execution import ExecutionPlanner
from shared.models import (
    AllocationResult,
    ExecutionPlanEntry,
    MarketStats,
    RebalanceRecommendation,
    RiskBudget,
    Urgency,
)

logger = logging.getLogger(__name__)

MarketStatsInput = Union[Mapping[str, MarketStats], Sequence[MarketStats]]


def turnover(current_weights: Mapping[str, float], target_weights: Mapping[str, float]) -> float:
    """Half the L1 distance between two weight maps (missing symbols count as 0)."""
    symbols = set(current_weights) | set(target_weights)
    return 0.5 * sum(
        abs(target_weights.get(s, 0.0) - current_weights.get(s, 0.0)) for s in symbols
    )


def project_weights(weights: np.ndarray, cap: float, max_rounds: int = 100) -> np.ndarray:
    """
    Project onto {0 ≤ w_i ≤ cap, Σw = 1}.

    Clips negatives, renormalizes, then repeatedly caps oversized entries and
    hands the excess to the uncapped entries in proportion to their weight.
    Requires ``len(weights) * cap >= 1``.
    """
    w = np.clip(np.asarray(weights, dtype=float), 0.0, None)
    n = len(w)
    total = w.sum()
    w = w / total if total > 0 else np.full(n, 1.0 / n)

    for _ in range(max_rounds):
        over = w > cap
        if not over.any():
            break
        excess = (w[over] - cap).sum()
        w[over] = cap
        free = w < cap
        free_total = w[free].sum()
        if free_total > 0:
            w[free] += excess * w[free] / free_total
        else:
            w[free] += excess / free.sum()

    return w


def recommend_rebalance(
    cost_benefit_ratio: float,
    plan: Sequence[ExecutionPlanEntry],
    execute_threshold: float = 0.2,
    defer_threshold: float = 0.8,
) -> RebalanceRecommendation:
    """
    EXECUTE when costs are small relative to the expected gain, DEFER when
    they eat most of it, PARTIAL in between only if some trade is urgent.
    """
    if cost_benefit_ratio < execute_threshold:
        return RebalanceRecommendation.EXECUTE
    if cost_benefit_ratio > defer_threshold:
        return RebalanceRecommendation.DEFER
    if any(entry.urgency == Urgency.HIGH for entry in plan):
        return RebalanceRecommendation.PARTIAL
    return RebalanceRecommendation.DEFER


class TransactionCostAllocator:
    """
    Cost-aware portfolio allocator.

    Attributes:
        max_position_size: Per-asset weight cap
        risk_aversion: Default λ in the objective
        turnover_penalty: κ in the objective
        learning_rate / max_iterations / convergence_threshold: gradient ascent settings
    """

    def __init__(self, config: Dict):
        """Initialize allocator from the ALLOCATION config section."""
        allocation = config.get("ALLOCATION", {})

        self.max_position_size = allocation.get("MAX_POSITION_SIZE", 0.10)
        self.min_liquidity = allocation.get("MIN_LIQUIDITY", 1_000_000)
        self.allowed_sectors = set(allocation.get("ALLOWED_SECTORS", []) or [])
        self.forbidden_assets = set(allocation.get("FORBIDDEN_ASSETS", []) or [])

        self.risk_aversion = allocation.get("RISK_AVERSION", 3.0)
        self.learning_rate = allocation.get("LEARNING_RATE", 0.01)
        self.max_iterations = allocation.get("MAX_ITERATIONS", 1000)
        self.convergence_threshold = allocation.get("CONVERGENCE_THRESHOLD", 1e-6)
        self.pairwise_correlation = allocation.get("PAIRWISE_CORRELATION", 0.3)
        self.turnover_penalty = allocation.get("TURNOVER_PENALTY", 0.01)

        self.execute_threshold = allocation.get("EXECUTE_THRESHOLD", 0.2)
        self.defer_threshold = allocation.get("DEFER_THRESHOLD", 0.8)

        self.cost_model = CostModel(config)
        self.planner = ExecutionPlanner(config, self.cost_model)

    # ========================================================================
    # Screening
    # ========================================================================

    def screen(
        self,
        symbols: Sequence[str],
        market_stats: Mapping[str, MarketStats],
    ) -> Tuple[List[str], List[str]]:
        """
        Split ``symbols`` into eligible and excluded.

        Returns:
            (eligible, excluded) preserving input order
        """
        eligible, excluded = [], []
        for symbol in symbols:
            stats = market_stats.get(symbol)
            if stats is None:
                logger.warning(f"{ExternalDataUnavailable(symbol)}; excluded from allocation")
                excluded.append(symbol)
            elif stats.average_daily_volume < self.min_liquidity:
                logger.debug(f"{symbol} excluded: ADV {stats.average_daily_volume:,.0f} below minimum")
                excluded.append(symbol)
            elif symbol in self.forbidden_assets:
                excluded.append(symbol)
            elif self.allowed_sectors and stats.sector not in self.allowed_sectors:
                excluded.append(symbol)
            else:
                eligible.append(symbol)
        return eligible, excluded

    # ========================================================================
    # Optimization
    # ========================================================================

    def _correlation_matrix(
        self,
        symbols: Sequence[str],
        correlation: Optional[Union[pd.DataFrame, np.ndarray]],
    ) -> Optional[np.ndarray]:
        if correlation is None:
            return None
        if isinstance(correlation, pd.DataFrame):
            corr = correlation.reindex(index=symbols, columns=symbols)
            corr = corr.fillna(self.pairwise_correlation).values.astype(float)
            np.fill_diagonal(corr, 1.0)
            return corr
        return np.asarray(correlation, dtype=float)

    def optimize(
        self,
        predicted_returns: Mapping[str, float],
        current_weights: Mapping[str, float],
        market_stats: MarketStatsInput,
        risk_aversion: Optional[float] = None,
        risk_budget: Optional[RiskBudget] = None,
        correlation: Optional[Union[pd.DataFrame, np.ndarray]] = None,
    ) -> Tuple[AllocationResult, List[ExecutionPlanEntry]]:
        """
        Compute cost-aware target weights and an execution plan.

        Args:
            predicted_returns: Symbol -> expected return
            current_weights: Symbol -> weight currently held
            market_stats: Per-asset market statistics (list or symbol map)
            risk_aversion: λ; defaults to the configured value
            risk_budget: Limits from the risk monitor
            correlation: Optional correlation matrix (DataFrame indexed by symbol,
                or array in predicted_returns order of eligible assets)

        Returns:
            (AllocationResult, execution plan)

        Raises:
            DataInsufficient: no eligible assets, or the cap makes Σw = 1 infeasible
        """
        if isinstance(market_stats, Mapping):
            stats = dict(market_stats)
        else:
            stats = {s.symbol: s for s in market_stats}

        eligible, excluded = self.screen(list(predicted_returns), stats)
        if not eligible:
            raise DataInsufficient("No eligible assets after screening")

        cap = self.max_position_size
        lam = self.risk_aversion if risk_aversion is None else risk_aversion
        if risk_budget is not None:
            cap = min(cap, risk_budget.max_position_size)
            lam *= risk_budget.risk_aversion_multiplier

        n = len(eligible)
        if n * cap < 1.0 - 1e-9:
            raise DataInsufficient(
                f"{n} eligible assets with max position size {cap:.2%} cannot be fully invested"
            )

        mu = np.array([predicted_returns[s] for s in eligible], dtype=float)
        vol = np.array([stats[s].volatility for s in eligible], dtype=float)
        sigma = build_covariance(vol, self.pairwise_correlation, self._correlation_matrix(eligible, correlation))
        current_vec = np.array([current_weights.get(s, 0.0) for s in eligible], dtype=float)
        rates = np.array([self.cost_model.marginal_rate(stats[s]) for s in eligible]) + self.turnover_penalty / 2

        # Held assets that are no longer eligible are sold down to zero
        exits = {s: 0.0 for s in current_weights if s not in eligible and s in stats}

        def to_target(w: np.ndarray) -> Dict[str, float]:
            target = {s: float(x) for s, x in zip(eligible, w)}
            target.update(exits)
            return target

        def objective(w: np.ndarray) -> float:
            target = to_target(w)
            cost = self.cost_model.calculate(target, current_weights, stats).total_cost
            return float(
                mu @ w - lam * (w @ sigma @ w)
                - (cost + self.turnover_penalty * turnover(current_weights, target))
            )

        w = project_weights(np.full(n, 1.0 / n), cap)
        best_w, best_obj = w, objective(w)
        prev_obj = best_obj
        converged = False
        iterations = 0

        for iterations in range(1, self.max_iterations + 1):
            gradient = mu - 2 * lam * (sigma @ w) - np.sign(w - current_vec) * rates
            w = project_weights(w + self.learning_rate * gradient, cap)
            obj = objective(w)

            if obj > best_obj:
                best_w, best_obj = w, obj
            if abs(obj - prev_obj) < self.convergence_threshold:
                converged = True
                break
            prev_obj = obj

        if not converged:
            message = f"Allocator hit {self.max_iterations} iterations without converging"
            logger.warning(message, extra={"extra_fields": {"objective": best_obj}})
            warnings.warn(OptimizationNonConvergent(message))

        target = to_target(best_w)
        costs = self.cost_model.calculate(target, current_weights, stats)
        plan = self.planner.plan(target, current_weights, stats)

        expected_return = float(mu @ best_w)
        expected_risk = float(np.sqrt(max(best_w @ sigma @ best_w, 0.0)))
        sharpe = expected_return / expected_risk if expected_risk > 0 else 0.0

        ratio = costs.total_cost / abs(expected_return) if expected_return != 0 else float("inf")
        if risk_budget is not None and risk_budget.trading_halted:
            recommendation = RebalanceRecommendation.DEFER
        else:
            recommendation = recommend_rebalance(ratio, plan, self.execute_threshold, self.defer_threshold)

        result = AllocationResult(
            target_weights=target,
            expected_return=expected_return,
            expected_risk=expected_risk,
            sharpe_ratio=float(sharpe),
            costs=costs,
            turnover=float(turnover(current_weights, target)),
            recommendation=recommendation,
            iterations=iterations,
            converged=converged,
            low_confidence=not converged,
            excluded_symbols=excluded,
        )

        logger.info(
            "Allocation complete",
            extra={"extra_fields": {
                "eligible": n,
                "excluded": len(excluded),
                "iterations": iterations,
                "converged": converged,
                "turnover": result.turnover,
                "total_cost": costs.total_cost,
                "recommendation": recommendation.value,
            }},
        )
        return result, plan
