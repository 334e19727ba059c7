"""
Decision Engine
===============

Service object wiring the factor model, the risk monitor and the allocator.

Flow per cycle:
---------------
1. Factor model: characteristics -> expected returns
2. Risk monitor: positions + price history -> snapshot, alerts, risk budget
3. Allocator: expected returns + risk budget -> target weights + execution plan

Every call runs inside a TraceContext so all log lines it produces share a
trace ID, and is timed by the MetricsCollector.

Example:
--------
    from quantcore import DecisionEngine, load_config
    from quantcore.data import SimulatedMarketDataSource

    engine = DecisionEngine(load_config("config.yaml"), SimulatedMarketDataSource(seed=7))
    engine.train_model(returns, characteristics, symbols=symbols)
    cycle = engine.run_cycle(positions=positions)
    print(cycle.allocation.recommendation)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from quantcore.config import default_config
from quantcore.factors import ConditionalFactorModel, FactorModelState, build_panel
from quantcore.portfolio import TransactionCostAllocator, estimate_correlation
from quantcore.risk import RealTimeRiskMonitor
from quantcore.risk.metrics import position_weights
from shared.logging import PerformanceLogger, TraceContext, get_span_id, get_trace_id, init_structured_logger
from shared.metrics import MetricsCollector
from shared.models import (
    Alert,
    AllocationResult,
    CircuitBreakerAction,
    ExecutionPlanEntry,
    MarketStats,
    Observation,
    Position,
    RiskSnapshot,
)


def _span() -> TraceContext:
    """New span inside the current trace, or a new trace."""
    return TraceContext(trace_id=get_trace_id(), parent_span_id=get_span_id())


@dataclass
class CycleResult:
    """Outputs of one full decision cycle."""

    snapshot: RiskSnapshot
    allocation: AllocationResult
    plan: List[ExecutionPlanEntry]
    predicted_returns: pd.Series
    alerts: List[Alert] = field(default_factory=list)
    actions: List[CircuitBreakerAction] = field(default_factory=list)
    trace_id: Optional[str] = None


class DecisionEngine:
    """
    Quantitative decision engine.

    Owns one factor model, one risk monitor and one allocator built from the
    same config. Market data comes from an injected ``MarketDataSource`` when
    ``run_cycle`` is used; the other operations take their inputs directly.
    """

    def __init__(self, config: Optional[Dict] = None, data_source=None):
        self.config = config if config is not None else default_config()
        self.data_source = data_source

        log_config = self.config.get("LOGGING", {})
        self.logger = init_structured_logger(
            log_config.get("SERVICE_NAME", "quantcore"),
            environment=log_config.get("ENVIRONMENT", "development"),
            level=log_config.get("LEVEL", "INFO"),
            json_output=log_config.get("JSON_OUTPUT", True),
            propagate=log_config.get("PROPAGATE", False),
        )
        self.metrics = MetricsCollector()

        self.factor_model = ConditionalFactorModel(self.config)
        self.risk_monitor = RealTimeRiskMonitor(self.config, on_action=self._on_circuit_breaker)
        self.allocator = TransactionCostAllocator(self.config)

    def _on_circuit_breaker(self, action: CircuitBreakerAction) -> None:
        self.metrics.increment("circuit_breaker_trips")
        self.logger.critical(
            "Circuit breaker action issued",
            metric=action.metric,
            kind=action.kind.value,
            fraction=action.fraction,
            symbols=list(action.symbols),
        )

    # ========================================================================
    # Factor model
    # ========================================================================

    def train_model(
        self,
        returns,
        characteristics,
        timestamps: Optional[Sequence] = None,
        symbols: Optional[Sequence[str]] = None,
    ) -> FactorModelState:
        """Train the factor model on a T x N returns panel."""
        with _span(), PerformanceLogger(self.logger, "train_model"), \
                self.metrics.time_operation("train_model"):
            state = self.factor_model.train(returns, characteristics, timestamps, symbols)

        self.metrics.set_gauge("factor_model_final_loss", state.final_loss)
        if not state.converged:
            self.metrics.increment("factor_model_nonconverged")
        if state.instability_count:
            self.metrics.increment("numerical_instabilities", state.instability_count)
        return state

    def train_from_observations(self, observations: Sequence[Observation]) -> FactorModelState:
        """Train from a flat list of per-asset observations."""
        returns, characteristics, timestamps, symbols = build_panel(observations)
        return self.train_model(returns, characteristics, timestamps, symbols)

    def predict_returns(self, characteristics) -> pd.Series:
        """Expected next-period returns indexed by symbol."""
        with self.metrics.time_operation("predict_returns"):
            return self.factor_model.predict_series(characteristics)

    # ========================================================================
    # Risk
    # ========================================================================

    def monitor(
        self,
        positions: Sequence[Position],
        price_history=None,
        market_stats: Optional[Sequence[MarketStats]] = None,
    ) -> RiskSnapshot:
        """Update risk metrics; alerts and breaker actions accumulate on the monitor."""
        alerts_before = len(self.risk_monitor.get_active_alerts())
        with _span(), PerformanceLogger(self.logger, "monitor"), \
                self.metrics.time_operation("monitor"):
            snapshot = self.risk_monitor.update_risk_metrics(positions, price_history, market_stats)

        new_alerts = len(self.risk_monitor.get_active_alerts()) - alerts_before
        if new_alerts > 0:
            self.metrics.increment("alerts", new_alerts)
        self.metrics.set_gauge("var_95", snapshot.var_95)
        self.metrics.set_gauge("max_drawdown", snapshot.max_drawdown)
        return snapshot

    # ========================================================================
    # Allocation
    # ========================================================================

    def rebalance(
        self,
        characteristics,
        current_weights: Mapping[str, float],
        market_stats: Sequence[MarketStats],
        risk_aversion: Optional[float] = None,
        price_history: Optional[pd.DataFrame] = None,
    ) -> Tuple[AllocationResult, List[ExecutionPlanEntry]]:
        """
        Predict returns, apply the current risk budget and optimize weights.

        With a price history the allocator uses a Ledoit-Wolf correlation
        estimate instead of the constant pairwise correlation.
        """
        with _span(), PerformanceLogger(self.logger, "rebalance"), \
                self.metrics.time_operation("rebalance"):
            predicted = self.predict_returns(characteristics)
            budget = self.risk_monitor.get_risk_budget()

            correlation = None
            if price_history is not None:
                prices = price_history if isinstance(price_history, pd.DataFrame) else pd.DataFrame(price_history)
                correlation = estimate_correlation(prices, list(predicted.index))

            result, plan = self.allocator.optimize(
                predicted.to_dict(),
                current_weights,
                market_stats,
                risk_aversion=risk_aversion,
                risk_budget=budget,
                correlation=correlation,
            )

        if result.low_confidence:
            self.metrics.increment("allocator_nonconverged")
        self.metrics.increment(f"recommendation_{result.recommendation.value.lower()}")
        return result, plan

    # ========================================================================
    # Full cycle
    # ========================================================================

    def run_cycle(
        self,
        positions: Sequence[Position],
        symbols: Optional[Sequence[str]] = None,
        characteristics: Optional[np.ndarray] = None,
        current_weights: Optional[Mapping[str, float]] = None,
    ) -> CycleResult:
        """
        Monitor, then rebalance, pulling market data from the data source.

        Args:
            positions: Current positions
            symbols: Universe for market data (defaults to the trained symbols)
            characteristics: Latest characteristics for the trained symbols
                (fetched from the data source when omitted)
            current_weights: Defaults to market-value weights of ``positions``

        Raises:
            ValueError: No data source configured
            ModelNotTrained: The factor model has not been trained
        """
        if self.data_source is None:
            raise ValueError("run_cycle requires a market data source")

        trained_symbols = list(self.factor_model.state.symbols)
        universe = list(dict.fromkeys(list(symbols or trained_symbols) + [p.symbol for p in positions]))
        lookback = self.config.get("RISK", {}).get("HISTORY_WINDOW", 252)

        with TraceContext() as trace:
            market_stats = self.data_source.get_market_stats(universe)
            price_history = self.data_source.get_price_history(universe, lookback)
            if characteristics is None:
                characteristics = self.data_source.get_characteristics(trained_symbols)

            snapshot = self.monitor(positions, price_history, market_stats)
            if current_weights is None:
                current_weights = position_weights(positions)

            result, plan = self.rebalance(
                characteristics, current_weights, market_stats, price_history=price_history
            )

            return CycleResult(
                snapshot=snapshot,
                allocation=result,
                plan=plan,
                predicted_returns=self.factor_model.predict_series(characteristics),
                alerts=self.risk_monitor.get_active_alerts(),
                actions=self.risk_monitor.drain_actions(),
                trace_id=trace.trace_id,
            )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def metrics_summary(self) -> Dict:
        summary = self.metrics.get_summary()
        summary["circuit_breakers"] = self.risk_monitor.get_circuit_breaker_status()
        summary["model_trained"] = self.factor_model.is_trained
        return summary

    def reset(self) -> None:
        """Drop trained state, risk state and collected metrics."""
        self.factor_model.reset()
        self.risk_monitor.reset()
        self.metrics.reset()
        self.logger.info("Decision engine reset")
