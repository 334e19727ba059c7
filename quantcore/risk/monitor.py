"""
Real-Time Risk Monitor
======================

Recomputes portfolio risk on every update, checks it against configured
limits, raises alerts and trips circuit breakers.

Features:
---------
- VaR (historical, parametric fallback) and CVaR
- Sharpe ratio, maximum drawdown, annualized volatility, beta
- Correlation, concentration (HHI) and liquidity risk
- Per-metric state machine: NORMAL -> WARNING -> BREACHED -> CIRCUIT_BROKEN
- Circuit breakers on VaR, drawdown and daily loss, tripped once per episode
- Scenario stress tests on copies of the portfolio
- Risk budget handed to the allocator

Example:
--------
    from quantcore.risk import RealTimeRiskMonitor

    monitor = RealTimeRiskMonitor(config)
    snapshot = monitor.update_risk_metrics(positions, price_history, market_stats)
    for alert in monitor.get_active_alerts():
        print(alert.severity, alert.message)
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np

from quantcore.exceptions import ExternalDataUnavailable, LimitBreach, LimitWarning
from quantcore.risk import metrics
from quantcore.risk.breakers import CircuitBreakerRegistry, emergency_action
from quantcore.risk.limits import (
    BREAKER_METRICS,
    DAILY_LOSS,
    MAX_DRAWDOWN,
    MONITOR_ACTION,
    RECOMMENDED_ACTIONS,
    VALUE_AT_RISK,
    RiskLimit,
    build_limits,
)
from quantcore.risk.stress import StressTester
from shared.models import (
    Alert,
    AlertType,
    CircuitBreakerAction,
    MarketStats,
    MetricState,
    Position,
    RiskBudget,
    RiskSnapshot,
    Severity,
    StressTestResult,
    VaRMethod,
)

logger = logging.getLogger(__name__)

ActionCallback = Callable[[CircuitBreakerAction], None]


class RealTimeRiskMonitor:
    """
    Portfolio risk monitor with limits, alerts and circuit breakers.

    Thread-safe: alerts, metric states and pending actions are guarded by a
    lock, breaker trips go through the registry's atomic ``try_trip``.
    """

    def __init__(self, config: Dict, on_action: Optional[ActionCallback] = None):
        self.config = config
        self.risk_config = config.get("RISK", {})
        self.on_action = on_action

        self.enable_circuit_breakers = self.risk_config.get("ENABLE_CIRCUIT_BREAKERS", True)
        self.history_window = self.risk_config.get("HISTORY_WINDOW", 252)
        self.min_var_observations = self.risk_config.get("HISTORICAL_VAR_MIN_OBS", 50)

        self._lock = threading.RLock()
        self._breakers = CircuitBreakerRegistry()
        self._stress_tester = StressTester(config)
        self._reset_state()

    def _reset_state(self) -> None:
        self._snapshot: Optional[RiskSnapshot] = None
        self._alerts: Dict[str, Alert] = {}
        self._metric_states: Dict[str, MetricState] = {}
        self._pending_actions: List[CircuitBreakerAction] = []
        self._last_update: Optional[datetime] = None

    @property
    def current_snapshot(self) -> Optional[RiskSnapshot]:
        with self._lock:
            return self._snapshot

    # ========================================================================
    # Metric update
    # ========================================================================

    def update_risk_metrics(
        self,
        positions: Sequence[Position],
        price_history: Optional[metrics.PriceHistory] = None,
        market_stats: Optional[Sequence[MarketStats]] = None,
    ) -> RiskSnapshot:
        """
        Recompute all risk metrics and run limit / circuit-breaker checks.

        Args:
            positions: Current positions
            price_history: Symbol -> price sequence (or DataFrame of prices)
            market_stats: Per-asset market statistics; missing assets use defaults

        Returns:
            The new risk snapshot
        """
        stats = {s.symbol: s for s in (market_stats or [])}
        snapshot = self._compute_snapshot(positions, price_history, stats)

        with self._lock:
            self._snapshot = snapshot
            self._last_update = snapshot.timestamp

        self._check_limits(snapshot)
        if self.enable_circuit_breakers:
            self._evaluate_circuit_breakers(snapshot, positions, stats, price_history)

        logger.info(
            "Risk metrics updated",
            extra={"extra_fields": {
                "positions": len(positions),
                "var_95": snapshot.var_95,
                "max_drawdown": snapshot.max_drawdown,
                "daily_loss": snapshot.daily_loss,
                "var_method": snapshot.var_method.value,
            }},
        )
        return snapshot

    def _compute_snapshot(
        self,
        positions: Sequence[Position],
        price_history: Optional[metrics.PriceHistory],
        stats: Mapping[str, MarketStats],
    ) -> RiskSnapshot:
        weights = metrics.position_weights(positions)
        returns = metrics.asset_returns(price_history, list(weights), self.history_window)
        portfolio_returns = metrics.portfolio_returns(returns, weights)
        previous = self.current_snapshot

        if len(portfolio_returns) >= 2:
            var_95, var_99, var_method = metrics.value_at_risk(portfolio_returns, self.min_var_observations)
            cvar = metrics.conditional_var(portfolio_returns, 0.95, self.min_var_observations)
            sharpe = metrics.sharpe_ratio(portfolio_returns, self.risk_config.get("RISK_FREE_RATE", 0.02))
            drawdown = metrics.max_drawdown(portfolio_returns)
            volatility = metrics.annualized_volatility(portfolio_returns)
        elif previous is not None:
            logger.warning(
                "Insufficient price history, keeping previous return-based metrics",
                extra={"extra_fields": {"observations": len(portfolio_returns)}},
            )
            var_95, var_99, var_method = previous.var_95, previous.var_99, previous.var_method
            cvar = previous.conditional_var
            sharpe = previous.sharpe_ratio
            drawdown = previous.max_drawdown
            volatility = previous.volatility
        else:
            var_95, var_99, var_method = 0.0, 0.0, VaRMethod.PARAMETRIC
            cvar = sharpe = drawdown = volatility = 0.0

        if len(portfolio_returns) > 0 and metrics.is_return_anomaly(portfolio_returns):
            self._raise_anomaly(float(portfolio_returns[-1]))

        liquidity_scores = {}
        betas = {}
        for symbol in weights:
            asset_stats = stats.get(symbol)
            if asset_stats is None:
                error = ExternalDataUnavailable(symbol)
                logger.warning(f"{error}; using default liquidity score and beta")
                continue
            liquidity_scores[symbol] = asset_stats.liquidity_score
            betas[symbol] = asset_stats.beta

        return RiskSnapshot(
            var_95=var_95,
            var_99=var_99,
            var_method=var_method,
            conditional_var=cvar,
            sharpe_ratio=sharpe,
            max_drawdown=drawdown,
            volatility=volatility,
            beta=metrics.portfolio_beta(weights, betas),
            correlation_risk=metrics.average_correlation(
                returns, self.risk_config.get("DEFAULT_CORRELATION", 0.6)
            ),
            concentration_risk=metrics.concentration_risk(weights),
            liquidity_risk=metrics.liquidity_risk(
                weights, liquidity_scores, self.risk_config.get("DEFAULT_LIQUIDITY_SCORE", 0.5)
            ),
            counterparty_risk=self.risk_config.get("COUNTERPARTY_RISK", 0.05),
            daily_loss=metrics.daily_loss(positions),
            portfolio_value=float(max(sum(p.market_value for p in positions), 0.0)),
            num_observations=len(portfolio_returns),
        )

    # ========================================================================
    # Limits and alerts
    # ========================================================================

    def _check_limits(self, snapshot: RiskSnapshot) -> None:
        for limit in build_limits(snapshot, self.risk_config):
            state = limit.state()

            if self._breakers.is_tripped(limit.metric):
                state = MetricState.CIRCUIT_BROKEN
            with self._lock:
                self._metric_states[limit.metric] = state

            if state == MetricState.BREACHED:
                severity = self._breach_severity(limit)
                self._create_alert(
                    type=limit.breach_alert_type,
                    severity=severity,
                    metric=limit.metric,
                    value=limit.current_value,
                    threshold=limit.limit,
                    message=(
                        f"{limit.metric} breach: {limit.current_value:.2%} exceeds "
                        f"limit of {limit.limit:.2%}"
                    ),
                    recommended_action=limit.recommended_action(),
                    auto_triggered=self.enable_circuit_breakers and severity == Severity.CRITICAL,
                )
            elif state == MetricState.WARNING:
                self._create_alert(
                    type=limit.warning_alert_type,
                    severity=Severity.LOW,
                    metric=limit.metric,
                    value=limit.current_value,
                    threshold=limit.warning_threshold,
                    message=(
                        f"{limit.metric} warning: {limit.current_value:.2%} approaching "
                        f"limit of {limit.limit:.2%}"
                    ),
                    recommended_action=MONITOR_ACTION,
                )

    def _breach_severity(self, limit: RiskLimit) -> Severity:
        if self.enable_circuit_breakers and limit.circuit_breaker:
            return Severity.CRITICAL
        return limit.breach_severity

    def _raise_anomaly(self, latest_return: float) -> None:
        self._create_alert(
            type=AlertType.ANOMALY_DETECTED,
            severity=Severity.MEDIUM,
            metric="Portfolio Return",
            value=latest_return,
            threshold=0.0,
            message=f"Portfolio return of {latest_return:.2%} is a statistical outlier",
            recommended_action="Verify market data and review open positions",
        )

    def _create_alert(self, **fields) -> Alert:
        alert = Alert(id=str(uuid.uuid4()), **fields)
        with self._lock:
            self._alerts[alert.id] = alert

        log = logger.critical if alert.severity == Severity.CRITICAL else logger.warning
        log(
            f"Risk alert: {alert.message}",
            extra={"extra_fields": {
                "alert_id": alert.id,
                "alert_type": alert.type.value,
                "severity": alert.severity.value,
                "metric": alert.metric,
            }},
        )
        return alert

    def get_active_alerts(self) -> List[Alert]:
        """Unacknowledged alerts, newest first."""
        with self._lock:
            alerts = list(self._alerts.values())
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    def acknowledge_alert(self, alert_id: str) -> bool:
        """Remove an alert from the active set; False if it is unknown."""
        with self._lock:
            removed = self._alerts.pop(alert_id, None)
        if removed is None:
            return False
        logger.info(f"Alert acknowledged: {alert_id}")
        return True

    def get_metric_states(self) -> Dict[str, MetricState]:
        with self._lock:
            return dict(self._metric_states)

    def raise_for_breaches(self, include_warnings: bool = False) -> None:
        """
        Raise for the current limit state of the latest snapshot.

        ``LimitBreach`` is raised for the most severe hard breach. With
        ``include_warnings`` and no hard breach, ``LimitWarning`` is raised for
        the soft breach closest to its hard limit.
        """
        snapshot = self.current_snapshot
        if snapshot is None:
            return
        limits = build_limits(snapshot, self.risk_config)
        breached = [limit for limit in limits if limit.state() == MetricState.BREACHED]
        if breached:
            worst = max(breached, key=lambda limit: self._breach_severity(limit).rank)
            raise LimitBreach(
                worst.metric, worst.current_value, worst.limit, self._breach_severity(worst).value
            )
        if not include_warnings:
            return
        warned = [limit for limit in limits if limit.state() == MetricState.WARNING]
        if warned:
            nearest = max(warned, key=lambda limit: limit.utilization)
            raise LimitWarning(
                nearest.metric, nearest.current_value, nearest.warning_threshold, Severity.LOW.value
            )

    # ========================================================================
    # Circuit breakers
    # ========================================================================

    def _evaluate_circuit_breakers(
        self,
        snapshot: RiskSnapshot,
        positions: Sequence[Position],
        stats: Mapping[str, MarketStats],
        price_history: Optional[metrics.PriceHistory],
    ) -> None:
        for limit in build_limits(snapshot, self.risk_config):
            if limit.metric not in BREAKER_METRICS or limit.current_value <= limit.limit:
                continue
            if not self._breakers.try_trip(limit.metric, snapshot.timestamp):
                continue

            with self._lock:
                self._metric_states[limit.metric] = MetricState.CIRCUIT_BROKEN

            volatilities = self._asset_volatilities(positions, stats, price_history)
            action = emergency_action(limit.metric, positions, volatilities, self.risk_config)

            self._create_alert(
                type=AlertType.LIMIT_BREACH,
                severity=Severity.CRITICAL,
                metric=limit.metric,
                value=limit.current_value,
                threshold=limit.limit,
                message=(
                    f"CIRCUIT BREAKER: {limit.metric} at {limit.current_value:.2%} "
                    f"exceeds {limit.limit:.2%}. {action.message}"
                ),
                recommended_action=RECOMMENDED_ACTIONS[limit.metric],
                auto_triggered=True,
            )

            with self._lock:
                self._pending_actions.append(action)
            if self.on_action is not None:
                self.on_action(action)

    def _asset_volatilities(
        self,
        positions: Sequence[Position],
        stats: Mapping[str, MarketStats],
        price_history: Optional[metrics.PriceHistory],
    ) -> Dict[str, float]:
        volatilities = {s: st.volatility for s, st in stats.items()}
        missing = [p.symbol for p in positions if p.symbol not in volatilities]
        if missing:
            returns = metrics.asset_returns(price_history, missing, self.history_window)
            for symbol in returns.columns:
                volatilities[symbol] = metrics.annualized_volatility(returns[symbol].values)
        return volatilities

    def drain_actions(self) -> List[CircuitBreakerAction]:
        """Pending emergency actions since the last drain."""
        with self._lock:
            actions = self._pending_actions
            self._pending_actions = []
        return actions

    def reset_circuit_breakers(self) -> None:
        """Clear all tripped breakers (manual intervention)."""
        cleared = self._breakers.reset()
        with self._lock:
            for metric in cleared:
                if self._metric_states.get(metric) == MetricState.CIRCUIT_BROKEN:
                    self._metric_states[metric] = MetricState.NORMAL
        logger.info("Circuit breakers reset", extra={"extra_fields": {"cleared": cleared}})

    def get_circuit_breaker_status(self) -> Dict:
        tripped = self._breakers.tripped()
        with self._lock:
            last_update = self._last_update
        return {
            "triggered": sorted(tripped),
            "trip_times": {metric: when.isoformat() for metric, when in tripped.items()},
            "enabled": self.enable_circuit_breakers,
            "last_update": last_update.isoformat() if last_update else None,
        }

    def get_risk_budget(self) -> RiskBudget:
        """
        Allocation limits implied by tripped breakers.

        - Daily Loss tripped: trading halted
        - Value at Risk tripped: max position size cut by the VaR reduction fraction
        - Maximum Drawdown tripped: risk aversion scaled by 1 / (1 - liquidation fraction)
        """
        tripped = self._breakers.tripped()
        max_position = self.risk_config.get("MAX_POSITION_SIZE", 0.10)
        multiplier = 1.0

        if VALUE_AT_RISK in tripped:
            max_position *= 1.0 - self.risk_config.get("VAR_REDUCTION_FRACTION", 0.25)
        if MAX_DRAWDOWN in tripped:
            fraction = self.risk_config.get("DRAWDOWN_LIQUIDATION_FRACTION", 0.5)
            multiplier = 1.0 / max(1.0 - fraction, 1e-6)

        return RiskBudget(
            trading_halted=DAILY_LOSS in tripped,
            max_position_size=float(np.clip(max_position, 1e-6, 1.0)),
            risk_aversion_multiplier=multiplier,
            tripped_breakers=tuple(sorted(tripped)),
            as_of=datetime.now(timezone.utc),
        )

    # ========================================================================
    # Stress testing and lifecycle
    # ========================================================================

    def run_stress_tests(self, positions: Sequence[Position]) -> List[StressTestResult]:
        """Apply every configured scenario to copies of ``positions``."""
        return self._stress_tester.run(positions, self.current_snapshot)

    def reset(self) -> None:
        """Drop snapshot, alerts, metric states, pending actions and breakers."""
        self._breakers.reset()
        with self._lock:
            self._reset_state()
        logger.info("Risk monitor reset")
