"""
Risk limit definitions.

Each cycle the monitor turns the current snapshot into a list of
``RiskLimit`` records and classifies every metric as NORMAL, WARNING or
BREACHED against its warning threshold and hard limit.
"""

from dataclasses import dataclass
from typing import Dict, List

from shared.models import AlertType, MetricState, RiskSnapshot, Severity

VALUE_AT_RISK = "Value at Risk"
MAX_DRAWDOWN = "Maximum Drawdown"
DAILY_LOSS = "Daily Loss"
VOLATILITY = "Portfolio Volatility"
CONCENTRATION = "Concentration Risk"
CORRELATION = "Correlation Risk"
LIQUIDITY = "Liquidity Risk"
POSITION_SIZE = "Position Size"

# Metrics allowed to trip a circuit breaker
BREAKER_METRICS = (VALUE_AT_RISK, MAX_DRAWDOWN, DAILY_LOSS)

RECOMMENDED_ACTIONS: Dict[str, str] = {
    VALUE_AT_RISK: "Reduce high-risk positions immediately",
    MAX_DRAWDOWN: "Liquidate worst-performing positions",
    DAILY_LOSS: "Halt new trades and reduce exposure",
    VOLATILITY: "Reduce position sizes or hedge volatility exposure",
    CONCENTRATION: "Diversify holdings to reduce concentration",
    CORRELATION: "Add uncorrelated assets or reduce correlated exposure",
    LIQUIDITY: "Shift exposure toward more liquid assets",
}

MONITOR_ACTION = "Monitor closely"


@dataclass(frozen=True)
class RiskLimit:
    """A single metric checked against its warning threshold and hard limit."""

    metric: str
    current_value: float
    limit: float
    warning_threshold: float
    breach_severity: Severity
    breach_alert_type: AlertType = AlertType.LIMIT_BREACH
    warning_alert_type: AlertType = AlertType.LIMIT_BREACH

    @property
    def circuit_breaker(self) -> bool:
        return self.metric in BREAKER_METRICS

    @property
    def utilization(self) -> float:
        """Current value as a fraction of the hard limit."""
        if self.limit <= 0:
            return float("inf")
        return self.current_value / self.limit

    def state(self) -> MetricState:
        if self.current_value > self.limit:
            return MetricState.BREACHED
        if self.current_value > self.warning_threshold:
            return MetricState.WARNING
        return MetricState.NORMAL

    def recommended_action(self) -> str:
        return RECOMMENDED_ACTIONS.get(self.metric, "Review risk exposure")


def build_limits(snapshot: RiskSnapshot, risk_config: Dict) -> List[RiskLimit]:
    """
    Build the limit table for ``snapshot`` from the ``RISK`` config section.

    Args:
        snapshot: Current risk snapshot
        risk_config: ``config["RISK"]``

    Returns:
        One ``RiskLimit`` per tracked metric
    """
    warning_ratio = risk_config.get("WARNING_RATIO", 0.8)

    max_var = risk_config.get("MAX_VAR", 0.03)
    max_drawdown = risk_config.get("MAX_DRAWDOWN", 0.15)
    max_daily_loss = risk_config.get("MAX_DAILY_LOSS", 0.05)
    max_volatility = risk_config.get("VOLATILITY_THRESHOLD", 0.5)
    max_concentration = risk_config.get("MAX_CONCENTRATION", 0.5)
    max_correlation = risk_config.get("CORRELATION_THRESHOLD", 0.8)
    max_liquidity = risk_config.get("MAX_LIQUIDITY_RISK", 0.5)

    return [
        RiskLimit(
            metric=VALUE_AT_RISK,
            current_value=snapshot.var_95,
            limit=max_var,
            warning_threshold=max_var * warning_ratio,
            breach_severity=Severity.HIGH,
        ),
        RiskLimit(
            metric=MAX_DRAWDOWN,
            current_value=snapshot.max_drawdown,
            limit=max_drawdown,
            warning_threshold=max_drawdown * warning_ratio,
            breach_severity=Severity.CRITICAL,
            warning_alert_type=AlertType.DRAWDOWN_WARNING,
        ),
        RiskLimit(
            metric=DAILY_LOSS,
            current_value=snapshot.daily_loss,
            limit=max_daily_loss,
            warning_threshold=max_daily_loss * warning_ratio,
            breach_severity=Severity.CRITICAL,
        ),
        RiskLimit(
            metric=VOLATILITY,
            current_value=snapshot.volatility,
            limit=max_volatility,
            warning_threshold=max_volatility * warning_ratio,
            breach_severity=Severity.MEDIUM,
        ),
        RiskLimit(
            metric=CONCENTRATION,
            current_value=snapshot.concentration_risk,
            limit=max_concentration,
            warning_threshold=risk_config.get("CONCENTRATION_WARNING", 0.4),
            breach_severity=Severity.MEDIUM,
        ),
        RiskLimit(
            metric=CORRELATION,
            current_value=snapshot.correlation_risk,
            limit=max_correlation,
            warning_threshold=max_correlation * 0.9,
            breach_severity=Severity.HIGH,
            breach_alert_type=AlertType.CORRELATION_SPIKE,
        ),
        RiskLimit(
            metric=LIQUIDITY,
            current_value=snapshot.liquidity_risk,
            limit=max_liquidity,
            warning_threshold=max_liquidity * warning_ratio,
            breach_severity=Severity.MEDIUM,
            breach_alert_type=AlertType.LIQUIDITY_STRESS,
        ),
    ]
