"""
Real-time risk monitoring: metrics, limits, circuit breakers and stress tests.
"""

from .breakers import CircuitBreakerRegistry, emergency_action
from .limits import BREAKER_METRICS, RiskLimit, build_limits
from .monitor import RealTimeRiskMonitor
from .stress import StressTester, apply_scenario, load_scenarios

__all__ = [
    'RealTimeRiskMonitor',
    'CircuitBreakerRegistry',
    'emergency_action',
    'RiskLimit',
    'build_limits',
    'BREAKER_METRICS',
    'StressTester',
    'apply_scenario',
    'load_scenarios',
]
