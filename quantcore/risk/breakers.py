"""Circuit breaker registry and emergency action policy."""

import threading
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from quantcore.risk.limits import DAILY_LOSS, MAX_DRAWDOWN, VALUE_AT_RISK
from shared.models import ActionKind, CircuitBreakerAction, Position


class CircuitBreakerRegistry:
    """
    Tripped-breaker registry shared between monitoring threads.

    A breaker trips at most once per episode:
    - ``try_trip`` is an atomic check-and-set
    - only ``reset`` clears tripped breakers
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tripped: Dict[str, datetime] = {}

    def try_trip(self, metric: str, when: Optional[datetime] = None) -> bool:
        """Trip ``metric``; True only if it was not already tripped."""
        with self._lock:
            if metric in self._tripped:
                return False
            self._tripped[metric] = when or datetime.now(timezone.utc)
            return True

    def is_tripped(self, metric: str) -> bool:
        with self._lock:
            return metric in self._tripped

    def tripped(self) -> Dict[str, datetime]:
        """Copy of tripped metrics and their trip times."""
        with self._lock:
            return dict(self._tripped)

    def reset(self) -> List[str]:
        """Clear all breakers; returns the metrics that were tripped."""
        with self._lock:
            cleared = list(self._tripped)
            self._tripped.clear()
            return cleared

    def __contains__(self, metric: str) -> bool:
        return self.is_tripped(metric)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tripped)


def emergency_action(
    metric: str,
    positions: Sequence[Position],
    volatilities: Mapping[str, float],
    risk_config: Dict,
) -> CircuitBreakerAction:
    """
    Emergency risk-reduction signal for a newly tripped breaker.

    - Value at Risk: cut above-median-volatility positions by 25%
    - Maximum Drawdown: liquidate the worst-performing half (by unrealized return)
    - Daily Loss: halt new trades and cut all exposure by 30%
    """
    if metric == VALUE_AT_RISK:
        fraction = risk_config.get("VAR_REDUCTION_FRACTION", 0.25)
        known = [volatilities[p.symbol] for p in positions if p.symbol in volatilities]
        median = float(np.median(known)) if known else 0.0
        targets = tuple(p.symbol for p in positions if volatilities.get(p.symbol, 0.0) > median)
        return CircuitBreakerAction(
            metric=metric,
            kind=ActionKind.REDUCE_HIGH_RISK,
            fraction=fraction,
            symbols=targets,
            message=f"Reduce {len(targets)} high-volatility positions by {fraction:.0%}",
        )

    if metric == MAX_DRAWDOWN:
        fraction = risk_config.get("DRAWDOWN_LIQUIDATION_FRACTION", 0.5)
        ranked = sorted(positions, key=lambda p: p.unrealized_return)
        count = int(np.ceil(len(ranked) * fraction)) if ranked else 0
        targets = tuple(p.symbol for p in ranked[:count])
        return CircuitBreakerAction(
            metric=metric,
            kind=ActionKind.LIQUIDATE_WORST,
            fraction=fraction,
            symbols=targets,
            message=f"Liquidate {len(targets)} worst-performing positions",
        )

    if metric == DAILY_LOSS:
        fraction = risk_config.get("DAILY_LOSS_REDUCTION_FRACTION", 0.30)
        return CircuitBreakerAction(
            metric=metric,
            kind=ActionKind.HALT_AND_REDUCE,
            fraction=fraction,
            symbols=tuple(p.symbol for p in positions),
            halt_new_trades=True,
            message=f"Halt new trades and reduce exposure by {fraction:.0%}",
        )

    raise ValueError(f"No circuit breaker defined for metric '{metric}'")
