"""
Market data models.

Defines:
- Observation: one asset, one period (return + characteristic vector)
- MarketStats: per-asset trading statistics consumed by the risk monitor
  and the allocator (price, volume, spread, volatility, liquidity)

All models are immutable and validated for logical consistency.
"""

from typing import Annotated, Optional, Tuple
from pydantic import Field, field_validator

from shared.models.base import BaseModel, TimestampMixin, SymbolMixin


class Observation(BaseModel, TimestampMixin, SymbolMixin):
    """
    A single (asset, period) record of the training panel.

    Immutable once recorded. ``characteristics`` holds the L observable
    features (momentum, volatility, liquidity, ...) in a fixed order.

    Example:
        Observation(
            timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc),
            symbol='AAPL',
            asset_return=0.012,
            characteristics=(0.05, 0.22, 0.9, 1.1),
        )
    """

    asset_return: Annotated[
        float,
        Field(description="Simple return of the asset over the period")
    ]

    characteristics: Annotated[
        Tuple[float, ...],
        Field(
            min_length=1,
            description="Characteristic vector (L features)"
        )
    ]

    @field_validator('asset_return')
    @classmethod
    def validate_finite_return(cls, v: float) -> float:
        if v != v or v in (float('inf'), float('-inf')):
            raise ValueError("asset_return must be finite")
        return v


class MarketStats(BaseModel, SymbolMixin):
    """
    Per-asset market statistics.

    ``average_daily_volume`` is expressed in dollars so it can be compared
    with the allocator's liquidity floor and with trade notionals.
    ``volatility`` is annualized.
    """

    price: Annotated[
        float,
        Field(gt=0.0, description="Last traded price")
    ]

    volume: Annotated[
        float,
        Field(ge=0.0, description="Current session volume")
    ]

    spread: Annotated[
        float,
        Field(ge=0.0, description="Quoted bid/ask spread in price units")
    ]

    volatility: Annotated[
        float,
        Field(ge=0.0, description="Annualized volatility")
    ]

    market_cap: Annotated[
        float,
        Field(default=0.0, ge=0.0, description="Market capitalization")
    ]

    average_daily_volume: Annotated[
        float,
        Field(ge=0.0, description="Average daily traded value (dollars)")
    ]

    liquidity_score: Annotated[
        float,
        Field(ge=0.0, le=1.0, description="Liquidity score in [0, 1], 1 = most liquid")
    ]

    sector: Annotated[
        Optional[str],
        Field(default=None, max_length=50, description="Sector classification")
    ]

    beta: Annotated[
        Optional[float],
        Field(default=None, description="Beta versus the market, if known")
    ]

    @property
    def relative_spread(self) -> float:
        """Spread as a fraction of price."""
        return self.spread / self.price
