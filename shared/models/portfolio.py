"""
Portfolio position snapshot.

Positions are owned by the external trading engine. The risk monitor and
the allocator only read them; any hypothetical change (stress tests) is
applied to a copy via ``model_copy``.
"""

from typing import Annotated
from pydantic import Field

from shared.models.base import BaseModel, SymbolMixin


class Position(BaseModel, SymbolMixin):
    """
    Live position in a single symbol.

    Example:
        Position(
            symbol='AAPL',
            quantity=100,
            current_price=190.0,
            market_value=19000.0,
            weight=0.19,
            daily_pnl=-120.0,
            unrealized_pnl=1500.0,
            average_cost=175.0,
        )
    """

    quantity: Annotated[
        float,
        Field(description="Signed quantity held")
    ]

    current_price: Annotated[
        float,
        Field(gt=0.0, description="Current market price")
    ]

    market_value: Annotated[
        float,
        Field(description="quantity x current_price")
    ]

    weight: Annotated[
        float,
        Field(default=0.0, description="Portfolio weight as reported by the trading engine")
    ]

    daily_pnl: Annotated[
        float,
        Field(default=0.0, description="P&L since the previous close")
    ]

    unrealized_pnl: Annotated[
        float,
        Field(default=0.0, description="Unrealized P&L versus average cost")
    ]

    average_cost: Annotated[
        float,
        Field(default=0.0, ge=0.0, description="Average entry price")
    ]

    @property
    def cost_basis(self) -> float:
        return abs(self.quantity) * self.average_cost

    @property
    def unrealized_return(self) -> float:
        """Unrealized P&L relative to cost basis (0 when the basis is unknown)."""
        basis = self.cost_basis
        return self.unrealized_pnl / basis if basis > 0 else 0.0

    def with_price(self, price: float) -> "Position":
        """Copy of this position revalued at ``price``."""
        return self.model_copy(update={
            "current_price": price,
            "market_value": self.quantity * price,
            "unrealized_pnl": self.quantity * (price - self.average_cost),
        })
