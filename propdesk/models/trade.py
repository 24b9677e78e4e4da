"""
Trade model - historical record of executed trades.

Single source of truth for trade history. Trades are append-only
(never modified or deleted) and every balance mutation caused by trading
has exactly one matching row here.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from propdesk.database import Base, enum_values
from propdesk.models.position import Direction


class TradeSide(enum.Enum):
    """Buy or sell."""

    BUY = "BUY"
    SELL = "SELL"


class Trade(Base):
    """One executed order against a challenge's balance."""

    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    challenge_id: Mapped[str] = mapped_column(
        String, ForeignKey("challenges.id"), nullable=False, index=True
    )
    position_id: Mapped[str] = mapped_column(
        String, ForeignKey("positions.id"), nullable=False, index=True
    )
    market_id: Mapped[str] = mapped_column(String, nullable=False)

    side: Mapped[TradeSide] = mapped_column(
        Enum(TradeSide, values_callable=enum_values), nullable=False
    )
    direction: Mapped[Direction] = mapped_column(
        Enum(Direction, values_callable=enum_values), nullable=False
    )

    # Dollars paid (BUY) or received (SELL)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # Direction-adjusted execution price
    price: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)

    shares: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)

    # Populated on SELL
    realized_pnl: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    executed_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    # manual_close, market_settlement; NULL for ordinary orders
    closure_reason: Mapped[str | None] = mapped_column(String, nullable=True)

    # Relationships
    challenge: Mapped["Challenge"] = relationship(back_populates="trades")
    position: Mapped["Position"] = relationship(back_populates="trades")

    # Database constraints
    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_trade_amount_non_negative"),
        CheckConstraint("shares > 0", name="check_trade_shares_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"Trade(id={self.id!r}, {self.side.value} {self.shares} {self.direction.value} "
            f"{self.market_id} @ {self.price}, amount={self.amount})"
        )


# Import at end to avoid circular imports
from propdesk.models.challenge import Challenge
from propdesk.models.position import Position
