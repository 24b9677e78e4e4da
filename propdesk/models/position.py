"""
Position model - a directional stake in a prediction market.

Prices are probabilities between 0 and 1. entry_price and closed_price are
stored for the side actually held, so a NO position bought while YES
trades at 0.65 has entry_price 0.35.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, DateTime, Enum, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from propdesk.database import Base, enum_values


class Direction(enum.Enum):
    """Which outcome the position pays out on."""

    YES = "YES"
    NO = "NO"


class PositionStatus(enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Position(Base):
    """Shares held on one side of one market by one challenge."""

    __tablename__ = "positions"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    challenge_id: Mapped[str] = mapped_column(
        String, ForeignKey("challenges.id"), nullable=False, index=True
    )
    market_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    direction: Mapped[Direction] = mapped_column(
        Enum(Direction, values_callable=enum_values), nullable=False
    )

    # Average direction-adjusted entry price
    entry_price: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)

    # Shares currently held; 0 once closed
    shares: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)

    # Cost basis in dollars for the shares currently held
    size_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # Market categories captured at BUY time; exposure limits sum over these
    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[PositionStatus] = mapped_column(
        Enum(PositionStatus, values_callable=enum_values),
        nullable=False,
        default=PositionStatus.OPEN,
        index=True,
    )

    opened_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    # Set on close
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    closed_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 6), nullable=True)
    pnl: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    # Relationships
    challenge: Mapped["Challenge"] = relationship(back_populates="positions")
    trades: Mapped[list["Trade"]] = relationship(back_populates="position")

    # Database constraints
    __table_args__ = (
        CheckConstraint("shares >= 0", name="check_shares_non_negative"),
        CheckConstraint("entry_price >= 0 AND entry_price <= 1", name="check_entry_price_range"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def __repr__(self) -> str:
        return (
            f"Position(id={self.id!r}, {self.direction.value} {self.shares} {self.market_id} "
            f"@ {self.entry_price}, status={self.status.value})"
        )


# Import at end to avoid circular imports
from propdesk.models.challenge import Challenge
from propdesk.models.trade import Trade
