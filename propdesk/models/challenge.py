"""
Challenge model - one evaluation or funded trading account.

A challenge holds virtual cash, a set of rules fixed at provisioning time
and the baselines the risk evaluator measures against:
- current_balance is cash only and never goes below zero (one cent of
  rounding tolerance aside)
- high_water_mark is the peak equity ever observed, not peak cash
- start_of_day_equity is snapshotted at provisioning and at every nightly
  reset; rows without a snapshot (NULL) have an unknown daily P&L
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, DateTime, Enum, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from propdesk.database import Base, enum_values
from propdesk.rules import RulesConfig


class ChallengePhase(enum.Enum):
    """Evaluation stage. Each phase is a separate challenge row."""

    CHALLENGE = "challenge"
    VERIFICATION = "verification"
    FUNDED = "funded"

    @property
    def next(self) -> "ChallengePhase | None":
        order = list(ChallengePhase)
        index = order.index(self)
        return order[index + 1] if index + 1 < len(order) else None


class ChallengeStatus(enum.Enum):
    """Account lifecycle status."""

    ACTIVE = "active"
    PASSED = "passed"  # Profit target met; waiting to advance
    FAILED = "failed"  # Hard risk rule breached
    CLOSED = "closed"  # Expired or retired


class Challenge(Base):
    """A trading account under evaluation (or funded)."""

    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    owner_id: Mapped[str] = mapped_column(
        String, ForeignKey("traders.id"), nullable=False, index=True
    )

    phase: Mapped[ChallengePhase] = mapped_column(
        Enum(ChallengePhase, values_callable=enum_values),
        nullable=False,
        default=ChallengePhase.CHALLENGE,
    )
    status: Mapped[ChallengeStatus] = mapped_column(
        Enum(ChallengeStatus, values_callable=enum_values),
        nullable=False,
        default=ChallengeStatus.ACTIVE,
        index=True,
    )

    # Money, all Numeric(15,2)
    starting_balance: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    current_balance: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    high_water_mark: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    start_of_day_balance: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    start_of_day_equity: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    # Tier the rules were built from ("5k", "10k", "25k")
    tier: Mapped[str | None] = mapped_column(String, nullable=True)

    # JSON dump of a validated RulesConfig; absolute dollar thresholds
    rules_config: Mapped[dict] = mapped_column(JSON, nullable=False)

    started_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_daily_reset_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Why the status last changed (e.g. "Max drawdown breached")
    status_reason: Mapped[str | None] = mapped_column(String, nullable=True)

    # The challenge this one was advanced from
    previous_challenge_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("challenges.id"), nullable=True
    )

    # Relationships
    owner: Mapped["Trader"] = relationship(back_populates="challenges")
    positions: Mapped[list["Position"]] = relationship(back_populates="challenge")
    trades: Mapped[list["Trade"]] = relationship(back_populates="challenge")

    # Database constraints
    __table_args__ = (
        CheckConstraint("current_balance >= -0.01", name="check_balance_non_negative"),
        CheckConstraint("starting_balance > 0", name="check_starting_balance_positive"),
    )

    @property
    def rules(self) -> RulesConfig:
        return RulesConfig.model_validate(self.rules_config)

    @property
    def is_active(self) -> bool:
        return self.status == ChallengeStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"Challenge(id={self.id!r}, phase={self.phase.value}, status={self.status.value}, "
            f"current_balance={self.current_balance})"
        )


# Import at end to avoid circular imports
from propdesk.models.position import Position
from propdesk.models.trade import Trade
from propdesk.models.trader import Trader
