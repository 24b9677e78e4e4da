"""
Trader model - the owner of one or more challenges.

Login and sessions live in the web layer. The engine only needs an
owner identity and an API key hash to check that a request acting on a
challenge comes from its owner.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from propdesk.database import Base


class Trader(Base):
    """A person who buys and trades evaluation accounts."""

    __tablename__ = "traders"

    # Primary key: unique trader identifier
    id: Mapped[str] = mapped_column(String, primary_key=True)

    # API key hash for authentication (SHA-256 hash of the API key)
    api_key_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    challenges: Mapped[list["Challenge"]] = relationship(back_populates="owner")

    def __repr__(self) -> str:
        return f"Trader(id={self.id!r})"


# Import at end to avoid circular imports
from propdesk.models.challenge import Challenge
