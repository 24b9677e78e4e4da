"""
SQLAlchemy models for the trading engine.

This module exports all models and the Base class for easy imports:
    from propdesk.models import Base, Trader, Challenge, Position, Trade
"""

from propdesk.database import Base
from propdesk.models.trader import Trader
from propdesk.models.challenge import Challenge, ChallengePhase, ChallengeStatus
from propdesk.models.position import Direction, Position, PositionStatus
from propdesk.models.trade import Trade, TradeSide

__all__ = [
    "Base",
    "Trader",
    "Challenge",
    "ChallengePhase",
    "ChallengeStatus",
    "Position",
    "Direction",
    "PositionStatus",
    "Trade",
    "TradeSide",
]
