"""Challenge lifecycle: provisioning, rule enforcement, the nightly reset
and phase advancement.

Status transitions happen in exactly two places: enforce_rules (FAILED or
PASSED, run after every balance mutation) and run_daily_reset (CLOSED when
an evaluation period runs out).
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk import telemetry
from propdesk.errors import ChallengeNotFoundError, PhaseTransitionError
from propdesk.models import Challenge, ChallengePhase, ChallengeStatus, Position, PositionStatus
from propdesk.money import utcnow
from propdesk.oracle import PriceOracle
from propdesk.rules import RulesConfig, tier_starting_balance
from propdesk.services.balance import lock_challenge
from propdesk.services.portfolio import get_equity, snapshot_for
from propdesk.services.risk import RiskSnapshot, RiskVerdict

logger = logging.getLogger(__name__)


def generate_challenge_id() -> str:
    return str(uuid.uuid4())


async def provision_challenge(
    session: AsyncSession,
    owner_id: str,
    tier: str,
    phase: ChallengePhase = ChallengePhase.CHALLENGE,
    previous_challenge_id: str | None = None,
    now: datetime | None = None,
) -> Challenge:
    """Create a challenge with rules built from the tier table.

    Args:
        session: Database session
        owner_id: Trader who owns the challenge
        tier: Tier name from the tier table
        phase: Evaluation phase of the new challenge
        previous_challenge_id: The challenge this one advances from
        now: Creation time (defaults to the current UTC time)

    Returns:
        The committed Challenge

    Raises:
        ValueError: If the tier or phase is unknown, or its rules are inconsistent
    """
    now = now or utcnow()
    rules = RulesConfig.from_tier(tier, phase.value)
    balance = tier_starting_balance(tier)
    rules.validate_for_balance(balance)

    challenge = Challenge(
        id=generate_challenge_id(),
        owner_id=owner_id,
        phase=phase,
        status=ChallengeStatus.ACTIVE,
        tier=tier,
        starting_balance=balance,
        current_balance=balance,
        high_water_mark=balance,
        start_of_day_balance=balance,
        start_of_day_equity=balance,
        rules_config=rules.model_dump(mode="json"),
        started_at=now,
        ends_at=now + timedelta(days=rules.duration_days) if rules.duration_days else None,
        last_daily_reset_at=now,
        previous_challenge_id=previous_challenge_id,
    )
    session.add(challenge)
    await session.commit()

    logger.info(
        "Challenge provisioned",
        extra={
            "challenge_id": challenge.id,
            "owner_id": owner_id,
            "tier": tier,
            "phase": phase.value,
            "starting_balance": str(balance),
        },
    )
    return challenge


def _transition(challenge: Challenge, status: ChallengeStatus, reason: str) -> None:
    previous = challenge.status
    challenge.status = status
    challenge.status_reason = reason
    logger.warning(
        "Challenge status changed",
        extra={
            "challenge_id": challenge.id,
            "from_status": previous.value,
            "to_status": status.value,
            "reason": reason,
        },
    )
    telemetry.record_status_transition(challenge.phase.value, status.value)


async def enforce_rules(
    session: AsyncSession, oracle: PriceOracle, challenge: Challenge
) -> RiskSnapshot:
    """Re-evaluate a challenge after a mutation and apply the verdict.

    Updates the high-water mark from live equity, then moves an ACTIVE
    challenge to FAILED on a breach or to PASSED when its profit target is
    met. Runs inside the caller's transaction and does not commit.

    Args:
        session: Database session (caller manages transaction)
        oracle: Price source for open positions
        challenge: The challenge, already loaded (ideally locked) in session

    Returns:
        The RiskSnapshot the decision was based on
    """
    valuation = await get_equity(session, oracle, challenge)
    if valuation.equity > challenge.high_water_mark:
        challenge.high_water_mark = valuation.equity

    snapshot = snapshot_for(challenge, valuation.equity)

    if challenge.status == ChallengeStatus.ACTIVE:
        if snapshot.verdict == RiskVerdict.FAIL:
            _transition(challenge, ChallengeStatus.FAILED, snapshot.reason)
        elif snapshot.verdict == RiskVerdict.PASS:
            _transition(challenge, ChallengeStatus.PASSED, snapshot.reason)
        elif snapshot.verdict == RiskVerdict.WARN:
            logger.info(
                "Challenge approaching loss limit",
                extra={
                    "challenge_id": challenge.id,
                    "drawdown_usage": str(snapshot.drawdown_usage),
                    "daily_drawdown_usage": str(snapshot.daily_drawdown_usage),
                },
            )

    telemetry.record_account_risk(challenge.id, snapshot.equity, snapshot.drawdown_usage)
    await session.flush()
    return snapshot


# ============================================================================
# Nightly reset
# ============================================================================


@dataclass
class DailyResetResult:
    challenges_checked: int = 0
    challenges_reset: int = 0
    challenges_skipped: int = 0
    challenges_expired: int = 0
    errors: list[str] = field(default_factory=list)


async def run_daily_reset(
    session: AsyncSession, oracle: PriceOracle, now: datetime | None = None
) -> DailyResetResult:
    """Snapshot start-of-day balance and equity for every active challenge.

    Challenges already reset on the current UTC day are skipped, so the job
    can be re-run safely. Evaluation challenges past their end date are
    closed instead of reset. Each challenge commits independently.

    Args:
        session: Database session; committed once per challenge
        oracle: Price source used to value open positions
        now: Reset time (defaults to the current UTC time)

    Returns:
        DailyResetResult with per-challenge counts and errors
    """
    now = now or utcnow()
    result = DailyResetResult()

    ids = (
        await session.execute(
            select(Challenge.id).where(Challenge.status == ChallengeStatus.ACTIVE)
        )
    ).scalars().all()
    await session.rollback()

    for challenge_id in ids:
        result.challenges_checked += 1
        try:
            challenge = await lock_challenge(session, challenge_id)
            if challenge is None or challenge.status != ChallengeStatus.ACTIVE:
                await session.rollback()
                continue

            if (
                challenge.ends_at is not None
                and challenge.phase != ChallengePhase.FUNDED
                and now >= challenge.ends_at
            ):
                _transition(challenge, ChallengeStatus.CLOSED, "Challenge period ended")
                result.challenges_expired += 1
            elif (
                challenge.last_daily_reset_at is not None
                and challenge.last_daily_reset_at.date() == now.date()
            ):
                result.challenges_skipped += 1
                await session.rollback()
                continue
            else:
                valuation = await get_equity(session, oracle, challenge)
                challenge.start_of_day_balance = challenge.current_balance
                challenge.start_of_day_equity = valuation.equity
                if valuation.equity > challenge.high_water_mark:
                    challenge.high_water_mark = valuation.equity
                challenge.last_daily_reset_at = now
                result.challenges_reset += 1

            await session.commit()
        except Exception as exc:
            await session.rollback()
            message = f"Failed to reset challenge {challenge_id[:8]}: {exc}"
            logger.error(message, extra={"challenge_id": challenge_id}, exc_info=True)
            result.errors.append(message)

    logger.info(
        "Daily reset complete",
        extra={
            "checked": result.challenges_checked,
            "reset": result.challenges_reset,
            "skipped": result.challenges_skipped,
            "expired": result.challenges_expired,
            "errors": len(result.errors),
        },
    )
    return result


# ============================================================================
# Phase advancement
# ============================================================================


async def advance_phase(
    session: AsyncSession, challenge_id: str, now: datetime | None = None
) -> Challenge:
    """Start the next phase for a PASSED challenge.

    The next phase is a new challenge row with a fresh balance and the
    rules of its phase, linked back through previous_challenge_id. The
    passed challenge keeps its balance and trade history untouched.

    Args:
        session: Database session
        challenge_id: The PASSED challenge
        now: Start time of the successor

    Returns:
        The new challenge

    Raises:
        ChallengeNotFoundError: If the challenge does not exist
        PhaseTransitionError: If the challenge has not passed, has no next
            phase, still holds open positions, or was already advanced
    """
    challenge = await lock_challenge(session, challenge_id)
    if challenge is None:
        raise ChallengeNotFoundError(challenge_id)

    if challenge.status != ChallengeStatus.PASSED:
        raise PhaseTransitionError(
            f"Only passed challenges can advance (status: {challenge.status.value})",
            challenge_id=challenge_id,
        )

    next_phase = challenge.phase.next
    if next_phase is None:
        raise PhaseTransitionError("Funded accounts have no next phase", challenge_id=challenge_id)

    if challenge.tier is None:
        raise PhaseTransitionError("Challenge has no tier", challenge_id=challenge_id)

    open_count = await session.scalar(
        select(func.count(Position.id)).where(
            Position.challenge_id == challenge_id,
            Position.status == PositionStatus.OPEN,
        )
    )
    if open_count:
        raise PhaseTransitionError(
            f"Close all {open_count} open positions before advancing",
            challenge_id=challenge_id,
        )

    successor_id = await session.scalar(
        select(Challenge.id).where(Challenge.previous_challenge_id == challenge_id)
    )
    if successor_id is not None:
        raise PhaseTransitionError(
            "Challenge was already advanced",
            challenge_id=challenge_id,
            successor_id=successor_id,
        )

    successor = await provision_challenge(
        session,
        owner_id=challenge.owner_id,
        tier=challenge.tier,
        phase=next_phase,
        previous_challenge_id=challenge.id,
        now=now,
    )
    logger.info(
        "Challenge advanced",
        extra={
            "challenge_id": challenge_id,
            "successor_id": successor.id,
            "phase": next_phase.value,
        },
    )
    return successor
