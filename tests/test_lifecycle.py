"""Tests for challenge provisioning, rule enforcement, daily reset and phase advancement."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import text

from propdesk.errors import PhaseTransitionError
from propdesk.models import ChallengePhase, ChallengeStatus, Direction
from propdesk.services.lifecycle import (
    advance_phase,
    enforce_rules,
    provision_challenge,
    run_daily_reset,
)
from propdesk.services.risk import RiskVerdict

D = Decimal


# ============================================================================
# Provisioning
# ============================================================================


@pytest.mark.asyncio
async def test_provision_challenge(test_session, trader):
    challenge = await provision_challenge(test_session, trader.id, "25k")

    assert challenge.phase == ChallengePhase.CHALLENGE
    assert challenge.status == ChallengeStatus.ACTIVE
    assert challenge.tier == "25k"
    assert challenge.starting_balance == D("25000")
    assert challenge.current_balance == D("25000")
    assert challenge.high_water_mark == D("25000")
    assert challenge.start_of_day_equity == D("25000")
    assert challenge.ends_at == challenge.started_at + timedelta(days=30)
    assert challenge.rules.max_total_drawdown == D("2500.00")
    assert challenge.rules_config["max_daily_drawdown"] == "1250.00"


@pytest.mark.asyncio
async def test_provision_unknown_tier(test_session, trader):
    with pytest.raises(ValueError, match="Unknown tier"):
        await provision_challenge(test_session, trader.id, "1m")


@pytest.mark.asyncio
async def test_enums_stored_by_value(test_session, challenge):
    row = (
        await test_session.execute(
            text("SELECT phase, status FROM challenges WHERE id = :id"), {"id": challenge.id}
        )
    ).one()

    assert tuple(row) == ("challenge", "active")


# ============================================================================
# Rule enforcement
# ============================================================================


@pytest.mark.asyncio
async def test_profit_target_passes_challenge(test_session, oracle, challenge):
    challenge.current_balance = D("11000")

    snapshot = await enforce_rules(test_session, oracle, challenge)

    assert snapshot.verdict == RiskVerdict.PASS
    assert challenge.status == ChallengeStatus.PASSED
    assert challenge.status_reason == "Profit target reached"
    assert challenge.high_water_mark == D("11000")


@pytest.mark.asyncio
async def test_daily_loss_fails_challenge(test_session, oracle, challenge):
    challenge.current_balance = D("9400")

    snapshot = await enforce_rules(test_session, oracle, challenge)

    assert snapshot.daily_pnl == D("-600.00")
    assert challenge.status == ChallengeStatus.FAILED
    assert challenge.status_reason == "Daily loss limit breached"
    assert challenge.high_water_mark == D("10000")


@pytest.mark.asyncio
async def test_high_water_mark_tracks_equity(test_session, oracle, challenge, make_position):
    await make_position(challenge.id, "mkt-1", Direction.YES, "0.40", "1000")
    await oracle.publish_quote("mkt-1", "0.60")

    snapshot = await enforce_rules(test_session, oracle, challenge)

    # 10,000 cash plus 600 of open position
    assert snapshot.equity == D("10600.00")
    assert challenge.high_water_mark == D("10600.00")
    assert challenge.status == ChallengeStatus.ACTIVE


@pytest.mark.asyncio
async def test_terminal_status_is_not_overwritten(test_session, oracle, challenge):
    challenge.status = ChallengeStatus.FAILED
    challenge.status_reason = "Max drawdown breached"
    challenge.current_balance = D("11000")

    snapshot = await enforce_rules(test_session, oracle, challenge)

    assert snapshot.verdict == RiskVerdict.PASS
    assert challenge.status == ChallengeStatus.FAILED
    assert challenge.status_reason == "Max drawdown breached"


# ============================================================================
# Daily reset
# ============================================================================


@pytest.mark.asyncio
async def test_daily_reset_snapshots_equity(test_session, oracle, challenge, make_position):
    next_day = challenge.started_at + timedelta(days=1)
    await make_position(challenge.id, "mkt-1", Direction.YES, "0.40", "25")
    await oracle.publish_quote("mkt-1", "0.60")

    result = await run_daily_reset(test_session, oracle, now=next_day)

    assert result.challenges_checked == 1
    assert result.challenges_reset == 1
    assert result.errors == []

    await test_session.refresh(challenge)
    assert challenge.start_of_day_balance == D("10000.00")
    assert challenge.start_of_day_equity == D("10015.00")
    assert challenge.high_water_mark == D("10015.00")
    assert challenge.last_daily_reset_at == next_day


@pytest.mark.asyncio
async def test_daily_reset_runs_once_per_day(test_session, oracle, challenge):
    morning = (challenge.started_at + timedelta(days=1)).replace(hour=0, minute=5)

    first = await run_daily_reset(test_session, oracle, now=morning)
    second = await run_daily_reset(test_session, oracle, now=morning.replace(hour=23))

    assert first.challenges_reset == 1
    assert second.challenges_reset == 0
    assert second.challenges_skipped == 1


@pytest.mark.asyncio
async def test_daily_reset_closes_expired_challenges(test_session, oracle, trader, challenge):
    funded = await provision_challenge(test_session, trader.id, "10k", phase=ChallengePhase.FUNDED)
    late = challenge.started_at + timedelta(days=31)

    result = await run_daily_reset(test_session, oracle, now=late)

    assert result.challenges_checked == 2
    assert result.challenges_expired == 1
    assert result.challenges_reset == 1

    await test_session.refresh(challenge)
    assert challenge.status == ChallengeStatus.CLOSED
    assert challenge.status_reason == "Challenge period ended"
    # Funded accounts have no deadline
    await test_session.refresh(funded)
    assert funded.status == ChallengeStatus.ACTIVE


@pytest.mark.asyncio
async def test_daily_reset_ignores_inactive_challenges(test_session, oracle, challenge):
    challenge.status = ChallengeStatus.FAILED
    next_day = challenge.started_at + timedelta(days=1)
    await test_session.commit()

    result = await run_daily_reset(test_session, oracle, now=next_day)

    assert result.challenges_checked == 0


# ============================================================================
# Phase advancement
# ============================================================================


@pytest.mark.asyncio
async def test_advance_passed_challenge(test_session, challenge):
    challenge.status = ChallengeStatus.PASSED
    challenge.current_balance = D("11000")
    await test_session.commit()

    successor = await advance_phase(test_session, challenge.id)

    assert successor.id != challenge.id
    assert successor.phase == ChallengePhase.VERIFICATION
    assert successor.status == ChallengeStatus.ACTIVE
    assert successor.previous_challenge_id == challenge.id
    assert successor.starting_balance == D("10000")
    assert successor.rules.profit_target == D("500.00")
    assert successor.ends_at == successor.started_at + timedelta(days=60)

    # The passed challenge keeps its state
    await test_session.refresh(challenge)
    assert challenge.status == ChallengeStatus.PASSED
    assert challenge.current_balance == D("11000.00")


@pytest.mark.asyncio
async def test_advance_only_once(test_session, challenge):
    challenge.status = ChallengeStatus.PASSED
    await test_session.commit()
    challenge_id = challenge.id

    await advance_phase(test_session, challenge_id)
    with pytest.raises(PhaseTransitionError, match="already advanced"):
        await advance_phase(test_session, challenge_id)


@pytest.mark.asyncio
async def test_advance_requires_passed_status(test_session, challenge):
    with pytest.raises(PhaseTransitionError, match="Only passed"):
        await advance_phase(test_session, challenge.id)


@pytest.mark.asyncio
async def test_advance_requires_flat_book(test_session, challenge, make_position):
    challenge.status = ChallengeStatus.PASSED
    await test_session.commit()
    await make_position(challenge.id, "mkt-1", Direction.YES, "0.40", "25")

    with pytest.raises(PhaseTransitionError, match="open positions"):
        await advance_phase(test_session, challenge.id)


@pytest.mark.asyncio
async def test_funded_has_no_next_phase(test_session, trader):
    funded = await provision_challenge(test_session, trader.id, "10k", phase=ChallengePhase.FUNDED)
    funded.status = ChallengeStatus.PASSED
    await test_session.commit()

    with pytest.raises(PhaseTransitionError, match="no next phase"):
        await advance_phase(test_session, funded.id)
