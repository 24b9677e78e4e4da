"""Risk and rule evaluation.

Everything here is a pure function of its arguments: no session, no
oracle, no clock. Callers gather equity and baselines, and this module
decides what they mean.

Ratios are guarded against zero or missing limits (usage reads as 0 rather
than raising), and daily P&L stays None until the account has a
start-of-day equity snapshot. A cash-only baseline is never substituted.
"""

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from propdesk.errors import InsufficientFundsError, RiskLimitExceededError
from propdesk.money import HUNDRED, ZERO, to_money
from propdesk.rules import RulesConfig

# Usage (percent of a limit) at which the account is flagged
WARN_USAGE = Decimal("80")

_PCT = Decimal("0.01")


class RiskVerdict(enum.Enum):
    OK = "ok"
    WARN = "warn"  # 80% or more of a loss limit used
    PASS = "pass"  # Profit target reached
    FAIL = "fail"  # Hard loss limit breached


@dataclass(frozen=True)
class RiskSnapshot:
    """Point-in-time risk state of one account."""

    equity: Decimal
    total_pnl: Decimal
    drawdown_amount: Decimal
    drawdown_usage: Decimal
    daily_pnl: Decimal | None
    daily_drawdown_amount: Decimal
    daily_drawdown_usage: Decimal
    profit_progress: Decimal
    verdict: RiskVerdict
    reason: str | None = None


def _usage(amount: Decimal, limit: Decimal | None) -> Decimal:
    """Amount as a percentage of limit; 0 when there is no usable limit."""
    if not limit or limit <= 0:
        return ZERO
    return amount / limit * HUNDRED


def evaluate_risk(
    rules: RulesConfig,
    equity: Decimal,
    starting_balance: Decimal,
    high_water_mark: Decimal,
    start_of_day_equity: Decimal | None,
    phase: str = "challenge",
) -> RiskSnapshot:
    """Compute drawdown, daily loss and profit progress for an account.

    Args:
        rules: The account's rules (absolute dollar thresholds)
        equity: Cash plus market value of open positions
        starting_balance: Balance the account was provisioned with
        high_water_mark: Peak equity seen so far
        start_of_day_equity: Equity at the last daily reset, or None
        phase: "challenge", "verification" or "funded"; funded accounts
            have no profit target and never PASS

    Returns:
        RiskSnapshot with a verdict of FAIL, PASS, WARN or OK
    """
    total_pnl = equity - starting_balance

    peak = max(high_water_mark, equity)
    drawdown_amount = max(ZERO, peak - equity)
    drawdown_usage = _usage(drawdown_amount, rules.max_total_drawdown)

    if start_of_day_equity is None:
        daily_pnl = None
        daily_drawdown_amount = ZERO
    else:
        daily_pnl = equity - start_of_day_equity
        daily_drawdown_amount = max(ZERO, start_of_day_equity - equity)
    daily_drawdown_usage = _usage(daily_drawdown_amount, rules.max_daily_drawdown)

    profit_progress = min(HUNDRED, max(ZERO, _usage(total_pnl, rules.profit_target)))

    if drawdown_usage >= HUNDRED:
        verdict, reason = RiskVerdict.FAIL, "Max drawdown breached"
    elif daily_drawdown_usage >= HUNDRED:
        verdict, reason = RiskVerdict.FAIL, "Daily loss limit breached"
    elif phase != "funded" and rules.profit_target and profit_progress >= HUNDRED:
        verdict, reason = RiskVerdict.PASS, "Profit target reached"
    elif drawdown_usage >= WARN_USAGE or daily_drawdown_usage >= WARN_USAGE:
        verdict, reason = RiskVerdict.WARN, "Approaching loss limit"
    else:
        verdict, reason = RiskVerdict.OK, None

    return RiskSnapshot(
        equity=to_money(equity),
        total_pnl=to_money(total_pnl),
        drawdown_amount=to_money(drawdown_amount),
        drawdown_usage=drawdown_usage.quantize(_PCT),
        daily_pnl=to_money(daily_pnl) if daily_pnl is not None else None,
        daily_drawdown_amount=to_money(daily_drawdown_amount),
        daily_drawdown_usage=daily_drawdown_usage.quantize(_PCT),
        profit_progress=profit_progress.quantize(_PCT),
        verdict=verdict,
        reason=reason,
    )


def validate_trade(
    rules: RulesConfig,
    snapshot: RiskSnapshot,
    *,
    amount: Decimal,
    cash: Decimal,
    starting_balance: Decimal,
    market_exposure: Decimal = ZERO,
    market_categories: Iterable[str] = (),
    category_exposure: Mapping[str, Decimal] | None = None,
    open_position_count: int = 0,
    opens_new_position: bool = True,
    market_volume: Decimal | None = None,
) -> None:
    """Check a prospective BUY against the account's limits.

    Exposures are cost basis of open positions, in dollars. Volume rules
    are skipped when the market's volume is unknown.

    Raises:
        RiskLimitExceededError: If the account is already in breach or the
            order would exceed a position, category, count, low-volume,
            liquidity or minimum-volume limit
        InsufficientFundsError: If the order costs more than available cash
    """
    if snapshot.verdict == RiskVerdict.FAIL:
        raise RiskLimitExceededError(f"Account is in breach: {snapshot.reason}")

    if amount > cash:
        raise InsufficientFundsError(required=amount, available=cash)

    max_per_market = to_money(starting_balance * rules.max_position_size_pct)
    if market_exposure + amount > max_per_market:
        raise RiskLimitExceededError(
            f"Max per-market exposure exceeded. Current: ${market_exposure:.2f}, "
            f"Limit: ${max_per_market:.2f}",
            limit=str(max_per_market),
        )

    max_per_category = to_money(starting_balance * rules.max_category_exposure_pct)
    category_exposure = category_exposure or {}
    for category in market_categories:
        current = category_exposure.get(category, ZERO)
        if current + amount > max_per_category:
            raise RiskLimitExceededError(
                f"Max {category} exposure exceeded. Current: ${current:.2f}, "
                f"Limit: ${max_per_category:.2f}",
                category=category,
                limit=str(max_per_category),
            )

    if (
        opens_new_position
        and rules.max_open_positions is not None
        and open_position_count >= rules.max_open_positions
    ):
        raise RiskLimitExceededError(
            f"Max open positions reached ({rules.max_open_positions})",
            limit=rules.max_open_positions,
        )

    if market_volume is None:
        return

    if (
        rules.low_volume_threshold is not None
        and rules.low_volume_max_position_pct is not None
        and market_volume < rules.low_volume_threshold
    ):
        low_volume_max = to_money(starting_balance * rules.low_volume_max_position_pct)
        if amount > low_volume_max:
            raise RiskLimitExceededError(
                f"Low-volume market (<${rules.low_volume_threshold:,.0f}). "
                f"Max position: ${low_volume_max:.2f}",
                limit=str(low_volume_max),
                volume=str(market_volume),
            )

    if rules.max_volume_impact_pct is not None:
        max_impact = to_money(market_volume * rules.max_volume_impact_pct)
        if amount > max_impact:
            raise RiskLimitExceededError(
                f"Trade too large for market liquidity. Max: ${max_impact:.2f} "
                f"({rules.max_volume_impact_pct * 100:.0f}% of ${market_volume:,.0f} volume)",
                limit=str(max_impact),
                volume=str(market_volume),
            )

    if rules.min_market_volume is not None and market_volume < rules.min_market_volume:
        raise RiskLimitExceededError(
            f"Market volume too low (<${rules.min_market_volume:,.0f}). Trading blocked.",
            volume=str(market_volume),
        )
