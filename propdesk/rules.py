"""Strongly-typed challenge rules.

A challenge's rules are stored as a JSON dump of RulesConfig. Currency
thresholds are absolute dollar amounts and fractions carry a ``_pct``
suffix; the two kinds never share a field. Absolute amounts are derived
from the tier table once, when the challenge is provisioned, and are
never recomputed downstream.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from propdesk.money import to_money

TIERS_FILE = Path(__file__).parent / "data" / "tiers.yaml"

# Anything below a dollar in a currency field is almost certainly a
# fraction that was written into the wrong field.
MIN_ABSOLUTE_THRESHOLD = Decimal("1.00")

Fraction = Annotated[Decimal, Field(gt=0, le=1)]


class RulesConfig(BaseModel):
    """Risk and payout rules attached to one challenge."""

    model_config = ConfigDict(frozen=True)

    # Absolute currency thresholds
    profit_target: Decimal | None = Field(default=None, gt=0)
    max_total_drawdown: Decimal = Field(gt=0)
    max_daily_drawdown: Decimal = Field(gt=0)
    payout_cap: Decimal | None = Field(default=None, gt=0)

    # Fractions of starting balance
    max_position_size_pct: Fraction
    max_category_exposure_pct: Fraction
    profit_split_pct: Fraction

    # Counts and durations
    max_open_positions: int | None = Field(default=None, gt=0)
    duration_days: int | None = Field(default=None, gt=0)
    min_market_volume: Decimal | None = Field(default=None, ge=0)

    # Market liquidity: markets below low_volume_threshold cap a single
    # trade at low_volume_max_position_pct of the starting balance, and no
    # trade may exceed max_volume_impact_pct of the market's volume
    low_volume_threshold: Decimal | None = Field(default=None, ge=0)
    low_volume_max_position_pct: Fraction | None = None
    max_volume_impact_pct: Fraction | None = None

    @field_validator("profit_target", "max_total_drawdown", "max_daily_drawdown", "payout_cap")
    @classmethod
    def absolute_amount(cls, v: Decimal | None, info) -> Decimal | None:
        """Reject fractions written into dollar fields."""
        if v is None:
            return v
        if v < MIN_ABSOLUTE_THRESHOLD:
            raise ValueError(
                f"{info.field_name} must be an absolute dollar amount, got {v} "
                "(percentages belong in the *_pct fields)"
            )
        return to_money(v)

    def validate_for_balance(self, starting_balance: Decimal) -> None:
        """Check the absolute thresholds make sense for a starting balance.

        Raises:
            ValueError: If a drawdown or target is not smaller than the balance
        """
        for name in ("profit_target", "max_total_drawdown", "max_daily_drawdown"):
            value = getattr(self, name)
            if value is not None and value >= starting_balance:
                raise ValueError(
                    f"{name} ({value}) must be smaller than the starting balance ({starting_balance})"
                )
        if self.max_daily_drawdown > self.max_total_drawdown:
            raise ValueError("max_daily_drawdown cannot exceed max_total_drawdown")

    @classmethod
    def from_tier(cls, tier: str, phase: str) -> "RulesConfig":
        """Build absolute rules for a tier and phase from the tier table."""
        table = load_tier_table()
        if tier not in table.tiers:
            raise ValueError(f"Unknown tier: {tier}")
        definition = table.tiers[tier]
        if phase not in definition.phases:
            raise ValueError(f"Tier {tier} has no {phase} phase")
        pct = definition.phases[phase]
        balance = definition.starting_balance

        return cls(
            profit_target=(
                to_money(balance * pct.profit_target_pct)
                if pct.profit_target_pct is not None
                else None
            ),
            max_total_drawdown=to_money(balance * pct.max_total_drawdown_pct),
            max_daily_drawdown=to_money(balance * pct.max_daily_drawdown_pct),
            payout_cap=definition.payout_cap,
            max_position_size_pct=pct.max_position_size_pct,
            max_category_exposure_pct=pct.max_category_exposure_pct,
            profit_split_pct=definition.profit_split_pct,
            max_open_positions=definition.max_open_positions,
            duration_days=pct.duration_days,
            min_market_volume=definition.min_market_volume,
            low_volume_threshold=definition.low_volume_threshold,
            low_volume_max_position_pct=definition.low_volume_max_position_pct,
            max_volume_impact_pct=definition.max_volume_impact_pct,
        )


# ============================================================================
# Tier table (loaded from YAML)
# ============================================================================


class PhaseRules(BaseModel):
    """Per-phase percentages as written in the tier table."""

    profit_target_pct: Fraction | None = None
    max_total_drawdown_pct: Fraction
    max_daily_drawdown_pct: Fraction
    max_position_size_pct: Fraction
    max_category_exposure_pct: Fraction
    duration_days: int | None = Field(default=None, gt=0)


class TierDefinition(BaseModel):
    starting_balance: Decimal = Field(gt=0)
    payout_cap: Decimal = Field(gt=0)
    profit_split_pct: Fraction
    max_open_positions: int | None = Field(default=None, gt=0)
    min_market_volume: Decimal | None = Field(default=None, ge=0)
    low_volume_threshold: Decimal | None = Field(default=None, ge=0)
    low_volume_max_position_pct: Fraction | None = None
    max_volume_impact_pct: Fraction | None = None
    phases: dict[str, PhaseRules]


class TierTable(BaseModel):
    tiers: dict[str, TierDefinition]


@lru_cache(maxsize=None)
def load_tier_table(path: Path = TIERS_FILE) -> TierTable:
    """Load and validate the tier table."""
    with open(path) as f:
        return TierTable.model_validate(yaml.safe_load(f))


def tier_starting_balance(tier: str) -> Decimal:
    table = load_tier_table()
    if tier not in table.tiers:
        raise ValueError(f"Unknown tier: {tier}")
    return table.tiers[tier].starting_balance
