"""
Subscription Module - Pricing
===============================
Seat pricing, proration and the downgrade guard. Pure functions: callers pass
in the company state and `now`, nothing here touches the database.

Plan prices are per seat in the major currency unit (naira); every amount
returned here is in the minor unit (kobo), which is what gateways receive.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from config.settings import PLAN_PRICES, MONTHLY_PERIOD_DAYS, YEARLY_PERIOD_DAYS
from common.exceptions import ValidationError
from common.helpers import as_utc, days_until

MINOR_UNITS_PER_MAJOR = 100

# Higher rank = higher tier
TIER_RANK = {"silver": 1, "gold": 2}


def plan_price(plan: str) -> int:
    """Price per seat (major unit). Unknown plan → ValidationError."""
    price = PLAN_PRICES.get(plan)
    if price is None:
        raise ValidationError("Invalid plan selected")
    return price


def plan_tier(plan: Optional[str]) -> str:
    """'gold_yearly' → 'gold'. Missing plans bill as silver."""
    return (plan or "silver").split("_", 1)[0].lower()


def period_days_for(plan: Optional[str]) -> int:
    return YEARLY_PERIOD_DAYS if plan and "yearly" in plan.lower() else MONTHLY_PERIOD_DAYS


def proration_ratio(days_left: Optional[int], period_days: int) -> Decimal:
    """
    Share of the period still to run, clamped to [0, 1].
    days_left=None means no active period → full price.
    """
    if days_left is None or period_days <= 0:
        return Decimal(1)
    ratio = Decimal(days_left) / Decimal(period_days)
    return max(Decimal(0), min(Decimal(1), ratio))


def prorated_seat_amount(
    additional_seats: int, price_per_seat: int,
    days_left: Optional[int], period_days: int,
) -> int:
    """
    additional × price × 100 × ratio, rounded half-up to the nearest minor unit.
    e.g. 5 seats × 1000 × 100 × 15/30 = 250000
    """
    ratio = proration_ratio(days_left, period_days)
    amount = Decimal(additional_seats) * Decimal(price_per_seat) * MINOR_UNITS_PER_MAJOR * ratio
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def active_days_left(current_period_end: Optional[datetime], now: datetime) -> Optional[int]:
    """Days left in the current period, or None when there is no running period."""
    end = as_utc(current_period_end)
    if end is None or end <= now:
        return None
    return days_until(end, now)


def subscription_amount(seats: int, price_per_seat: int) -> int:
    """Full-period charge in minor units."""
    return max(1, seats) * price_per_seat * MINOR_UNITS_PER_MAJOR


def is_downgrade_blocked(
    current_plan: Optional[str],
    current_status: Optional[str],
    current_period_end: Optional[datetime],
    requested_plan: str,
    now: datetime,
) -> bool:
    """
    A lower tier cannot be bought while a paid higher tier is still running.
    Trials and lapsed periods never block.
    """
    if current_status != "active" or not current_plan:
        return False
    end = as_utc(current_period_end)
    if end is None or end <= now:
        return False
    return TIER_RANK.get(plan_tier(requested_plan), 0) < TIER_RANK.get(plan_tier(current_plan), 0)


def is_tier_upgrade(current_plan: Optional[str], current_status: Optional[str], requested_plan: str) -> bool:
    if current_status != "active" or not current_plan:
        return False
    return TIER_RANK.get(plan_tier(requested_plan), 0) > TIER_RANK.get(plan_tier(current_plan), 0)
