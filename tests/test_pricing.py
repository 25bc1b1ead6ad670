from datetime import timedelta
from decimal import Decimal

import pytest

from common.exceptions import ValidationError
from modules.subscription import pricing
from conftest import NOW


def test_prorated_seat_amount_half_period():
    # 5 seats × 1000 × 100 × 15/30
    assert pricing.prorated_seat_amount(5, 1000, 15, 30) == 250000


def test_prorated_seat_amount_without_active_period_is_full_price():
    assert pricing.prorated_seat_amount(2, 1200, None, 30) == 240000


def test_proration_ratio_is_clamped():
    assert pricing.proration_ratio(45, 30) == Decimal(1)
    assert pricing.proration_ratio(0, 30) == Decimal(0)
    assert pricing.proration_ratio(None, 30) == Decimal(1)


def test_prorated_amount_rounds_half_up():
    # 1 × 1 × 100 × 1/8 = 12.5 → 13
    assert pricing.prorated_seat_amount(1, 1, 1, 8) == 13


def test_active_days_left_rounds_up_partial_days():
    assert pricing.active_days_left(NOW + timedelta(days=14, hours=1), NOW) == 15
    assert pricing.active_days_left(NOW - timedelta(days=1), NOW) is None
    assert pricing.active_days_left(None, NOW) is None


def test_active_days_left_accepts_naive_datetimes():
    naive_end = (NOW + timedelta(days=3)).replace(tzinfo=None)
    assert pricing.active_days_left(naive_end, NOW) == 3


def test_period_days_for_plan():
    assert pricing.period_days_for("gold_yearly") == 365
    assert pricing.period_days_for("silver_monthly") == 30
    assert pricing.period_days_for(None) == 30


def test_plan_price_unknown_plan():
    assert pricing.plan_price("gold_monthly") == 2500
    with pytest.raises(ValidationError):
        pricing.plan_price("platinum_monthly")


def test_subscription_amount_bills_at_least_one_seat():
    assert pricing.subscription_amount(0, 1200) == 120000
    assert pricing.subscription_amount(4, 2500) == 1000000


class TestDowngradeGuard:
    def test_active_gold_cannot_buy_silver(self):
        assert pricing.is_downgrade_blocked(
            "gold_monthly", "active", NOW + timedelta(days=10), "silver_monthly", NOW,
        )

    def test_same_tier_renewal_is_allowed(self):
        assert not pricing.is_downgrade_blocked(
            "gold_monthly", "active", NOW + timedelta(days=10), "gold_yearly", NOW,
        )

    def test_lapsed_gold_may_move_to_silver(self):
        assert not pricing.is_downgrade_blocked(
            "gold_monthly", "active", NOW - timedelta(days=1), "silver_monthly", NOW,
        )

    def test_trial_never_blocks(self):
        assert not pricing.is_downgrade_blocked(
            "gold_monthly", "trial", NOW + timedelta(days=10), "silver_monthly", NOW,
        )

    def test_upgrade_detection(self):
        assert pricing.is_tier_upgrade("silver_monthly", "active", "gold_monthly")
        assert not pricing.is_tier_upgrade("silver_monthly", "trial", "gold_monthly")
        assert not pricing.is_tier_upgrade("gold_monthly", "active", "gold_yearly")
