"""Tests for subscription tiers and entitlements."""
from datetime import datetime, timedelta

import pytest

from app.models import Company
from app.plan_limits import (
    can_create_contract,
    get_effective_tier,
    has_feature,
    increment_contract_usage,
)


def company(**kwargs):
    kwargs.setdefault("name", "Sparkle Cleaning Co")
    kwargs.setdefault("contracts_used", 0)
    return Company(**kwargs)


class TestEffectiveTier:
    def test_defaults_to_free(self):
        assert get_effective_tier(None) == "free"
        assert get_effective_tier(company(subscription_tier="unknown")) == "free"

    def test_trial_overrides_subscription(self):
        trial = company(
            subscription_tier="free",
            trial_tier="pro",
            trial_ends_at=datetime.utcnow() + timedelta(days=3),
        )
        assert get_effective_tier(trial) == "pro"

    def test_expired_trial_falls_back(self):
        expired = company(
            subscription_tier="starter",
            trial_tier="pro",
            trial_ends_at=datetime.utcnow() - timedelta(days=1),
        )
        assert get_effective_tier(expired) == "starter"


class TestCanCreateContract:
    def test_free_tier_cannot_send(self):
        allowed, message = can_create_contract(company(subscription_tier="free"))
        assert not allowed
        assert "upgrade" in message.lower()

    @pytest.mark.parametrize("used, allowed", [(0, True), (19, True), (20, False)])
    def test_starter_limit(self, used, allowed):
        result, _ = can_create_contract(company(subscription_tier="starter", contracts_used=used))
        assert result is allowed

    def test_pro_is_unlimited(self):
        assert can_create_contract(company(subscription_tier="pro", contracts_used=10_000)) == (True, None)

    def test_missing_company(self):
        assert can_create_contract(None)[0] is False


class TestHasFeature:
    def test_branding_needs_pro(self):
        assert not has_feature(company(subscription_tier="starter", subscription_status="active"), "customBranding")
        assert has_feature(company(subscription_tier="pro", subscription_status="active"), "customBranding")

    def test_inactive_subscription_loses_features(self):
        lapsed = company(subscription_tier="pro", subscription_status="past_due")
        assert not has_feature(lapsed, "customBranding")

    def test_unknown_feature(self):
        assert not has_feature(company(subscription_tier="pro", subscription_status="active"), "teleportation")


class TestUsage:
    def test_increment(self, db):
        record = company(subscription_tier="starter")
        db.add(record)
        db.commit()

        increment_contract_usage(record, db)
        increment_contract_usage(record, db)

        db.refresh(record)
        assert record.contracts_used == 2
