"""
Plan limits and feature entitlements for subscription tiers.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .models import Company

logger = logging.getLogger(__name__)

# Contract limits per tier; None means unlimited
TIER_CONFIG = {
    "free": {
        "name": "Free",
        "contracts": 0,
        "features": {
            "clickToSign": False,
            "emailDelivery": False,
            "smsReminders": False,
            "customBranding": False,
        },
    },
    "starter": {
        "name": "Starter",
        "contracts": 20,
        "features": {
            "clickToSign": True,
            "emailDelivery": True,
            "smsReminders": False,
            "customBranding": False,
        },
    },
    "pro": {
        "name": "Pro",
        "contracts": None,
        "features": {
            "clickToSign": True,
            "emailDelivery": True,
            "smsReminders": True,
            "customBranding": True,
        },
    },
    "premium": {
        "name": "Premium",
        "contracts": None,
        "features": {
            "clickToSign": True,
            "emailDelivery": True,
            "smsReminders": True,
            "customBranding": True,
        },
    },
}

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


def is_in_trial(company: Company, now: Optional[datetime] = None) -> bool:
    if not company.trial_ends_at:
        return False
    return company.trial_ends_at > (now or datetime.utcnow())


def get_effective_tier(company: Optional[Company], now: Optional[datetime] = None) -> str:
    """Trial tier while a trial is running, otherwise the subscription tier"""
    if company is None:
        return "free"

    if is_in_trial(company, now):
        tier = company.trial_tier or "starter"
    else:
        tier = company.subscription_tier or "free"

    return tier if tier in TIER_CONFIG else "free"


def is_subscription_active(company: Company, now: Optional[datetime] = None) -> bool:
    if is_in_trial(company, now):
        return True
    # Free tier is always "active"
    if (company.subscription_tier or "free") == "free":
        return True
    return company.subscription_status in ACTIVE_SUBSCRIPTION_STATUSES


def has_feature(company: Optional[Company], feature: str, now: Optional[datetime] = None) -> bool:
    """Check if a company's effective tier includes a feature"""
    if company is None:
        return False

    tier = get_effective_tier(company, now)
    if tier != "free" and not is_subscription_active(company, now):
        return False

    return bool(TIER_CONFIG[tier]["features"].get(feature, False))


def get_contract_limit(tier: str) -> Optional[int]:
    return TIER_CONFIG.get(tier, TIER_CONFIG["free"])["contracts"]


def can_create_contract(company: Optional[Company], required_count: int = 1) -> tuple:
    """
    Check if the company can send another contract under its plan.
    Returns (allowed, error_message).
    """
    if company is None:
        return (False, "Company not found")

    tier = get_effective_tier(company)
    limit = get_contract_limit(tier)

    # Unlimited plan
    if limit is None:
        return (True, None)

    current = company.contracts_used or 0
    if current + required_count <= limit:
        return (True, None)

    if limit == 0:
        return (False, "Your current plan does not include contracts. Please upgrade to send contracts.")

    return (
        False,
        f"Limit exceeded: {current}/{limit} contracts. Upgrade to Pro to continue.",
    )


def increment_contract_usage(company: Company, db: Session) -> None:
    """
    Increment the company's contract usage counter.
    Failures are logged and swallowed; usage tracking never blocks sending.
    """
    try:
        company.contracts_used = (company.contracts_used or 0) + 1
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"⚠️ Failed to increment contract usage for company {company.id}: {e}")
