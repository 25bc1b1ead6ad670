"""
Payment Module - Fulfillment Strategies
=========================================
Business effects applied once a PaymentIntent wins the pending → completed
transition. Each strategy re-reads the company row (locked) at fulfillment
time; nothing is computed from values captured when the payment started.

Strategies run inside the caller's transaction and never commit.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Type

from sqlalchemy.orm import Session

from config.settings import MONTHLY_PERIOD_DAYS, YEARLY_PERIOD_DAYS
from common.exceptions import NotFoundError, ValidationError
from common.helpers import as_utc
from modules.company.models import Company, SubscriptionStatus
from modules.payment.models import PaymentIntent
from modules.payment.schemas import EmployeeLimitUpgradeMetadata, SubscriptionMetadata

logger = logging.getLogger("teemplot.fulfillment")


def extend_subscription_period(
    current_period_end: Optional[datetime],
    trial_end_date: Optional[datetime],
    now: datetime,
    yearly: bool,
) -> datetime:
    """
    New period end = max(current_period_end, trial_end_date, now) + 30/365 days.
    Renewing early keeps already-paid time; renewing after a lapse starts from now.
    """
    anchor = max(d for d in (as_utc(current_period_end), as_utc(trial_end_date), now) if d is not None)
    return anchor + timedelta(days=YEARLY_PERIOD_DAYS if yearly else MONTHLY_PERIOD_DAYS)


def _lock_company(db: Session, company_id: str) -> Company:
    company = db.query(Company).filter(Company.id == company_id).with_for_update().first()
    if not company:
        raise NotFoundError("Company not found")
    return company


class FulfillmentStrategy:
    """Applies one purpose's effect. Returns a summary dict for logging/auditing."""
    metadata_type: Type = type(None)

    def apply(self, db: Session, payment: PaymentIntent, metadata, now: datetime) -> Dict[str, Any]:
        raise NotImplementedError


class EmployeeLimitUpgradeFulfillment(FulfillmentStrategy):
    metadata_type = EmployeeLimitUpgradeMetadata

    def apply(self, db: Session, payment: PaymentIntent, metadata: EmployeeLimitUpgradeMetadata, now: datetime):
        company = _lock_company(db, payment.company_id)
        old_limit = company.employee_limit or 0
        company.employee_limit = old_limit + metadata.additional_employees
        company.last_billing_event = {
            "type": "employee_limit_upgrade",
            "reference": payment.reference,
            "additionalEmployees": metadata.additional_employees,
            "oldLimit": old_limit,
            "newLimit": company.employee_limit,
            "processedAt": now.isoformat(),
        }
        db.flush()
        logger.info(
            f"Employee limit upgraded [{payment.reference}]: company={company.id} "
            f"{old_limit} → {company.employee_limit}"
        )
        return {"oldLimit": old_limit, "newLimit": company.employee_limit}


class SubscriptionFulfillment(FulfillmentStrategy):
    metadata_type = SubscriptionMetadata

    def apply(self, db: Session, payment: PaymentIntent, metadata: SubscriptionMetadata, now: datetime):
        company = _lock_company(db, payment.company_id)
        new_end = extend_subscription_period(
            company.current_period_end, company.trial_end_date, now, metadata.is_yearly,
        )
        company.subscription_plan = metadata.plan
        company.subscription_status = SubscriptionStatus.ACTIVE.value
        company.current_period_end = new_end
        company.last_billing_event = {
            "type": payment.purpose,
            "reference": payment.reference,
            "plan": metadata.plan,
            "extendedDays": YEARLY_PERIOD_DAYS if metadata.is_yearly else MONTHLY_PERIOD_DAYS,
            "processedAt": now.isoformat(),
        }
        db.flush()
        logger.info(
            f"Subscription extended [{payment.reference}]: company={company.id} "
            f"plan={metadata.plan} current_period_end={new_end.isoformat()}"
        )
        return {"plan": metadata.plan, "currentPeriodEnd": new_end.isoformat()}


_STRATEGIES = {
    s.metadata_type: s for s in (EmployeeLimitUpgradeFulfillment(), SubscriptionFulfillment())
}


def get_strategy(metadata) -> FulfillmentStrategy:
    strategy = _STRATEGIES.get(type(metadata))
    if strategy is None:
        raise ValidationError(f"No fulfillment strategy for {type(metadata).__name__}")
    return strategy
