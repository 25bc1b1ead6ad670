"""
Subscription Service
======================
Turns "buy N more seats" / "subscribe to plan X" into a priced PaymentIntent.
All validation (plan, seat range, downgrade guard) happens here, before the
gateway is called, so a rejected request never leaves a payment row behind.
"""

import logging
from typing import Dict, Any

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from config.settings import DEFAULT_CURRENCY, DEFAULT_PLAN, PLAN_PRICES, MAX_SEATS_PER_UPGRADE
from common.exceptions import NotFoundError, ValidationError
from common.helpers import days_until, as_utc
from modules.company.models import Company, SubscriptionStatus
from modules.user.models import User
from modules.payment.models import PaymentIntent, PaymentPurpose
from modules.payment.schemas import EmployeeLimitUpgradeMetadata, SubscriptionMetadata
from modules.payment.service import PaymentService
from modules.subscription import pricing

logger = logging.getLogger("teemplot.subscription")


class SubscriptionService:
    """Stateless service: call methods with db session and the injected PaymentService."""

    def get_company(self, db: Session, company_id: str) -> Company:
        company = db.query(Company).filter(Company.id == company_id).first()
        if not company:
            raise NotFoundError("Company not found")
        return company

    def count_billable_seats(self, db: Session, company_id: str) -> int:
        """Active users take a seat; suspended ones don't. Always at least one."""
        count = (
            db.query(sa_func.count(User.id))
            .filter(User.company_id == company_id, User.is_active == True)  # noqa: E712
            .scalar()
        )
        return max(1, int(count or 0))

    def get_prices(self) -> Dict[str, Any]:
        return {**PLAN_PRICES, "currency": DEFAULT_CURRENCY}

    # ==========================================
    # 👥 Seat upgrade (prorated)
    # ==========================================

    def start_employee_limit_upgrade(
        self, db: Session, payments: PaymentService, user: User, additional_employees: int,
    ) -> PaymentIntent:
        if not 1 <= additional_employees <= MAX_SEATS_PER_UPGRADE:
            raise ValidationError(f"additionalEmployees must be between 1 and {MAX_SEATS_PER_UPGRADE}")

        company = self.get_company(db, user.company_id)
        now = payments.clock()

        current_plan = company.subscription_plan or DEFAULT_PLAN
        price = PLAN_PRICES.get(current_plan) or PLAN_PRICES[DEFAULT_PLAN]
        period_days = pricing.period_days_for(current_plan)
        days_left = pricing.active_days_left(company.current_period_end, now)
        amount = pricing.prorated_seat_amount(additional_employees, price, days_left, period_days)

        metadata = EmployeeLimitUpgradeMetadata(
            additional_employees=additional_employees,
            current_plan=current_plan,
            price_per_employee=price,
            remaining_ratio=float(pricing.proration_ratio(days_left, period_days)),
            limit_at_request=company.employee_limit,
        )
        payment = payments.initiate_payment(
            db, company.id, user.id, amount, DEFAULT_CURRENCY,
            PaymentPurpose.EMPLOYEE_LIMIT_UPGRADE.value, metadata,
        )
        logger.info(
            f"Employee limit upgrade initiated [{payment.reference}]: company={company.id} "
            f"additional={additional_employees} days_left={days_left} amount={amount}"
        )
        return payment

    # ==========================================
    # 📅 Subscription purchase / renewal
    # ==========================================

    def start_subscription(
        self, db: Session, payments: PaymentService, user: User, plan: str,
    ) -> PaymentIntent:
        if not plan:
            raise ValidationError("Plan is required")
        price = pricing.plan_price(plan)

        company = self.get_company(db, user.company_id)
        now = payments.clock()

        if pricing.is_downgrade_blocked(
            company.subscription_plan, company.subscription_status,
            company.current_period_end, plan, now,
        ):
            logger.info(f"Downgrade rejected: company={company.id} {company.subscription_plan} → {plan}")
            raise ValidationError(
                "Downgrade not allowed during an active higher-tier period. "
                "Select the same tier or wait until the current period ends."
            )

        purpose = (
            PaymentPurpose.PLAN_UPGRADE
            if pricing.is_tier_upgrade(company.subscription_plan, company.subscription_status, plan)
            else PaymentPurpose.SUBSCRIPTION
        )
        seats = self.count_billable_seats(db, company.id)
        amount = pricing.subscription_amount(seats, price)

        metadata = SubscriptionMetadata(
            purpose=purpose.value, plan=plan, seats=seats, price_per_employee=price,
        )
        payment = payments.initiate_payment(
            db, company.id, user.id, amount, DEFAULT_CURRENCY, purpose.value, metadata,
        )
        logger.info(
            f"Subscription payment initiated [{payment.reference}]: company={company.id} "
            f"plan={plan} seats={seats} amount={amount}"
        )
        return payment

    # ==========================================
    # ℹ️ Info
    # ==========================================

    def get_info(self, db: Session, company_id: str, now) -> Dict[str, Any]:
        company = self.get_company(db, company_id)
        trial_days_left = None
        if company.subscription_status == SubscriptionStatus.TRIAL.value and company.trial_end_date:
            trial_days_left = days_until(company.trial_end_date, now)

        period_end = as_utc(company.current_period_end)
        return {
            "plan": company.plan_tier,
            "status": company.subscription_status,
            "trialDaysLeft": trial_days_left,
            "employeeLimit": company.employee_limit,
            "subscriptionPlan": company.subscription_plan,
            "currentPeriodEnd": period_end.isoformat() if period_end else None,
        }


subscription_service = SubscriptionService()
