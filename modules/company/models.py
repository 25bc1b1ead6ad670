"""
Company Module - Models
========================
Tenant record. The subscription columns are written only by payment
fulfillment (modules/payment/fulfillment.py); everything else reads them.
"""

import enum
import json
import uuid

from sqlalchemy import Column, Integer, String, DateTime, Text, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class SubscriptionStatus(str, enum.Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)

    # === Subscription state ===
    subscription_plan = Column(String, nullable=True)          # silver_monthly / gold_yearly / ...
    subscription_status = Column(String, default=SubscriptionStatus.TRIAL.value, nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)
    employee_limit = Column(Integer, default=1, nullable=False)
    _last_billing_event = Column("last_billing_event", Text, nullable=True)  # JSON

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    users = relationship("User", back_populates="company")

    __table_args__ = (
        CheckConstraint("employee_limit >= 0", name="ck_company_employee_limit_nonneg"),
    )

    @property
    def last_billing_event(self) -> dict:
        if not self._last_billing_event:
            return {}
        try:
            return json.loads(self._last_billing_event)
        except (json.JSONDecodeError, TypeError):
            return {}

    @last_billing_event.setter
    def last_billing_event(self, value: dict):
        self._last_billing_event = json.dumps(value, default=str) if value else None

    @property
    def plan_tier(self) -> str:
        """'trial', 'gold' or 'silver' (anything not gold is billed as silver)."""
        if self.subscription_status == SubscriptionStatus.TRIAL.value:
            return "trial"
        if self.subscription_plan and self.subscription_plan.startswith("gold"):
            return "gold"
        return "silver"
