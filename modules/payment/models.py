"""
Payment Module - Models
========================
PaymentIntent: one attempt to turn a requested upgrade into a paid, fulfilled
entitlement change. Rows are never deleted (billing audit trail).

Status is monotonic:
  pending ──verify ok──▶ completed   (business effect applied exactly once)
  pending ──verify fail─▶ failed
No transition leaves completed or failed.
"""

import enum
import json
import uuid

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentPurpose(str, enum.Enum):
    SUBSCRIPTION = "subscription"
    EMPLOYEE_LIMIT_UPGRADE = "employee_limit_upgrade"
    PLAN_UPGRADE = "plan_upgrade"


class PaymentIntent(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reference = Column(String, unique=True, nullable=False)

    amount = Column(Integer, nullable=False)                    # minor unit (kobo / cents)
    currency = Column(String(3), default="NGN", nullable=False)
    purpose = Column(String, nullable=False)
    status = Column(String, default=PaymentStatus.PENDING.value, nullable=False)

    # Gateway
    provider = Column(String, nullable=False)                   # paystack / flutterwave
    authorization_url = Column(String, nullable=False)
    access_code = Column(String, nullable=True)
    channel = Column(String, nullable=True)                     # card / bank / ussd ...
    failure_reason = Column(String, nullable=True)

    _metadata = Column("metadata", Text, nullable=True)         # JSON, see modules/payment/schemas.py

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    company = relationship("Company")
    user = relationship("User")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_payment_status"),
        Index("ix_payments_company_created", "company_id", "created_at"),
        Index("ix_payments_status_created", "status", "created_at"),
    )

    @property
    def details(self) -> dict:
        """Raw metadata dict. Use schemas.parse_metadata() for the typed view."""
        if not self._metadata:
            return {}
        try:
            return json.loads(self._metadata)
        except (json.JSONDecodeError, TypeError):
            return {}

    @details.setter
    def details(self, value: dict):
        self._metadata = json.dumps(value) if value else None

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "companyId": self.company_id,
            "userId": self.user_id,
            "reference": self.reference,
            "amount": self.amount,
            "currency": self.currency,
            "purpose": self.purpose,
            "status": self.status,
            "provider": self.provider,
            "authorizationUrl": self.authorization_url,
            "channel": self.channel,
            "failureReason": self.failure_reason,
            "metadata": self.details,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }
