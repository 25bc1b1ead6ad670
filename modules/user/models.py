"""
User Module - Models
=====================
Company members. Billing only needs identity (email for the gateway charge),
company membership, and role (owners and admins may buy seats).
"""

import enum
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class UserRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


BILLING_ROLES = (UserRole.OWNER.value, UserRole.ADMIN.value)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    # === Identity ===
    email = Column(String, unique=True, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    # === Access ===
    role = Column(String, default=UserRole.EMPLOYEE.value, nullable=False)
    is_active = Column(Boolean, default=True, server_default="true", nullable=False, index=True)

    # === Audit ===
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    company = relationship("Company", back_populates="users")

    __table_args__ = (
        Index("ix_users_company_active", "company_id", "is_active"),
    )

    @property
    def can_manage_billing(self) -> bool:
        return self.role in BILLING_ROLES
