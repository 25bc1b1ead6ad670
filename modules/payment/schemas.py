"""
Payment Module - Metadata Schemas
==================================
Purpose-specific payload stored on each PaymentIntent, modelled as a tagged
union keyed by `purpose`. Fulfillment dispatches on the parsed type instead of
trusting loose dict keys.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError as PydanticValidationError

from common.exceptions import ValidationError


class EmployeeLimitUpgradeMetadata(BaseModel):
    purpose: Literal["employee_limit_upgrade"] = "employee_limit_upgrade"
    additional_employees: int = Field(..., ge=1)
    current_plan: str
    price_per_employee: int = Field(..., ge=0)      # major unit
    remaining_ratio: float = Field(1.0, ge=0, le=1)
    # Informational only: fulfillment re-reads the live limit.
    limit_at_request: Optional[int] = None


class SubscriptionMetadata(BaseModel):
    purpose: Literal["subscription", "plan_upgrade"] = "subscription"
    plan: str
    seats: int = Field(1, ge=1)
    price_per_employee: int = Field(..., ge=0)      # major unit

    @property
    def is_yearly(self) -> bool:
        return "yearly" in self.plan.lower()


PaymentMetadata = Annotated[
    Union[EmployeeLimitUpgradeMetadata, SubscriptionMetadata],
    Field(discriminator="purpose"),
]

_metadata_adapter = TypeAdapter(PaymentMetadata)


def parse_metadata(purpose: str, raw: dict) -> Union[EmployeeLimitUpgradeMetadata, SubscriptionMetadata]:
    """Parse stored metadata. The row's purpose column wins over any stored tag."""
    try:
        return _metadata_adapter.validate_python({**(raw or {}), "purpose": purpose})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid metadata for purpose '{purpose}': {e.error_count()} error(s)")
