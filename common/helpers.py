"""
Teemplot Billing - Shared Helpers
==================================
Pure utility functions, no database access.
"""

import math
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until(moment: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days left until `moment`, rounded up. 0 if already past or missing."""
    if moment is None:
        return 0
    now = now or now_utc()
    seconds = (as_utc(moment) - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)


# ==========================================
# Payment Reference Generator
# ==========================================

def generate_payment_reference(purpose: str, company_id: str) -> str:
    """
    Build a unique, human-readable payment reference.

    Format: <purpose>_<company_id>_<epoch_millis>_<8 hex chars>
    e.g. employee_limit_upgrade_c0ffee_1760745600000_9f2c11ab
    """
    millis = int(now_utc().timestamp() * 1000)
    return f"{purpose}_{company_id}_{millis}_{uuid.uuid4().hex[:8]}"


def parse_payment_reference(reference: str) -> Optional[Tuple[str, str, datetime]]:
    """
    Split a reference back into (purpose, company_id, created_at) for debugging.
    Purpose may itself contain underscores, so split from the right.
    The database row stays the source of truth. Returns None if unparseable.
    """
    if not reference:
        return None
    head, _, suffix = reference.rpartition("_")
    head, _, millis = head.rpartition("_")
    if not head or len(suffix) != 8 or not millis.isdigit():
        return None

    from modules.payment.models import PaymentPurpose
    for purpose in sorted((p.value for p in PaymentPurpose), key=len, reverse=True):
        prefix = purpose + "_"
        if head.startswith(prefix) and len(head) > len(prefix):
            created_at = datetime.fromtimestamp(int(millis) / 1000, tz=timezone.utc)
            return purpose, head[len(prefix):], created_at
    return None
