"""
Teemplot Billing - Security Utilities
======================================
JWT tokens for API sessions and HMAC helpers for webhook signatures.
"""

import base64
import hmac
import hashlib
import logging
from datetime import timedelta
from typing import Optional

from jose import jwt

from config.settings import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from common.helpers import now_utc

logger = logging.getLogger("teemplot.security")


# ==========================================
# JWT Tokens
# ==========================================

def create_token(data: dict) -> str:
    """Create JWT token. `sub` carries the user id."""
    to_encode = data.copy()
    to_encode["exp"] = now_utc() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode a JWT token. Returns payload or None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except Exception:
        return None


# ==========================================
# Webhook HMAC
# ==========================================

def hmac_hex(secret: str, body: bytes, digestmod=hashlib.sha512) -> str:
    """Hex HMAC of a raw request body."""
    return hmac.new(secret.encode("utf-8"), body, digestmod).hexdigest()


def hmac_base64(secret: str, body: bytes, digestmod=hashlib.sha256) -> str:
    """Base64 HMAC of a raw request body."""
    digest = hmac.new(secret.encode("utf-8"), body, digestmod).digest()
    return base64.b64encode(digest).decode("ascii")


def signatures_match(expected: str, provided: Optional[str]) -> bool:
    """Constant-time signature comparison. Missing signature never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8"))
