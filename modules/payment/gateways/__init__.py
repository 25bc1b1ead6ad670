"""
Payment Gateway Abstraction
=============================
Each gateway implements initialize(), verify() and the webhook checks.
Registry pattern for gateway lookup by name; the active gateway is built
once at startup (create_gateway) and injected into PaymentService.

Amounts crossing this interface are always in the minor currency unit.
Adapters whose API speaks major units convert internally.
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional, List, Mapping, Type
from dataclasses import dataclass, field

import httpx

from common.exceptions import ProviderError, ProviderUnavailableError, ValidationError

logger = logging.getLogger("teemplot.gateway")


@dataclass
class GatewayInitRequest:
    """Input for initializing a charge."""
    email: str
    amount: int             # minor unit
    currency: str
    reference: str
    callback_url: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayInitResult:
    """Result of initialize()."""
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


@dataclass
class GatewayVerifyResult:
    """Result of verify(). Only ever built for successful charges."""
    success: bool
    reference: str
    amount: int             # minor unit
    currency: str
    paid_at: Optional[datetime] = None
    channel: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseGateway:
    """Abstract gateway interface."""
    name: str = ""
    label: str = ""
    signature_header: str = ""

    def __init__(self, secret_key: str, timeout: float = 15.0):
        if not secret_key:
            raise ValidationError(f"{self.label or self.name} secret key is required")
        self.secret_key = secret_key
        self.timeout = timeout

    def initialize(self, req: GatewayInitRequest) -> GatewayInitResult:
        raise NotImplementedError

    def verify(self, reference: str) -> GatewayVerifyResult:
        raise NotImplementedError

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        raise NotImplementedError

    def extract_successful_reference(self, event: Dict[str, Any]) -> Optional[str]:
        """Reference of a 'charge succeeded' event, None for anything else."""
        raise NotImplementedError

    # ------------------------------------------
    # Shared HTTP plumbing
    # ------------------------------------------

    def _auth_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, url: str, reference: str, **kwargs) -> dict:
        """
        Send a request and return the decoded JSON body.
        Transport failures and 5xx raise ProviderUnavailableError (retryable);
        anything unparseable raises ProviderError.
        """
        try:
            resp = httpx.request(method, url, headers=self._auth_headers(), timeout=self.timeout, **kwargs)
        except httpx.TimeoutException:
            logger.warning(f"{self.name} timeout [{reference}]: {method} {url}")
            raise ProviderUnavailableError(f"{self.label} did not respond in time", provider=self.name)
        except httpx.HTTPError as e:
            logger.warning(f"{self.name} connection error [{reference}]: {e}")
            raise ProviderUnavailableError(f"Could not reach {self.label}", provider=self.name)

        if resp.status_code >= 500:
            logger.warning(f"{self.name} upstream {resp.status_code} [{reference}]")
            raise ProviderUnavailableError(f"{self.label} is unavailable (HTTP {resp.status_code})", provider=self.name)

        try:
            data = resp.json()
        except ValueError:
            logger.error(f"{self.name} returned non-JSON [{reference}]: HTTP {resp.status_code}")
            raise ProviderError(f"Unexpected response from {self.label}", provider=self.name)

        if not isinstance(data, dict):
            raise ProviderError(f"Unexpected response from {self.label}", provider=self.name)
        return data


# ── Registry ──

_GATEWAYS: Dict[str, Type[BaseGateway]] = {}


def register_gateway(gw_cls: Type[BaseGateway]) -> Type[BaseGateway]:
    _GATEWAYS[gw_cls.name] = gw_cls
    return gw_cls


def get_gateway_class(name: str) -> Optional[Type[BaseGateway]]:
    return _GATEWAYS.get(name)


def get_all_gateway_names() -> List[str]:
    return list(_GATEWAYS.keys())


def create_gateway(name: str, **credentials) -> BaseGateway:
    """Instantiate the configured gateway. Unknown names fail fast at startup."""
    # Import gateway modules to trigger register_gateway()
    import modules.payment.gateways.paystack     # noqa: F401
    import modules.payment.gateways.flutterwave  # noqa: F401

    gw_cls = get_gateway_class(name)
    if not gw_cls:
        raise ValidationError(
            f"Unknown payment provider '{name}' (available: {', '.join(get_all_gateway_names())})"
        )
    gateway = gw_cls(**credentials)
    logger.info(f"Payment gateway initialized: {gateway.name}")
    return gateway


def parse_gateway_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 timestamps as sent by gateways ('2025-01-05T10:00:00.000Z')."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
