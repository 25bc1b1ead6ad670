"""
Flutterwave Gateway
====================
REST/JSON (v3) with Bearer secret key. The API speaks major units (naira),
so amounts are divided by 100 on the way out and multiplied back on verify.
payments → redirect to link → transactions/verify_by_reference.
Webhooks: flutterwave-signature = base64 HMAC-SHA256(secret_hash, raw body).
"""

import hashlib
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, Optional, Mapping, Union

from common.exceptions import ProviderError
from common.security import hmac_base64, signatures_match
from modules.payment.gateways import (
    BaseGateway, GatewayInitRequest, GatewayInitResult,
    GatewayVerifyResult, register_gateway, parse_gateway_datetime,
)

logger = logging.getLogger("teemplot.gateway.flutterwave")

FLUTTERWAVE_BASE_URL = "https://api.flutterwave.com/v3"
FLUTTERWAVE_SUCCESS_EVENT = "charge.completed"


def to_major_units(minor: int) -> Union[int, float]:
    """12345 kobo → 123.45 naira (int when there is no fractional part)."""
    major = Decimal(int(minor)) / 100
    if major == major.to_integral_value():
        return int(major)
    return float(major)


def to_minor_units(major: Any) -> int:
    """123.45 naira → 12345 kobo, rounded half-up to the nearest kobo."""
    return int((Decimal(str(major)) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@register_gateway
class FlutterwaveGateway(BaseGateway):
    name = "flutterwave"
    label = "Flutterwave"
    signature_header = "flutterwave-signature"

    def __init__(self, secret_key: str, secret_hash: str = "", timeout: float = 15.0):
        super().__init__(secret_key, timeout=timeout)
        self.secret_hash = secret_hash

    def initialize(self, req: GatewayInitRequest) -> GatewayInitResult:
        data = self._request("POST", f"{FLUTTERWAVE_BASE_URL}/payments", req.reference, json={
            "tx_ref": req.reference,
            "amount": to_major_units(req.amount),
            "currency": req.currency,
            "redirect_url": req.callback_url,
            "customer": {"email": req.email},
            "customizations": {
                "title": "Teemplot Subscription",
                "description": "Payment for subscription upgrade",
            },
            "meta": req.metadata,
        })

        if data.get("status") != "success":
            msg = data.get("message") or "Payment initialization failed"
            logger.error(f"Flutterwave initialize rejected [{req.reference}]: {msg}")
            raise ProviderError(msg, provider=self.name)

        link = (data.get("data") or {}).get("link")
        if not link:
            logger.error(f"Flutterwave initialize without link [{req.reference}]: {data}")
            raise ProviderError("Flutterwave did not return a payment link", provider=self.name)

        logger.info(f"Flutterwave payment initialized [{req.reference}]")
        # Flutterwave has no access code; the hosted link is all we get.
        return GatewayInitResult(authorization_url=link, reference=req.reference)

    def verify(self, reference: str) -> GatewayVerifyResult:
        data = self._request(
            "GET", f"{FLUTTERWAVE_BASE_URL}/transactions/verify_by_reference", reference,
            params={"tx_ref": reference},
        )
        body = data.get("data") or {}

        if data.get("status") != "success" or body.get("status") != "successful":
            status = body.get("status") or "unknown"
            msg = body.get("processor_response") or data.get("message") or "Payment not successful"
            logger.warning(f"Flutterwave verify failed [{reference}]: status={status} message={msg}")
            raise ProviderError(f"Payment verification failed: {msg}", provider=self.name)

        logger.info(f"Flutterwave payment verified [{reference}]")
        meta = body.get("meta")
        return GatewayVerifyResult(
            success=True,
            reference=body.get("tx_ref") or reference,
            amount=to_minor_units(body.get("amount") or 0),
            currency=body.get("currency") or "",
            paid_at=parse_gateway_datetime(body.get("created_at")),
            channel=body.get("payment_type"),
            metadata=meta if isinstance(meta, dict) else {},
        )

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        if not self.secret_hash:
            logger.error("Flutterwave webhook received but FLUTTERWAVE_SECRET_HASH is not configured")
            return False
        expected = hmac_base64(self.secret_hash, raw_body, hashlib.sha256)
        return signatures_match(expected, headers.get(self.signature_header))

    def extract_successful_reference(self, event: Dict[str, Any]) -> Optional[str]:
        data = event.get("data")
        if not isinstance(data, dict):
            return None
        if event.get("event") == FLUTTERWAVE_SUCCESS_EVENT and data.get("status") == "successful":
            tx_ref = data.get("tx_ref")
            return tx_ref if isinstance(tx_ref, str) and tx_ref else None
        return None
