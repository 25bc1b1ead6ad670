"""
Paystack Gateway
=================
REST/JSON with Bearer secret key. Amounts are sent in kobo (minor unit) as-is.
initialize → redirect to authorization_url → verify/{reference}.
Webhooks: x-paystack-signature = hex HMAC-SHA512(secret_key, raw body).
"""

import hashlib
import logging
from typing import Dict, Any, Optional, Mapping

from common.exceptions import ProviderError
from common.security import hmac_hex, signatures_match
from modules.payment.gateways import (
    BaseGateway, GatewayInitRequest, GatewayInitResult,
    GatewayVerifyResult, register_gateway, parse_gateway_datetime,
)

logger = logging.getLogger("teemplot.gateway.paystack")

PAYSTACK_BASE_URL = "https://api.paystack.co"
PAYSTACK_SUCCESS_EVENT = "charge.success"


@register_gateway
class PaystackGateway(BaseGateway):
    name = "paystack"
    label = "Paystack"
    signature_header = "x-paystack-signature"

    def initialize(self, req: GatewayInitRequest) -> GatewayInitResult:
        data = self._request("POST", f"{PAYSTACK_BASE_URL}/transaction/initialize", req.reference, json={
            "email": req.email,
            "amount": req.amount,
            "currency": req.currency,
            "reference": req.reference,
            "callback_url": req.callback_url,
            "metadata": req.metadata,
        })

        if not data.get("status"):
            msg = data.get("message") or "Payment initialization failed"
            logger.error(f"Paystack initialize rejected [{req.reference}]: {msg}")
            raise ProviderError(msg, provider=self.name)

        body = data.get("data") or {}
        authorization_url = body.get("authorization_url")
        if not authorization_url:
            logger.error(f"Paystack initialize without authorization_url [{req.reference}]: {data}")
            raise ProviderError("Paystack did not return an authorization URL", provider=self.name)

        logger.info(f"Paystack payment initialized [{req.reference}]")
        return GatewayInitResult(
            authorization_url=authorization_url,
            access_code=body.get("access_code"),
            reference=body.get("reference") or req.reference,
        )

    def verify(self, reference: str) -> GatewayVerifyResult:
        data = self._request("GET", f"{PAYSTACK_BASE_URL}/transaction/verify/{reference}", reference)
        body = data.get("data") or {}

        if not data.get("status") or body.get("status") != "success":
            status = body.get("status") or "unknown"
            msg = body.get("gateway_response") or data.get("message") or "Payment not successful"
            logger.warning(f"Paystack verify failed [{reference}]: status={status} message={msg}")
            raise ProviderError(f"Payment verification failed: {msg}", provider=self.name)

        logger.info(f"Paystack payment verified [{reference}]")
        metadata = body.get("metadata")
        return GatewayVerifyResult(
            success=True,
            reference=body.get("reference") or reference,
            amount=int(body.get("amount") or 0),
            currency=body.get("currency") or "",
            paid_at=parse_gateway_datetime(body.get("paid_at") or body.get("paidAt")),
            channel=body.get("channel"),
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        expected = hmac_hex(self.secret_key, raw_body, hashlib.sha512)
        return signatures_match(expected, headers.get(self.signature_header))

    def extract_successful_reference(self, event: Dict[str, Any]) -> Optional[str]:
        data = event.get("data")
        if not isinstance(data, dict):
            return None
        if event.get("event") == PAYSTACK_SUCCESS_EVENT or data.get("status") == "success":
            reference = data.get("reference")
            return reference if isinstance(reference, str) and reference else None
        return None
