"""
Subscription Module - REST API Routes
=======================================
Stateless JSON API. Auth: `Authorization: Bearer <jwt>` (except the webhook,
which is authenticated by its HMAC signature).

Endpoints:
  POST /subscription/upgrade-employee-limit - Buy extra seats (prorated)
  POST /subscription/initiate-subscription  - Buy / renew / upgrade a plan
  GET  /subscription/prices                 - Per-seat plan prices
  POST /subscription/verify-payment         - Client poll after redirect
  POST /subscription/webhook                - Gateway push notification
  GET  /subscription/payments               - Company payment history
  GET  /subscription/info                   - Current plan summary
"""

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ConfigDict
from sqlalchemy.orm import Session

from config.database import get_db, SessionLocal
from config.settings import MAX_SEATS_PER_UPGRADE
from common.exceptions import AuthorizationError, SignatureError, ValidationError
from modules.auth.deps import require_login, require_billing_admin
from modules.payment.models import PaymentIntent, PaymentStatus
from modules.payment.service import PaymentService, get_payment_service
from modules.subscription.service import subscription_service
from modules.user.models import User

logger = logging.getLogger("teemplot.subscription")

router = APIRouter(prefix="/subscription", tags=["subscription"])


# ==========================================
# Schemas
# ==========================================

class EmployeeLimitUpgradeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    additional_employees: int = Field(..., alias="additionalEmployees", ge=1, le=MAX_SEATS_PER_UPGRADE)


class SubscriptionRequest(BaseModel):
    plan: str = Field(..., min_length=1)


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1)


def _initiation_payload(payment: PaymentIntent, **extra) -> dict:
    return {
        "paymentId": payment.id,
        "reference": payment.reference,
        "authorizationUrl": payment.authorization_url,
        "provider": payment.provider,
        "amount": payment.amount,
        "currency": payment.currency,
        **extra,
    }


# ==========================================
# 👥 POST /subscription/upgrade-employee-limit
# ==========================================

@router.post("/upgrade-employee-limit")
def upgrade_employee_limit(
    body: EmployeeLimitUpgradeRequest,
    db: Session = Depends(get_db),
    me: User = Depends(require_billing_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    payment = subscription_service.start_employee_limit_upgrade(db, payments, me, body.additional_employees)
    db.commit()
    return {
        "success": True,
        "data": _initiation_payload(payment, additionalEmployees=body.additional_employees),
        "message": "Payment initialized",
    }


# ==========================================
# 📅 POST /subscription/initiate-subscription
# ==========================================

@router.post("/initiate-subscription")
def initiate_subscription(
    body: SubscriptionRequest,
    db: Session = Depends(get_db),
    me: User = Depends(require_login),
    payments: PaymentService = Depends(get_payment_service),
):
    payment = subscription_service.start_subscription(db, payments, me, body.plan)
    db.commit()
    return {
        "success": True,
        "data": _initiation_payload(payment, plan=body.plan),
        "message": "Payment initialized",
    }


# ==========================================
# 💲 GET /subscription/prices
# ==========================================

@router.get("/prices")
def get_prices(me: User = Depends(require_login)):
    return {"success": True, "data": subscription_service.get_prices()}


# ==========================================
# ✅ POST /subscription/verify-payment
# ==========================================

@router.post("/verify-payment")
def verify_payment(
    body: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    me: User = Depends(require_login),
    payments: PaymentService = Depends(get_payment_service),
):
    payment = payments.get_by_reference(db, body.reference)
    if payment.company_id != me.company_id:
        logger.warning(f"Cross-company verify attempt [{body.reference}]: user={me.id}")
        raise AuthorizationError("You do not have access to this payment")

    result = payments.fulfill(db, body.reference)
    return {
        "success": result.status != PaymentStatus.FAILED.value,
        "data": {
            "reference": result.reference,
            "status": result.status,
            "purpose": result.purpose,
        },
        "message": result.message,
    }


# ==========================================
# 🔔 POST /subscription/webhook
# ==========================================

@router.post("/webhook")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Signature is checked against the raw body before anything is parsed.
    Fulfillment runs after the 200 is sent, in its own session.
    """
    raw_body = await request.body()
    gateway = payments.gateway

    if not gateway.verify_webhook_signature(raw_body, request.headers):
        logger.warning(f"Webhook rejected: bad {gateway.signature_header} signature")
        raise SignatureError()

    try:
        event = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Webhook body is not valid JSON")
    if not isinstance(event, dict):
        raise ValidationError("Webhook body must be a JSON object")

    reference = gateway.extract_successful_reference(event)
    if reference:
        logger.info(f"Webhook accepted [{reference}]: event={event.get('event')}")
        background_tasks.add_task(payments.fulfill_detached, reference, SessionLocal)
    else:
        logger.info(f"Webhook ignored: event={event.get('event')}")

    return JSONResponse({"success": True})


# ==========================================
# 📜 GET /subscription/payments
# ==========================================

@router.get("/payments")
def list_payments(
    db: Session = Depends(get_db),
    me: User = Depends(require_login),
    payments: PaymentService = Depends(get_payment_service),
):
    items = payments.list_company_payments(db, me.company_id)
    return {"success": True, "data": [p.to_dict() for p in items]}


# ==========================================
# ℹ️ GET /subscription/info
# ==========================================

@router.get("/info")
def subscription_info(
    db: Session = Depends(get_db),
    me: User = Depends(require_login),
    payments: PaymentService = Depends(get_payment_service),
):
    return {"success": True, "data": subscription_service.get_info(db, me.company_id, payments.clock())}
