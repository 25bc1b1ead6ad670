"""
Payment Service
=================
Initiation, verification and exactly-once fulfillment of PaymentIntents.

The gateway is injected (built once at startup from settings), never looked
up per call. Two triggers reach fulfill(): the client polling
/subscription/verify-payment and the gateway webhook. Both may run at the
same time for the same reference; the only serialization point is the
conditional UPDATE in _transition() (status must still be 'pending').
The winning transition and the business effect commit together.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Any, Callable, List, Optional

from fastapi import Request
from sqlalchemy.orm import Session
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from config.database import SessionLocal
from config import settings
from common.exceptions import (
    BillingError, NotFoundError, ProviderError, ProviderUnavailableError, ValidationError,
)
from common.helpers import now_utc, generate_payment_reference
from modules.payment.gateways import BaseGateway, GatewayInitRequest, GatewayVerifyResult, create_gateway
from modules.payment.models import PaymentIntent, PaymentStatus
from modules.payment.schemas import parse_metadata
from modules.payment.fulfillment import get_strategy
from modules.user.models import User

logger = logging.getLogger("teemplot.payment")

ALREADY_PROCESSED_MESSAGE = "Payment already processed"


@dataclass
class TransitionResult:
    payment: PaymentIntent
    already_processed: bool


@dataclass
class FulfillmentResult:
    reference: str
    status: str
    purpose: str
    already_processed: bool
    message: str
    effect: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == PaymentStatus.COMPLETED.value


class PaymentService:
    """Call methods with a db session. Holds no per-request state."""

    def __init__(
        self,
        gateway: BaseGateway,
        callback_base_url: str = settings.FRONTEND_URL,
        verify_attempts: int = settings.GATEWAY_VERIFY_ATTEMPTS,
        retry_wait_seconds: float = settings.GATEWAY_RETRY_WAIT_SECONDS,
        clock: Callable = now_utc,
    ):
        self.gateway = gateway
        self.callback_base_url = callback_base_url.rstrip("/")
        self.verify_attempts = max(1, verify_attempts)
        self.retry_wait_seconds = retry_wait_seconds
        self.clock = clock

    @property
    def provider_name(self) -> str:
        return self.gateway.name

    # ==========================================
    # 🔎 Lookups
    # ==========================================

    def get_by_reference(self, db: Session, reference: str) -> PaymentIntent:
        payment = db.query(PaymentIntent).filter(PaymentIntent.reference == reference).first()
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    def list_company_payments(self, db: Session, company_id: str) -> List[PaymentIntent]:
        return (
            db.query(PaymentIntent)
            .filter(PaymentIntent.company_id == company_id)
            .order_by(PaymentIntent.created_at.desc(), PaymentIntent.id)
            .all()
        )

    # ==========================================
    # 🏦 Initiation
    # ==========================================

    def initiate_payment(
        self, db: Session, company_id: str, user_id: str,
        amount: int, currency: str, purpose: str, metadata,
    ) -> PaymentIntent:
        """
        Initialize with the gateway FIRST, then persist the pending intent with
        the gateway's authorization URL attached. If the gateway refuses,
        ProviderError propagates and nothing is written. Caller commits.
        """
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        if metadata.purpose != purpose:
            raise ValidationError(f"Metadata does not match purpose '{purpose}'")

        user = db.query(User).filter(User.id == user_id, User.company_id == company_id).first()
        if not user:
            raise NotFoundError("User not found")

        reference = generate_payment_reference(purpose, company_id)
        callback_url = f"{self.callback_base_url}/payment/callback?reference={reference}"
        details = metadata.model_dump(exclude={"purpose"})

        result = self.gateway.initialize(GatewayInitRequest(
            email=user.email,
            amount=amount,
            currency=currency,
            reference=reference,
            callback_url=callback_url,
            metadata={**details, "companyId": company_id, "userId": user_id, "purpose": purpose},
        ))

        payment = PaymentIntent(
            company_id=company_id,
            user_id=user_id,
            reference=reference,
            amount=amount,
            currency=currency,
            purpose=purpose,
            status=PaymentStatus.PENDING.value,
            provider=self.provider_name,
            authorization_url=result.authorization_url,
            access_code=result.access_code,
            created_at=self.clock(),
        )
        payment.details = details
        db.add(payment)
        db.flush()

        logger.info(f"Payment initiated [{reference}]: id={payment.id} purpose={purpose} amount={amount} {currency}")
        return payment

    # ==========================================
    # ✅ Verification + guarded transition
    # ==========================================

    def verify_and_transition(self, db: Session, reference: str) -> TransitionResult:
        """
        Move a pending intent to completed (or failed) exactly once.

        already_processed=True means this caller must not apply any effect:
        the intent was terminal before we started, or a concurrent caller won.
        On success the transaction is left open so the effect commits with it.
        """
        payment = self.get_by_reference(db, reference)

        if not payment.is_pending:
            logger.info(f"Payment already {payment.status} [{reference}]")
            return TransitionResult(payment, already_processed=True)

        try:
            verification = self._verify_with_retry(reference)
            self._check_matches_intent(payment, verification)
        except ProviderError as e:
            if isinstance(e, ProviderUnavailableError):
                reason = f"Provider unreachable after {self.verify_attempts} attempt(s): {e.message}"
            else:
                reason = e.message
            if self._transition(db, reference, PaymentStatus.FAILED, failure_reason=reason[:500], verified_at=self.clock()):
                db.commit()
                logger.warning(f"Payment failed [{reference}]: {reason}")
                raise
            db.rollback()
            db.refresh(payment)
            if payment.status == PaymentStatus.COMPLETED.value:
                # A concurrent caller verified it while our call was failing.
                logger.info(f"Payment completed concurrently [{reference}], ignoring local verify error")
                return TransitionResult(payment, already_processed=True)
            raise

        now = self.clock()
        won = self._transition(
            db, reference, PaymentStatus.COMPLETED,
            verified_at=now,
            paid_at=verification.paid_at or now,
            channel=verification.channel,
        )
        if not won:
            db.rollback()
            db.refresh(payment)
            logger.info(f"Lost completion race [{reference}], status={payment.status}")
            return TransitionResult(payment, already_processed=True)

        db.refresh(payment)
        logger.info(f"Payment verified [{reference}]: purpose={payment.purpose}")
        return TransitionResult(payment, already_processed=False)

    def _transition(self, db: Session, reference: str, new_status: PaymentStatus, **values) -> bool:
        """Compare-and-swap on status: UPDATE ... WHERE reference=? AND status='pending'."""
        rows = (
            db.query(PaymentIntent)
            .filter(
                PaymentIntent.reference == reference,
                PaymentIntent.status == PaymentStatus.PENDING.value,
            )
            .update({"status": new_status.value, **values}, synchronize_session=False)
        )
        return rows == 1

    def _verify_with_retry(self, reference: str) -> GatewayVerifyResult:
        """Retry only transport failures. A gateway 'no' is final."""
        retrying = Retrying(
            stop=stop_after_attempt(self.verify_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=10),
            retry=retry_if_exception_type(ProviderUnavailableError),
            before_sleep=lambda state: logger.warning(
                f"Verify attempt {state.attempt_number} failed [{reference}]: {state.outcome.exception()}"
            ),
            reraise=True,
        )
        return retrying(self.gateway.verify, reference)

    def _check_matches_intent(self, payment: PaymentIntent, verification: GatewayVerifyResult):
        if not verification.success:
            raise ProviderError("Payment verification failed", provider=self.provider_name)
        if verification.amount != payment.amount:
            raise ProviderError(
                f"Paid amount {verification.amount} does not match expected {payment.amount}",
                provider=self.provider_name,
            )
        if verification.currency and verification.currency.upper() != payment.currency.upper():
            raise ProviderError(
                f"Paid currency {verification.currency} does not match expected {payment.currency}",
                provider=self.provider_name,
            )

    # ==========================================
    # 🎯 Fulfillment
    # ==========================================

    def fulfill(self, db: Session, reference: str) -> FulfillmentResult:
        """
        Single entry point for both the verify endpoint and the webhook.
        Safe to call any number of times; only the first successful
        transition applies the business effect. Owns the commit.
        """
        try:
            outcome = self.verify_and_transition(db, reference)
            payment = outcome.payment

            if outcome.already_processed:
                return FulfillmentResult(
                    reference=reference,
                    status=payment.status,
                    purpose=payment.purpose,
                    already_processed=True,
                    message=ALREADY_PROCESSED_MESSAGE,
                )

            metadata = parse_metadata(payment.purpose, payment.details)
            effect = get_strategy(metadata).apply(db, payment, metadata, self.clock())
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"Payment fulfilled [{reference}]: purpose={payment.purpose} effect={effect}")
        return FulfillmentResult(
            reference=reference,
            status=PaymentStatus.COMPLETED.value,
            purpose=payment.purpose,
            already_processed=False,
            message="Payment processed successfully",
            effect=effect,
        )

    def fulfill_detached(self, reference: str, session_factory=SessionLocal) -> Optional[FulfillmentResult]:
        """
        Background-task wrapper: own session, errors logged with the reference
        and never raised (the gateway already got its 200).
        """
        db = session_factory()
        try:
            result = self.fulfill(db, reference)
            logger.info(f"Webhook fulfillment done [{reference}]: already_processed={result.already_processed}")
            return result
        except BillingError as e:
            logger.error(f"Webhook fulfillment failed [{reference}]: {e.message}")
        except Exception as e:
            logger.exception(f"Webhook fulfillment crashed [{reference}]: {e}")
        finally:
            db.close()
        return None

    # ==========================================
    # 🔄 Reconciliation
    # ==========================================

    def reconcile_stale_pending(self, db: Session, older_than_minutes: int) -> Dict[str, int]:
        """Re-drive intents nobody verified (lost webhook, closed browser tab)."""
        cutoff = self.clock() - timedelta(minutes=older_than_minutes)
        references = [
            ref for (ref,) in db.query(PaymentIntent.reference)
            .filter(PaymentIntent.status == PaymentStatus.PENDING.value, PaymentIntent.created_at < cutoff)
            .order_by(PaymentIntent.created_at)
            .all()
        ]
        counts = {"checked": len(references), "completed": 0, "failed": 0, "skipped": 0}
        for reference in references:
            try:
                result = self.fulfill(db, reference)
                counts["skipped" if result.already_processed else "completed"] += 1
            except ProviderError:
                counts["failed"] += 1
            except BillingError as e:
                logger.error(f"Reconcile error [{reference}]: {e.message}")
                counts["skipped"] += 1
            except Exception as e:
                logger.exception(f"Reconcile crashed [{reference}]: {e}")
                counts["skipped"] += 1
        return counts


# ==========================================
# 🔌 Wiring
# ==========================================

def build_payment_service() -> PaymentService:
    """Build the service for the configured provider. Called once in the app lifespan."""
    if settings.PAYMENT_PROVIDER == "flutterwave":
        gateway = create_gateway(
            "flutterwave",
            secret_key=settings.FLUTTERWAVE_SECRET_KEY,
            secret_hash=settings.FLUTTERWAVE_SECRET_HASH,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    else:
        gateway = create_gateway(
            settings.PAYMENT_PROVIDER,
            secret_key=settings.PAYSTACK_SECRET_KEY,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    return PaymentService(gateway)


def get_payment_service(request: Request) -> PaymentService:
    """FastAPI dependency: the PaymentService built at startup."""
    return request.app.state.payment_service
