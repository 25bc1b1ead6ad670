import threading
from datetime import timedelta

import pytest

from common.exceptions import (
    NotFoundError, ProviderError, ProviderUnavailableError, ValidationError,
)
from modules.company.models import Company
from modules.payment.fulfillment import EmployeeLimitUpgradeFulfillment
from modules.payment.models import PaymentIntent
from modules.payment.schemas import EmployeeLimitUpgradeMetadata, SubscriptionMetadata
from modules.payment.service import ALREADY_PROCESSED_MESSAGE
from conftest import NOW


def _start_seat_upgrade(db, service, company, user, additional=3, amount=360000):
    metadata = EmployeeLimitUpgradeMetadata(
        additional_employees=additional, current_plan="silver_monthly", price_per_employee=1200,
    )
    payment = service.initiate_payment(
        db, company.id, user.id, amount, "NGN", "employee_limit_upgrade", metadata,
    )
    db.commit()
    return payment.reference


def _limit(session_factory, company_id):
    session = session_factory()
    try:
        return session.query(Company).filter(Company.id == company_id).one().employee_limit
    finally:
        session.close()


def _status(session_factory, reference):
    session = session_factory()
    try:
        return session.query(PaymentIntent).filter(PaymentIntent.reference == reference).one()
    finally:
        session.close()


# ==========================================
# Initiation
# ==========================================

def test_initiate_persists_pending_intent_with_gateway_url(db, payment_service, gateway, company, owner):
    reference = _start_seat_upgrade(db, payment_service, company, owner)

    payment = db.query(PaymentIntent).filter(PaymentIntent.reference == reference).one()
    assert payment.status == "pending"
    assert payment.authorization_url == f"https://checkout.fake/{reference}"
    assert payment.provider == "fake"
    assert payment.details["additional_employees"] == 3

    sent = gateway.init_calls[0]
    assert sent.email == owner.email
    assert sent.amount == 360000
    assert sent.callback_url == f"https://app.teemplot.test/payment/callback?reference={reference}"
    assert sent.metadata["companyId"] == company.id


def test_initiate_failure_leaves_no_intent(db, payment_service, gateway, company, owner):
    gateway.init_error = ProviderError("Invalid key", provider="fake")
    with pytest.raises(ProviderError):
        _start_seat_upgrade(db, payment_service, company, owner)
    assert db.query(PaymentIntent).count() == 0


def test_initiate_rejects_mismatched_metadata(db, payment_service, company, owner):
    metadata = SubscriptionMetadata(plan="silver_monthly", price_per_employee=1200)
    with pytest.raises(ValidationError):
        payment_service.initiate_payment(
            db, company.id, owner.id, 120000, "NGN", "employee_limit_upgrade", metadata,
        )


def test_initiate_rejects_non_positive_amount(db, payment_service, company, owner):
    with pytest.raises(ValidationError):
        _start_seat_upgrade(db, payment_service, company, owner, amount=0)


def test_initiate_rejects_user_from_another_company(db, payment_service, make_company, make_user, company):
    stranger = make_user(make_company(name="Other Corp"))
    with pytest.raises(NotFoundError):
        _start_seat_upgrade(db, payment_service, company, stranger)


# ==========================================
# Exactly-once fulfillment
# ==========================================

def test_fulfill_applies_effect_once(db, session_factory, payment_service, gateway, company, owner):
    reference = _start_seat_upgrade(db, payment_service, company, owner, additional=3)

    first = payment_service.fulfill(db, reference)
    second = payment_service.fulfill(db, reference)

    assert first.success and not first.already_processed
    assert first.effect == {"oldLimit": 1, "newLimit": 4}
    assert second.already_processed
    assert second.message == ALREADY_PROCESSED_MESSAGE
    assert second.status == "completed"
    assert _limit(session_factory, company.id) == 4
    # Terminal intents are answered without asking the gateway again.
    assert gateway.verify_calls == 1

    payment = _status(session_factory, reference)
    assert payment.channel == "card"
    assert payment.verified_at is not None


def test_concurrent_fulfill_applies_effect_once(session_factory, payment_service, gateway, company, owner):
    setup = session_factory()
    reference = _start_seat_upgrade(setup, payment_service, company, owner, additional=3)
    setup.close()

    webhook_db = session_factory()
    poll_db = session_factory()
    results = {}

    def webhook_wins(ref):
        # Runs while the poll is waiting on its own gateway call.
        results["webhook"] = payment_service.fulfill(webhook_db, ref)

    gateway.verify_queue = [webhook_wins]
    results["poll"] = payment_service.fulfill(poll_db, reference)
    webhook_db.close()
    poll_db.close()

    assert not results["webhook"].already_processed
    assert results["poll"].already_processed
    assert results["poll"].status == "completed"
    assert _limit(session_factory, company.id) == 4
    assert gateway.verify_calls == 2


def test_parallel_fulfill_applies_effect_once(session_factory, payment_service, gateway, company, owner):
    setup = session_factory()
    reference = _start_seat_upgrade(setup, payment_service, company, owner, additional=3)
    setup.close()

    # Both callers pass the pending check before either reaches the conditional update.
    barrier = threading.Barrier(2, timeout=10)
    gateway.verify_queue = [lambda ref: barrier.wait(), lambda ref: barrier.wait()]
    results, errors = [], []

    def worker():
        session = session_factory()
        try:
            results.append(payment_service.fulfill(session, reference))
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert sorted(r.already_processed for r in results) == [False, True]
    assert all(r.status == "completed" for r in results)
    assert _limit(session_factory, company.id) == 4
    assert gateway.verify_calls == 2


def test_declined_charge_marks_failed(db, session_factory, payment_service, gateway, company, owner):
    reference = _start_seat_upgrade(db, payment_service, company, owner)
    gateway.verify_queue = [ProviderError("Payment verification failed: Declined", provider="fake")]

    with pytest.raises(ProviderError):
        payment_service.fulfill(db, reference)

    payment = _status(session_factory, reference)
    assert payment.status == "failed"
    assert "Declined" in payment.failure_reason
    assert _limit(session_factory, company.id) == 1

    again = payment_service.fulfill(db, reference)
    assert again.already_processed and again.status == "failed"
    assert gateway.verify_calls == 1


def test_amount_mismatch_is_a_decline(db, session_factory, payment_service, gateway, company, owner):
    reference = _start_seat_upgrade(db, payment_service, company, owner, amount=360000)
    gateway.amount_override = 100

    with pytest.raises(ProviderError):
        payment_service.fulfill(db, reference)

    assert _status(session_factory, reference).status == "failed"
    assert _limit(session_factory, company.id) == 1


def test_transport_errors_are_retried(db, session_factory, payment_service, gateway, company, owner):
    reference = _start_seat_upgrade(db, payment_service, company, owner)
    gateway.verify_queue = [
        ProviderUnavailableError("timeout", provider="fake"),
        ProviderUnavailableError("timeout", provider="fake"),
    ]

    result = payment_service.fulfill(db, reference)

    assert result.success
    assert gateway.verify_calls == 3
    assert _limit(session_factory, company.id) == 4


def test_unreachable_gateway_marks_failed_after_retries(db, session_factory, payment_service, gateway, company, owner):
    reference = _start_seat_upgrade(db, payment_service, company, owner)
    gateway.verify_queue = [ProviderUnavailableError("timeout", provider="fake")] * 3

    with pytest.raises(ProviderUnavailableError):
        payment_service.fulfill(db, reference)

    payment = _status(session_factory, reference)
    assert gateway.verify_calls == 3
    assert payment.status == "failed"
    assert "unreachable" in payment.failure_reason


def test_declines_are_not_retried(db, payment_service, gateway, company, owner):
    reference = _start_seat_upgrade(db, payment_service, company, owner)
    gateway.verify_queue = [ProviderError("Declined", provider="fake")]

    with pytest.raises(ProviderError):
        payment_service.fulfill(db, reference)
    assert gateway.verify_calls == 1


def test_effect_failure_rolls_back_transition(db, session_factory, payment_service, company, owner, mocker):
    reference = _start_seat_upgrade(db, payment_service, company, owner)
    mocker.patch.object(EmployeeLimitUpgradeFulfillment, "apply", side_effect=RuntimeError("db went away"))

    with pytest.raises(RuntimeError):
        payment_service.fulfill(db, reference)

    assert _status(session_factory, reference).status == "pending"
    assert _limit(session_factory, company.id) == 1

    mocker.stopall()
    result = payment_service.fulfill(db, reference)
    assert result.success
    assert _limit(session_factory, company.id) == 4


def test_fulfill_unknown_reference(db, payment_service):
    with pytest.raises(NotFoundError):
        payment_service.fulfill(db, "subscription_nobody_1_deadbeef")


def test_fulfill_detached_never_raises(session_factory, payment_service, gateway, company, owner):
    setup = session_factory()
    reference = _start_seat_upgrade(setup, payment_service, company, owner)
    setup.close()

    assert payment_service.fulfill_detached("subscription_nobody_1_deadbeef", session_factory) is None

    gateway.verify_queue = [ProviderError("Declined", provider="fake")]
    assert payment_service.fulfill_detached(reference, session_factory) is None
    assert _status(session_factory, reference).status == "failed"


# ==========================================
# Listing & reconciliation
# ==========================================

def test_list_company_payments_newest_first(db, payment_service, company, owner):
    first = _start_seat_upgrade(db, payment_service, company, owner)
    older = db.query(PaymentIntent).filter(PaymentIntent.reference == first).one()
    older.created_at = NOW - timedelta(hours=1)
    db.commit()
    second = _start_seat_upgrade(db, payment_service, company, owner)

    payments = payment_service.list_company_payments(db, company.id)
    assert [p.reference for p in payments] == [second, first]


def test_reconcile_stale_pending(db, session_factory, payment_service, gateway, company, owner):
    stale = _start_seat_upgrade(db, payment_service, company, owner, additional=2)
    fresh = _start_seat_upgrade(db, payment_service, company, owner, additional=5)
    db.query(PaymentIntent).filter(PaymentIntent.reference == stale).update(
        {"created_at": NOW - timedelta(hours=3)}, synchronize_session=False,
    )
    db.commit()

    counts = payment_service.reconcile_stale_pending(db, older_than_minutes=60)

    assert counts == {"checked": 1, "completed": 1, "failed": 0, "skipped": 0}
    assert _status(session_factory, stale).status == "completed"
    assert _status(session_factory, fresh).status == "pending"
    assert _limit(session_factory, company.id) == 3


def test_reconcile_continues_past_a_crashing_intent(db, session_factory, payment_service, company, owner, mocker):
    broken = _start_seat_upgrade(db, payment_service, company, owner, additional=2)
    healthy = _start_seat_upgrade(db, payment_service, company, owner, additional=5)
    db.query(PaymentIntent).filter(PaymentIntent.reference == broken).update(
        {"created_at": NOW - timedelta(hours=3)}, synchronize_session=False,
    )
    db.query(PaymentIntent).filter(PaymentIntent.reference == healthy).update(
        {"created_at": NOW - timedelta(hours=2)}, synchronize_session=False,
    )
    db.commit()

    original_apply = EmployeeLimitUpgradeFulfillment.apply

    def apply(self, session, payment, metadata, now):
        if payment.reference == broken:
            raise RuntimeError("boom")
        return original_apply(self, session, payment, metadata, now)

    mocker.patch.object(EmployeeLimitUpgradeFulfillment, "apply", apply)

    counts = payment_service.reconcile_stale_pending(db, older_than_minutes=60)

    assert counts == {"checked": 2, "completed": 1, "failed": 0, "skipped": 1}
    assert _status(session_factory, broken).status == "pending"
    assert _status(session_factory, healthy).status == "completed"
    assert _limit(session_factory, company.id) == 6
