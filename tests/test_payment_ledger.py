# tests/test_payment_ledger.py
import re

import pytest

from errors import ConflictError, GatewayError, NotFoundError, ValidationError
from payment.services import PaymentLedger
from conftest import FakeGateway, make_user, plan_by_name


class FailingGateway(FakeGateway):
    def create_order(self, amount, currency, receipt, notes=None):
        raise GatewayError("Unable to process Razorpay request right now.")


def test_receipt_and_invoice_formats():
    from database import utcnow
    assert re.fullmatch(r"RCPT_\d+_[A-Z0-9]{6}", PaymentLedger.generate_receipt())
    now = utcnow()
    invoice = PaymentLedger.generate_invoice_number(now)
    assert re.fullmatch(rf"INV-{now.strftime('%Y%m%d')}-[A-Z0-9]{{5}}", invoice)


def test_open_order_creates_pending_payment(db, user):
    gateway = FakeGateway()
    basic = plan_by_name(db, "Basic")
    order = PaymentLedger.open_order(db, user, gateway, basic.id)

    payment = PaymentLedger.get(db, order["payment_id"])
    assert payment.status == "pending"
    assert payment.amount == basic.amount
    assert payment.currency == "INR"
    assert payment.gateway_order_id == order["order_id"]
    assert order["key"] == gateway.key_id
    assert gateway.orders[0]["receipt"] == payment.receipt


def test_gateway_failure_marks_payment_failed(db, user):
    basic = plan_by_name(db, "Basic")
    with pytest.raises(GatewayError):
        PaymentLedger.open_order(db, user, FailingGateway(), basic.id)
    payment = PaymentLedger.list_for_user(db, user.id)[0]
    assert payment.status == "failed"
    assert "Razorpay order creation failed" in payment.failure_reason
    assert payment.gateway_order_id is None


def test_create_pending_validates_action_and_plan(db, user):
    with pytest.raises(ValidationError):
        PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id, action="refund")
    with pytest.raises(ValidationError):
        PaymentLedger.create_pending(db, user, 999)
    with pytest.raises(ValidationError):
        PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id, action="renew")
    with pytest.raises(NotFoundError):
        PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id, action="renew", target_subscription_id=999)


def test_attach_order_is_set_once(db, user):
    payment = PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id)
    PaymentLedger.attach_order(db, payment, "order_a")
    PaymentLedger.attach_order(db, payment, "order_a")
    with pytest.raises(ConflictError):
        PaymentLedger.attach_order(db, payment, "order_b")
    assert payment.gateway_order_id == "order_a"


def test_attach_order_rejects_order_of_another_payment(db, user):
    first = PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id)
    second = PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id)
    PaymentLedger.attach_order(db, first, "order_shared")
    with pytest.raises(ConflictError):
        PaymentLedger.attach_order(db, second, "order_shared")


def test_complete_is_idempotent(db, user):
    payment = PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id)
    PaymentLedger.complete(db, payment, "pay_1", "sig")
    invoice = payment.invoice_number
    completed_at = payment.completed_at
    assert payment.status == "completed"
    assert invoice.startswith("INV-")

    PaymentLedger.complete(db, payment, "pay_1", "sig")
    assert payment.invoice_number == invoice
    assert payment.completed_at == completed_at


def test_failed_payment_is_never_completed(db, user):
    payment = PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id)
    PaymentLedger.fail(db, payment, "declined")
    with pytest.raises(ConflictError):
        PaymentLedger.complete(db, payment, "pay_1")
    assert payment.status == "failed"
    assert payment.completed_at is None


def test_late_failure_does_not_revert_completion(db, user):
    payment = PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id)
    PaymentLedger.complete(db, payment, "pay_1")
    PaymentLedger.fail(db, payment, "late failure event")
    assert payment.status == "completed"
    assert payment.failure_reason is None


def test_failure_reason_is_truncated(db, user):
    payment = PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id)
    PaymentLedger.fail(db, payment, "x" * 600)
    assert len(payment.failure_reason) == 500


def test_list_for_user_only_returns_own_payments(db, user):
    other = make_user(db, "other@example.com")
    PaymentLedger.create_pending(db, user, plan_by_name(db, "Basic").id)
    PaymentLedger.create_pending(db, other, plan_by_name(db, "Basic").id)
    assert [p.user_id for p in PaymentLedger.list_for_user(db, user.id)] == [user.id]
