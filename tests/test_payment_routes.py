# tests/test_payment_routes.py
from payment.models import Payment
from subscription.models import Subscription
from conftest import auth_headers, checkout_signature, make_user, plan_by_name, webhook_body


def create_order(client, user, plan_id, **extra):
    response = client.post("/payments/create-order", json={"plan_id": plan_id, **extra}, headers=auth_headers(user))
    assert response.status_code == 200, response.text
    return response.json()


def verify(client, user, order, gateway_payment_id="pay_1", signature=None):
    signature = signature or checkout_signature(order["order_id"], gateway_payment_id)
    return client.post(
        "/payments/verify",
        json={
            "razorpay_order_id": order["order_id"],
            "razorpay_payment_id": gateway_payment_id,
            "razorpay_signature": signature,
            "payment_id": order["payment_id"],
        },
        headers=auth_headers(user),
    )


def send_webhook(client, event, order, amount, gateway_payment_id="pay_1", status="captured"):
    raw, signature = webhook_body(event, order["order_id"], gateway_payment_id, amount, status)
    return client.post(
        "/payments/webhook",
        content=raw,
        headers={"X-Razorpay-Signature": signature, "Content-Type": "application/json"},
    )


def test_create_order_returns_checkout_details(client, db, user):
    basic = plan_by_name(db, "Basic")
    order = create_order(client, user, basic.id)
    assert order["order_id"] == "order_test_1"
    assert order["amount"] == 19900
    assert order["currency"] == "INR"
    assert order["key"] == "rzp_test_key"


def test_create_order_requires_authentication(client, db):
    response = client.post("/payments/create-order", json={"plan_id": plan_by_name(db, "Basic").id})
    assert response.status_code == 401


def test_create_order_rejects_unknown_plan(client, user):
    response = client.post("/payments/create-order", json={"plan_id": 999}, headers=auth_headers(user))
    assert response.status_code == 400


def test_verify_activates_subscription_once(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    response = verify(client, user, order)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["message"] == "Subscription activated successfully"
    assert body["replayed"] is False
    assert body["subscription"]["status"] == "active"
    assert len(body["subscription"]["billing_history"]) == 1

    again = verify(client, user, order)
    assert again.status_code == 200
    assert again.json()["replayed"] is True
    assert again.json()["message"] == "Payment already processed"
    assert again.json()["subscription"]["id"] == body["subscription"]["id"]
    assert db.query(Subscription).count() == 1


def test_verify_with_bad_signature_fails_payment(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    response = verify(client, user, order, signature="0" * 64)
    assert response.status_code == 400
    payment = db.query(Payment).filter(Payment.id == order["payment_id"]).one()
    assert payment.status == "failed"
    assert db.query(Subscription).count() == 0


def test_verify_other_users_payment_is_refused(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    intruder = make_user(db, "intruder@example.com")
    assert verify(client, intruder, order).status_code == 409


def test_verify_unknown_order(client, db, user):
    order = {"order_id": "order_missing", "payment_id": None}
    assert verify(client, user, order).status_code == 404


def test_verify_with_different_gateway_payment_is_conflict(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    assert verify(client, user, order, "pay_1").status_code == 200
    assert verify(client, user, order, "pay_2").status_code == 409


def test_webhook_completes_without_subscription_then_verify_applies(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    response = send_webhook(client, "payment.captured", order, 19900)
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "payment_status": "completed"}
    assert db.query(Subscription).count() == 0

    payment = db.query(Payment).filter(Payment.id == order["payment_id"]).one()
    assert payment.webhook_received is True
    assert payment.gateway_payment_id == "pay_1"
    assert payment.gateway_response["webhook"]["captured"]["order_id"] == order["order_id"]

    response = verify(client, user, order)
    assert response.status_code == 200
    assert response.json()["replayed"] is False
    assert db.query(Subscription).count() == 1


def test_webhook_after_verify_is_idempotent(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    assert verify(client, user, order).status_code == 200
    response = send_webhook(client, "payment.captured", order, 19900)
    assert response.json() == {"status": "ok", "idempotent": True}
    assert db.query(Subscription).count() == 1


def test_webhook_amount_mismatch_is_ignored(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    response = send_webhook(client, "payment.captured", order, 100)
    assert response.status_code == 200
    assert response.json()["reason"] == "amount_mismatch"
    payment = db.query(Payment).filter(Payment.id == order["payment_id"]).one()
    assert payment.status == "pending"


def test_webhook_failure_then_verify_is_conflict(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    response = send_webhook(client, "payment.failed", order, 19900, status="failed")
    assert response.json() == {"status": "ok", "payment_status": "failed"}
    assert verify(client, user, order).status_code == 409
    assert db.query(Subscription).count() == 0


def test_webhook_signature_is_required(client, db, user):
    order = create_order(client, user, plan_by_name(db, "Basic").id)
    raw, _ = webhook_body("payment.captured", order["order_id"], "pay_1", 19900)
    assert client.post("/payments/webhook", content=raw).status_code == 400
    response = client.post("/payments/webhook", content=raw, headers={"X-Razorpay-Signature": "0" * 64})
    assert response.status_code == 400
    payment = db.query(Payment).filter(Payment.id == order["payment_id"]).one()
    assert payment.status == "pending"


def test_webhook_unknown_event_and_order_are_acknowledged(client):
    raw, signature = webhook_body("order.paid", "order_x", "pay_x", 100)
    response = client.post("/payments/webhook", content=raw, headers={"X-Razorpay-Signature": signature})
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"

    raw, signature = webhook_body("payment.captured", "order_missing", "pay_x", 100)
    response = client.post("/payments/webhook", content=raw, headers={"X-Razorpay-Signature": signature})
    assert response.json() == {"status": "ignored", "reason": "order_not_found"}


def test_webhook_with_malformed_body(client):
    from payment.signature import compute_signature
    from conftest import WEBHOOK_SECRET
    raw = b"not json"
    response = client.post("/payments/webhook", content=raw, headers={"X-Razorpay-Signature": compute_signature(WEBHOOK_SECRET, raw)})
    assert response.status_code == 400


def test_list_payments(client, db, user):
    create_order(client, user, plan_by_name(db, "Basic").id)
    create_order(client, user, plan_by_name(db, "Standard").id)
    response = client.get("/payments/", headers=auth_headers(user))
    assert response.status_code == 200
    assert len(response.json()) == 2
    assert {p["status"] for p in response.json()} == {"pending"}


def test_webhook_processing_runs_off_the_event_loop(client):
    import asyncio
    from main import app
    from payment.routes import get_engine

    seen = {}

    class RecordingEngine:
        def handle_webhook(self, db, raw_body, signature_header):
            try:
                asyncio.get_running_loop()
                seen["loop"] = True
            except RuntimeError:
                seen["loop"] = False
            seen["body"] = raw_body
            return {"status": "ignored", "event": "test"}

    app.dependency_overrides[get_engine] = lambda: RecordingEngine()
    try:
        response = client.post("/payments/webhook", content=b'{"event": "test"}', headers={"X-Razorpay-Signature": "abc"})
    finally:
        app.dependency_overrides.pop(get_engine, None)
    assert response.status_code == 200
    assert seen == {"loop": False, "body": b'{"event": "test"}'}
