# src/reconciliation/services.py
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from auth.models import User
from errors import ConflictError, NotFoundError, PersistenceError, SignatureError, ValidationError
from payment.models import Payment
from payment.services import PaymentLedger
from payment.signature import SignatureVerifier
from plan.services import PlanCatalog
from subscription.models import Subscription
from subscription.services import SubscriptionLifecycle

logger = logging.getLogger(__name__)

COMPLETION_EVENTS = {"payment.captured", "payment.authorized"}
FAILURE_EVENTS = {"payment.failed"}


@dataclass
class ReconciliationResult:
    payment: Payment
    subscription: Optional[Subscription]
    replayed: bool


class ReconciliationEngine:
    """Applies a verified payment event to subscription state exactly once.

    The direct verify call, the activate call and the gateway webhook all end
    up here, so the same rules hold whichever transport sees the payment
    first. Two guards make repeated or concurrent delivery safe:

    * completion is a compare-and-set on ``status = 'pending'``
      (``PaymentLedger.complete``), committed on its own;
    * subscription changes run in a second transaction that first claims the
      payment with ``UPDATE ... WHERE subscription_id IS NULL``. The loser of a
      race updates zero rows, re-reads the linked payment and replays.

    A failure in the second transaction rolls back only the subscription
    change: the payment stays ``completed`` and unlinked, and a later
    verify/activate call retries it.
    """

    def __init__(self, verifier: Optional[SignatureVerifier] = None):
        self.verifier = verifier or SignatureVerifier()

    def verify_payment(
            self,
            db: Session,
            user: User,
            order_id: str,
            gateway_payment_id: str,
            signature: str,
            payment_id: Optional[int] = None,
            raw: Optional[Dict[str, Any]] = None
    ) -> ReconciliationResult:
        """Direct path: the paying client reports the checkout result."""
        if not order_id or not gateway_payment_id or not signature:
            raise ValidationError("Missing required fields for verification")

        payment = PaymentLedger.get_by_order(db, order_id)
        if not payment:
            logger.warning(f"Verify for unknown order {order_id} by user {user.id}")
            raise NotFoundError("Payment record not found")
        if payment_id is not None and payment.id != payment_id:
            raise ValidationError("Order id mismatch")
        if payment.user_id != user.id:
            raise ConflictError("Payment does not belong to the authenticated user")

        if not self.verifier.verify_direct(order_id, gateway_payment_id, signature):
            logger.warning(f"Signature verification failed for payment {payment.id}")
            PaymentLedger.fail(db, payment, "Signature verification failed")
            raise SignatureError()

        if payment.gateway_payment_id and payment.gateway_payment_id != gateway_payment_id:
            raise ConflictError("Order is already linked to a different payment")

        return self.reconcile(db, payment, gateway_payment_id, signature, raw, apply_subscription=True)

    def activate_payment(self, db: Session, user: User, payment_id: int, plan_id: int) -> ReconciliationResult:
        """Apply an already completed payment that has no subscription yet."""
        payment = PaymentLedger.get(db, payment_id)
        if payment.status != "completed":
            raise ValidationError("Payment is not completed")
        plan = PlanCatalog.get(db, plan_id)
        if payment.user_id != user.id:
            raise ConflictError("Payment does not belong to the authenticated user")
        if payment.subscription_id:
            return self._replay(db, payment)
        if payment.plan_id != plan.id:
            raise ValidationError("Plan does not match the paid plan")
        return self._apply(db, payment)

    def handle_webhook(self, db: Session, raw_body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """Webhook path. Only a bad signature or body is reported as an error."""
        if not signature_header:
            raise SignatureError("Missing webhook signature")
        if not self.verifier.verify_webhook(raw_body, signature_header):
            logger.warning("Invalid webhook signature")
            raise SignatureError("Invalid webhook signature")

        try:
            event = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.error("Failed to parse webhook payload")
            raise ValidationError("Invalid webhook payload")
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")

        event_name = str(event.get("event") or "").strip()
        if event_name not in COMPLETION_EVENTS | FAILURE_EVENTS:
            return {"status": "ignored", "event": event_name}

        entity = ((event.get("payload") or {}).get("payment") or {}).get("entity") or {}
        order_id = str(entity.get("order_id") or "").strip()
        gateway_payment_id = str(entity.get("id") or "").strip()
        if not order_id:
            logger.warning(f"Webhook {event_name} without order id")
            return {"status": "ignored", "reason": "missing_order_id"}

        payment = PaymentLedger.get_by_order(db, order_id)
        if not payment:
            logger.warning(f"Webhook: no Payment record for order {order_id}")
            return {"status": "ignored", "reason": "order_not_found"}

        PaymentLedger.record_webhook(db, payment, event, entity)

        if event_name in FAILURE_EVENTS:
            PaymentLedger.fail(db, payment, "Webhook: payment failed")
            return {"status": "ok", "payment_status": payment.status}

        try:
            amount = int(entity.get("amount"))
        except (TypeError, ValueError):
            amount = None
        if amount != payment.amount:
            logger.warning(f"Webhook amount mismatch for payment {payment.id}: expected {payment.amount}, got {entity.get('amount')}")
            return {"status": "ignored", "reason": "amount_mismatch"}

        if payment.status == "completed" and payment.subscription_id:
            return {"status": "ok", "idempotent": True}

        try:
            # subscription changes wait for the client's verify/activate call
            result = self.reconcile(db, payment, gateway_payment_id or None, None, None, apply_subscription=False)
        except ConflictError as exc:
            logger.warning(f"Webhook completion refused for payment {payment.id}: {exc.detail}")
            return {"status": "ignored", "reason": "payment_not_pending"}
        return {"status": "ok", "payment_status": result.payment.status}

    def reconcile(
            self,
            db: Session,
            payment: Payment,
            gateway_payment_id: Optional[str],
            signature: Optional[str],
            raw: Optional[Dict[str, Any]],
            apply_subscription: bool = True
    ) -> ReconciliationResult:
        if payment.status == "completed" and payment.subscription_id:
            return self._replay(db, payment)

        payment = PaymentLedger.complete(db, payment, gateway_payment_id, signature, raw)
        if not apply_subscription:
            subscription = SubscriptionLifecycle.get(db, payment.subscription_id) if payment.subscription_id else None
            return ReconciliationResult(payment=payment, subscription=subscription, replayed=False)
        return self._apply(db, payment)

    def _replay(self, db: Session, payment: Payment) -> ReconciliationResult:
        logger.info(f"Payment {payment.id} already processed, returning subscription {payment.subscription_id}")
        subscription = SubscriptionLifecycle.get(db, payment.subscription_id)
        return ReconciliationResult(payment=payment, subscription=subscription, replayed=True)

    def _dispatch(self, db: Session, payment: Payment) -> Subscription:
        plan = PlanCatalog.get(db, payment.plan_id)
        if payment.action == "renew":
            return SubscriptionLifecycle.renew(db, payment, plan)
        if payment.action == "upgrade":
            return SubscriptionLifecycle.upgrade(db, payment, plan)
        return SubscriptionLifecycle.activate(db, payment, plan)

    def _apply(self, db: Session, payment: Payment) -> ReconciliationResult:
        claimed = False
        try:
            updated = db.query(Payment).filter(
                Payment.id == payment.id,
                Payment.status == "completed",
                Payment.subscription_id.is_(None),
            ).update(
                {Payment.reconcile_attempts: Payment.reconcile_attempts + 1, Payment.failure_reason: None},
                synchronize_session=False,
            )
            if not updated:
                db.rollback()
                db.refresh(payment)
                if payment.subscription_id:
                    return self._replay(db, payment)
                raise ConflictError(f"Payment is {payment.status} and cannot be applied")

            claimed = True
            db.refresh(payment)
            subscription = self._dispatch(db, payment)
            payment.subscription_id = subscription.id
            db.commit()
        except HTTPException as exc:
            db.rollback()
            if claimed:
                PaymentLedger.record_refusal(db, payment, str(exc.detail))
            raise
        except IntegrityError:
            db.rollback()
            detail = "You already have an active subscription for this plan"
            logger.warning(f"Duplicate active subscription refused for payment {payment.id}")
            PaymentLedger.record_refusal(db, payment, detail)
            raise ConflictError(detail)
        except SQLAlchemyError:
            db.rollback()
            logger.error(f"Failed to apply subscription for payment {payment.id}", exc_info=True)
            raise PersistenceError("Failed to create subscription after payment")

        db.refresh(payment)
        db.refresh(subscription)
        logger.info(f"Payment {payment.id} ({payment.action}) linked to subscription {subscription.id}")
        return ReconciliationResult(payment=payment, subscription=subscription, replayed=False)
