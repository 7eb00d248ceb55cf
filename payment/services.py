# src/payment/services.py
import logging
import secrets
import string
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from auth.models import User
from config import settings
from database import utcnow
from errors import ConfigurationError, ConflictError, GatewayError, NotFoundError, PersistenceError, ValidationError
from payment.gateway import RazorpayClient
from payment.models import Payment, PAYMENT_ACTIONS
from plan.services import PlanCatalog
from subscription.models import Subscription
from subscription.services import SubscriptionLifecycle

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _random_code(length: int) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


class PaymentLedger:
    """Authoritative record of payment attempts.

    Status only moves forward: pending -> completed | failed. Every status
    write is a conditional UPDATE on the current status so two callers racing
    on the same payment cannot both win.
    """

    @staticmethod
    def generate_receipt() -> str:
        return f"RCPT_{int(time.time() * 1000)}_{_random_code(6)}"

    @staticmethod
    def generate_invoice_number(completed_at: datetime) -> str:
        return f"INV-{completed_at.strftime('%Y%m%d')}-{_random_code(5)}"

    @staticmethod
    def get(db: Session, payment_id: int) -> Payment:
        payment = db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Payment record not found")
        return payment

    @staticmethod
    def get_by_order(db: Session, gateway_order_id: str) -> Optional[Payment]:
        if not gateway_order_id:
            return None
        return db.query(Payment).filter(Payment.gateway_order_id == gateway_order_id).first()

    @staticmethod
    def list_for_user(db: Session, user_id: int) -> List[Payment]:
        return db.query(Payment).filter(Payment.user_id == user_id).order_by(Payment.created_at.desc(), Payment.id.desc()).all()

    @staticmethod
    def _check_renewal(db: Session, user: User, target: Subscription, plan) -> None:
        """Early refusal before the customer is charged; the renew transition re-checks under lock."""
        if target.plan_id != plan.id:
            raise ValidationError("Renewal must use the subscription's plan")
        if plan.renew_limit and SubscriptionLifecycle.count_renewals_in_month(db, target.id, utcnow()) >= plan.renew_limit:
            raise ConflictError("You have reached the maximum renewals for this period")
        active = SubscriptionLifecycle.get_active_for_user(db, user.id, plan_id=plan.id)
        if active and active.id != target.id:
            raise ConflictError("You already have an active subscription for this plan")

    @staticmethod
    def create_pending(
            db: Session,
            user: User,
            plan_id: int,
            action: str = "purchase",
            target_subscription_id: Optional[int] = None
    ) -> Payment:
        if action not in PAYMENT_ACTIONS:
            raise ValidationError("Invalid action")
        if plan_id is None:
            raise ValidationError("planId is required")
        plan = PlanCatalog.get_active(db, plan_id)
        if not isinstance(plan.amount, int) or plan.amount <= 0:
            logger.error(f"Plan amount misconfigured: plan {plan.id}, amount {plan.amount}")
            raise PersistenceError("Server misconfiguration: plan amount invalid")

        if action in ("renew", "upgrade"):
            if target_subscription_id is None:
                raise ValidationError("subscriptionId is required for renew/upgrade")
            target = db.query(Subscription).filter(Subscription.id == target_subscription_id).first()
            if not target:
                raise NotFoundError("Target subscription not found")
            if target.user_id != user.id:
                raise ConflictError("Target subscription not owned by user")
            if action == "upgrade":
                if target.plan_id == plan.id:
                    raise ConflictError("Cannot upgrade to the same plan")
                if PlanCatalog.get(db, target.plan_id).priority >= plan.priority:
                    raise ConflictError("Cannot downgrade or choose same level plan. Upgrade only to higher plans.")
            else:
                PaymentLedger._check_renewal(db, user, target, plan)
        else:
            target_subscription_id = None
            if SubscriptionLifecycle.get_active_for_user(db, user.id, plan_id=plan.id):
                raise ConflictError("You already have an active subscription for this plan. Use renew or upgrade.")

        payment = Payment(
            user_id=user.id,
            plan_id=plan.id,
            action=action,
            target_subscription_id=target_subscription_id,
            amount=plan.amount,
            currency=settings.PAYMENT_CURRENCY,
            receipt=PaymentLedger.generate_receipt(),
            status="pending",
        )
        try:
            db.add(payment)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error("Payment create failed", exc_info=True)
            raise PersistenceError("Failed to create payment record")
        db.refresh(payment)
        return payment

    @staticmethod
    def attach_order(db: Session, payment: Payment, gateway_order_id: str) -> Payment:
        """Assign the gateway order id once; a different id on retry is a conflict."""
        try:
            updated = db.query(Payment).filter(
                Payment.id == payment.id,
                or_(Payment.gateway_order_id.is_(None), Payment.gateway_order_id == gateway_order_id),
            ).update({Payment.gateway_order_id: gateway_order_id}, synchronize_session=False)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Gateway order is already attached to another payment")
        if not updated:
            db.rollback()
            raise ConflictError("Payment is already linked to a different order")
        db.refresh(payment)
        return payment

    @staticmethod
    def open_order(
            db: Session,
            user: User,
            gateway: RazorpayClient,
            plan_id: int,
            action: str = "purchase",
            target_subscription_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """Create the pending payment and its gateway order."""
        payment = PaymentLedger.create_pending(db, user, plan_id, action, target_subscription_id)
        try:
            order = gateway.create_order(
                amount=payment.amount,
                currency=payment.currency,
                receipt=payment.receipt,
                notes={"user_id": str(user.id), "payment_id": str(payment.id)},
            )
        except (GatewayError, ConfigurationError) as exc:
            logger.error(f"Razorpay order create error for payment {payment.id}: {exc.detail}")
            PaymentLedger.fail(db, payment, f"Razorpay order creation failed: {exc.detail}")
            raise
        PaymentLedger.attach_order(db, payment, order["id"])
        logger.info(f"Order {order['id']} created for payment {payment.id}, user {user.id}, action {action}")
        return {
            "order_id": order["id"],
            "amount": int(order.get("amount") or payment.amount),
            "currency": order.get("currency") or payment.currency,
            "key": gateway.key_id,
            "payment_id": payment.id,
        }

    @staticmethod
    def _mark_completed(
            db: Session,
            payment_id: int,
            gateway_payment_id: Optional[str],
            signature: Optional[str],
            raw_response: Optional[Dict[str, Any]]
    ) -> bool:
        """Compare-and-set pending -> completed. True when this call made the transition."""
        completed_at = utcnow()
        values = {
            Payment.status: "completed",
            Payment.completed_at: completed_at,
            Payment.invoice_number: PaymentLedger.generate_invoice_number(completed_at),
            Payment.invoice_generated_at: completed_at,
            Payment.failure_reason: None,
        }
        if gateway_payment_id:
            values[Payment.gateway_payment_id] = gateway_payment_id
        if signature:
            values[Payment.gateway_signature] = signature
        if raw_response is not None:
            values[Payment.gateway_response] = raw_response
        updated = db.query(Payment).filter(
            Payment.id == payment_id,
            Payment.status == "pending",
        ).update(values, synchronize_session=False)
        db.commit()
        return updated == 1

    @staticmethod
    def complete(
            db: Session,
            payment: Payment,
            gateway_payment_id: Optional[str],
            signature: Optional[str] = None,
            raw_response: Optional[Dict[str, Any]] = None
    ) -> Payment:
        """Finalize the payment. A completed payment is returned unchanged."""
        try:
            transitioned = PaymentLedger._mark_completed(db, payment.id, gateway_payment_id, signature, raw_response)
        except SQLAlchemyError:
            db.rollback()
            logger.error(f"Payment.complete failed for payment {payment.id}", exc_info=True)
            raise PersistenceError("Failed to finalize payment")
        db.refresh(payment)
        if transitioned:
            logger.info(f"Payment {payment.id} completed (order {payment.gateway_order_id}, invoice {payment.invoice_number})")
            return payment
        if payment.status == "completed":
            logger.info(f"Payment {payment.id} already completed")
            return payment
        raise ConflictError(f"Payment is {payment.status} and cannot be completed")

    @staticmethod
    def fail(db: Session, payment: Payment, reason: Optional[str] = None) -> Payment:
        """Mark a pending payment failed; completion wins over a late failure."""
        updated = db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status == "pending",
        ).update(
            {Payment.status: "failed", Payment.failure_reason: (reason or "Payment failed")[:500]},
            synchronize_session=False,
        )
        db.commit()
        db.refresh(payment)
        if updated:
            logger.info(f"Payment {payment.id} marked failed: {payment.failure_reason}")
        else:
            logger.info(f"Payment {payment.id} is {payment.status}, failure signal ignored")
        return payment

    @staticmethod
    def record_webhook(db: Session, payment: Payment, event_payload: Dict[str, Any], entity: Dict[str, Any]) -> Payment:
        """Bookkeeping for a delivered webhook; never touches status."""
        entity_status = str(entity.get("status") or "unknown")
        gateway_response = dict(payment.gateway_response or {})
        webhook_entries = dict(gateway_response.get("webhook") or {})
        webhook_entries[entity_status] = entity
        gateway_response["webhook"] = webhook_entries

        db.query(Payment).filter(Payment.id == payment.id).update(
            {
                Payment.webhook_received: True,
                Payment.webhook_data: event_payload,
                Payment.gateway_response: gateway_response,
            },
            synchronize_session=False,
        )
        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def record_refusal(db: Session, payment: Payment, reason: str) -> Payment:
        """Note why a completed payment could not be applied; status stays completed."""
        try:
            updated = db.query(Payment).filter(
                Payment.id == payment.id,
                Payment.status == "completed",
                Payment.subscription_id.is_(None),
            ).update({Payment.failure_reason: (reason or "Subscription change refused")[:500]}, synchronize_session=False)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error(f"Could not record refusal for payment {payment.id}", exc_info=True)
            return payment
        if updated:
            logger.warning(f"Payment {payment.id} completed but not applied: {reason}")
        db.refresh(payment)
        return payment
