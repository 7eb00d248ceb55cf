# src/subscription/services.py
import logging
from sqlalchemy import func
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from subscription.models import Subscription, BillingRecord
from payment.models import Payment
from plan.models import Plan
from plan.services import PlanCatalog
from database import utcnow
from errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class SubscriptionLifecycle:
    """State transitions of a subscription: pending -> active -> {expired, cancelled}.

    ``activate``, ``renew`` and ``upgrade`` only flush; the reconciliation engine
    owns the transaction they run in and commits it together with the payment
    link. ``cancel`` commits on its own.
    """

    @staticmethod
    def derive_end_date(start: datetime, duration_days: int) -> datetime:
        return start + timedelta(days=duration_days)

    @staticmethod
    def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
        """First instant of the UTC calendar month containing ``now`` and of the next one."""
        start = datetime(now.year, now.month, 1)
        if now.month == 12:
            return start, datetime(now.year + 1, 1, 1)
        return start, datetime(now.year, now.month + 1, 1)

    @staticmethod
    def get(db: Session, subscription_id: int) -> Subscription:
        subscription = db.query(Subscription).filter(Subscription.id == subscription_id).first()
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    @staticmethod
    def list_for_user(db: Session, user_id: int) -> List[Subscription]:
        return db.query(Subscription).filter(Subscription.user_id == user_id).order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()

    @staticmethod
    def get_active_for_user(db: Session, user_id: int, plan_id: Optional[int] = None, now: Optional[datetime] = None) -> Optional[Subscription]:
        """Latest-ending subscription that is active and not past its end date."""
        now = now or utcnow()
        query = db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status == "active",
            Subscription.end_date > now,
        )
        if plan_id is not None:
            query = query.filter(Subscription.plan_id == plan_id)
        return query.order_by(Subscription.end_date.desc()).first()

    @staticmethod
    def lock(db: Session, subscription_id: int) -> Subscription:
        """Take the row write lock by bumping ``version`` and return the fresh row."""
        updated = db.query(Subscription).filter(Subscription.id == subscription_id).update(
            {Subscription.version: Subscription.version + 1},
            synchronize_session=False,
        )
        if not updated:
            raise NotFoundError("Subscription not found")
        return db.query(Subscription).populate_existing().filter(Subscription.id == subscription_id).one()

    @staticmethod
    def count_renewals_in_month(db: Session, subscription_id: int, now: datetime, exclude_payment_id: Optional[int] = None) -> int:
        """Completed renew payments already applied to the subscription this UTC month."""
        month_start, next_month_start = SubscriptionLifecycle.month_bounds(now)
        query = db.query(func.count(Payment.id)).filter(
            Payment.action == "renew",
            Payment.target_subscription_id == subscription_id,
            Payment.status == "completed",
            Payment.subscription_id.isnot(None),
            Payment.completed_at >= month_start,
            Payment.completed_at < next_month_start,
        )
        if exclude_payment_id is not None:
            query = query.filter(Payment.id != exclude_payment_id)
        return query.scalar() or 0

    @staticmethod
    def _append_billing(db: Session, subscription: Subscription, payment: Payment, now: datetime) -> BillingRecord:
        record = BillingRecord(
            subscription_id=subscription.id,
            payment_id=payment.id,
            date=now,
            amount=payment.amount,
            outcome="success",
        )
        db.add(record)
        return record

    @staticmethod
    def _create_active(db: Session, payment: Payment, plan: Plan, now: datetime) -> Subscription:
        # lapsed rows the sweeper has not reached yet would block the new active row
        db.query(Subscription).filter(
            Subscription.user_id == payment.user_id,
            Subscription.plan_id == plan.id,
            Subscription.status == "active",
            Subscription.end_date <= now,
        ).update({Subscription.status: "expired"}, synchronize_session=False)

        if SubscriptionLifecycle.get_active_for_user(db, payment.user_id, plan_id=plan.id, now=now):
            raise ConflictError("You already have an active subscription for this plan")

        subscription = Subscription(
            user_id=payment.user_id,
            plan_id=plan.id,
            payment_id=payment.id,
            status="active",
            start_date=now,
            end_date=SubscriptionLifecycle.derive_end_date(now, plan.duration),
        )
        db.add(subscription)
        db.flush()
        SubscriptionLifecycle._append_billing(db, subscription, payment, now)
        db.flush()
        return subscription

    @staticmethod
    def activate(db: Session, payment: Payment, plan: Plan, now: Optional[datetime] = None) -> Subscription:
        """Purchase: start a new subscription now."""
        now = now or utcnow()
        subscription = SubscriptionLifecycle._create_active(db, payment, plan, now)
        logger.info(f"Subscription {subscription.id} created after purchase for user {payment.user_id} on plan {plan.name}")
        return subscription

    @staticmethod
    def renew(db: Session, payment: Payment, plan: Plan, now: Optional[datetime] = None) -> Subscription:
        """Extend the target subscription by the plan duration from max(end, now)."""
        now = now or utcnow()
        if payment.target_subscription_id is None:
            raise ValidationError("Target subscription not found for renewal")
        subscription = SubscriptionLifecycle.lock(db, payment.target_subscription_id)
        if subscription.plan_id != plan.id:
            raise ValidationError("Renewal must use the subscription's plan")

        renew_limit = PlanCatalog.get(db, subscription.plan_id).renew_limit or 0
        if renew_limit > 0:
            renewals = SubscriptionLifecycle.count_renewals_in_month(db, subscription.id, now, exclude_payment_id=payment.id)
            if renewals >= renew_limit:
                logger.warning(f"Renew limit {renew_limit} reached for subscription {subscription.id}, payment {payment.id} refused")
                raise ConflictError("You have reached the maximum renewals for this period")

        current_end = subscription.end_date if subscription.end_date > now else now
        subscription.end_date = SubscriptionLifecycle.derive_end_date(current_end, plan.duration)
        subscription.status = "active"
        SubscriptionLifecycle._append_billing(db, subscription, payment, now)
        db.flush()
        logger.info(f"Subscription {subscription.id} renewed until {subscription.end_date.isoformat()} for user {subscription.user_id}")
        return subscription

    @staticmethod
    def upgrade(db: Session, payment: Payment, plan: Plan, now: Optional[datetime] = None) -> Subscription:
        """Supersede the target subscription with a fresh one on a higher tier."""
        now = now or utcnow()
        if payment.target_subscription_id is None:
            raise ValidationError("Target subscription is required for upgrade")
        old_subscription = SubscriptionLifecycle.lock(db, payment.target_subscription_id)

        if old_subscription.plan_id == plan.id:
            raise ConflictError("Cannot upgrade to the same plan")
        old_plan = PlanCatalog.get(db, old_subscription.plan_id)
        if old_plan.priority >= plan.priority:
            logger.warning(f"Upgrade refused for payment {payment.id}: {old_plan.name} -> {plan.name}")
            raise ConflictError("Cannot downgrade or choose same level plan. Upgrade only to higher plans.")

        old_subscription.status = "expired"
        db.flush()
        subscription = SubscriptionLifecycle._create_active(db, payment, plan, now)
        logger.info(f"Plan upgraded for user {payment.user_id}: subscription {old_subscription.id} -> {subscription.id}")
        return subscription

    @staticmethod
    def cancel(db: Session, subscription: Subscription, reason: Optional[str] = None, now: Optional[datetime] = None) -> Subscription:
        subscription = SubscriptionLifecycle.lock(db, subscription.id)
        if subscription.status == "cancelled":
            db.commit()
            return subscription
        subscription.status = "cancelled"
        subscription.cancelled_at = now or utcnow()
        subscription.cancellation_reason = (reason or "User cancelled")[:500]
        db.commit()
        db.refresh(subscription)
        logger.info(f"Subscription {subscription.id} cancelled")
        return subscription

    @staticmethod
    def expire_overdue(db: Session, now: Optional[datetime] = None) -> int:
        """Expire active subscriptions past their end date.

        The predicate is part of the UPDATE itself, so a row whose end date a
        concurrent renewal has pushed into the future is left alone.
        """
        now = now or utcnow()
        return db.query(Subscription).filter(
            Subscription.status == "active",
            Subscription.end_date < now,
        ).update({Subscription.status: "expired"}, synchronize_session=False)
