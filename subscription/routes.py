# src/subscription/routes.py
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional
from subscription.services import SubscriptionLifecycle
from subscription.schemas import ActivateRequest, CancelRequest, SubscriptionResponse
from reconciliation.services import ReconciliationEngine
from payment.routes import get_engine
from notification.services import schedule_payment_email
from auth.routes import get_current_user
from database import get_db
from auth.models import User

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])

@router.post("/activate", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
def activate_subscription(
    activate_data: ActivateRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine)
):
    """Create the subscription for a completed payment that has none yet."""
    result = engine.activate_payment(db, current_user, activate_data.payment_id, activate_data.plan_id)
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    else:
        schedule_payment_email(background_tasks, current_user, result.payment, result.subscription)
    return result.subscription

@router.get("/me", response_model=List[SubscriptionResponse])
def get_my_subscriptions(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Retrieve the caller's subscriptions, newest first."""
    return SubscriptionLifecycle.list_for_user(db, current_user.id)

@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: int,
    cancel_data: Optional[CancelRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    subscription = SubscriptionLifecycle.get(db, subscription_id)
    if subscription.user_id != current_user.id and current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Not allowed to cancel this subscription")
    reason = cancel_data.reason if cancel_data else None
    return SubscriptionLifecycle.cancel(db, subscription, reason=reason)
