# src/payment/routes.py
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List
from payment.services import PaymentLedger
from payment.schemas import (
    PaymentResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from payment.gateway import RazorpayClient, get_gateway
from reconciliation.services import ReconciliationEngine
from notification.services import schedule_payment_email
from auth.routes import get_current_user
from auth.models import User
from database import get_db

router = APIRouter(prefix="/payments", tags=["payments"])

SUCCESS_MESSAGES = {
    "purchase": "Subscription activated successfully",
    "renew": "Subscription renewed successfully",
    "upgrade": "Plan upgraded successfully",
}


def get_engine() -> ReconciliationEngine:
    return ReconciliationEngine()


@router.post("/create-order", response_model=CreateOrderResponse)
def create_order(
    order_data: CreateOrderRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: RazorpayClient = Depends(get_gateway)
):
    """Create a pending payment and the matching Razorpay order."""
    return PaymentLedger.open_order(
        db,
        current_user,
        gateway,
        plan_id=order_data.plan_id,
        action=order_data.action,
        target_subscription_id=order_data.subscription_id,
    )


@router.post("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    verify_data: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine)
):
    """Verify the checkout signature and apply the payment."""
    result = engine.verify_payment(
        db,
        current_user,
        order_id=verify_data.razorpay_order_id,
        gateway_payment_id=verify_data.razorpay_payment_id,
        signature=verify_data.razorpay_signature,
        payment_id=verify_data.payment_id,
        raw=verify_data.model_dump(exclude={"razorpay_signature"}),
    )
    if result.replayed:
        message = "Payment already processed"
    else:
        message = SUCCESS_MESSAGES.get(result.payment.action, "Payment processed")
        schedule_payment_email(background_tasks, current_user, result.payment, result.subscription)
    return {"message": message, "replayed": result.replayed, "subscription": result.subscription}


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine)
):
    # signature is computed over the exact bytes received
    raw_body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature")
    return await run_in_threadpool(engine.handle_webhook, db, raw_body, signature)


@router.get("/", response_model=List[PaymentResponse])
def get_user_payments(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return PaymentLedger.list_for_user(db, current_user.id)
