# src/main.py
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from database import Base, SessionLocal, engine
from auth.routes import router as auth_router
from plan.routes import router as plan_router
from subscription.routes import router as subscription_router
from payment.routes import router as payment_router
from payment.gateway import RazorpayClient
from plan.services import PlanCatalog
from scheduler.tasks import start_scheduler, expire_subscriptions
from config import settings
# register every table on Base.metadata
import auth.models  # noqa: F401
import plan.models  # noqa: F401
import payment.models  # noqa: F401
import subscription.models  # noqa: F401

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Subscription Billing Backend",
    description="Plans, Razorpay payments and subscription lifecycle",
    version="0.1.0",
)

# Configure CORS
origins = ["http://localhost:5173", "http://localhost", "http://127.0.0.1:5173"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(plan_router)
app.include_router(subscription_router)
app.include_router(payment_router)

@app.on_event("startup")
async def startup_event():
    """Run initial tasks on startup."""
    Base.metadata.create_all(bind=engine)
    if settings.SEED_DEFAULT_PLANS:
        db = SessionLocal()
        try:
            PlanCatalog.seed_default_plans(db)
        finally:
            db.close()
    app.state.gateway = RazorpayClient()
    if not app.state.gateway.configured:
        logger.error("Razorpay configuration missing. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.")
    expire_subscriptions()
    app.state.scheduler = start_scheduler()

@app.on_event("shutdown")
async def shutdown_event():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)

@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Welcome to Subscription Billing Backend!"}
