# src/scheduler/tasks.py
import logging
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from config import settings
from database import SessionLocal
from subscription.services import SubscriptionLifecycle

logger = logging.getLogger(__name__)

def expire_subscriptions() -> int:
    """Mark active subscriptions past their end date as expired."""
    db: Session = SessionLocal()
    try:
        expired = SubscriptionLifecycle.expire_overdue(db)
        db.commit()
        if expired:
            logger.info(f"Expired {expired} subscriptions")
        return expired
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error in expire_subscriptions: {str(e)}")
        return 0
    finally:
        db.close()

def start_scheduler() -> BackgroundScheduler:
    """Start the background scheduler."""
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        expire_subscriptions,
        'interval',
        minutes=settings.EXPIRY_SWEEP_INTERVAL_MINUTES,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started, expiry sweep every {settings.EXPIRY_SWEEP_INTERVAL_MINUTES} minutes")
    return scheduler
