# src/plan/services.py
import logging
from sqlalchemy.orm import Session
from typing import Iterable, List

from plan.models import Plan, ALLOWED_PLAN_NAMES, BILLING_CYCLES
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PLANS = {
    "Basic": {
        "name": "Basic",
        "price": 199,
        "amount": 19900,
        "duration": 30,
        "features": ["Basic support", "Limited usage", "1 month plan validity"],
        "billing_cycle": "monthly",
        "priority": 1,
        "renew_limit": 1,
        "allow_downgrade": False,
    },
    "Standard": {
        "name": "Standard",
        "price": 499,
        "amount": 49900,
        "duration": 90,
        "features": ["Standard support", "More usage", "Analytics", "3 month plan validity"],
        "billing_cycle": "monthly",
        "priority": 2,
        "renew_limit": 2,
        "allow_downgrade": False,
    },
    "Premium": {
        "name": "Premium",
        "price": 999,
        "amount": 99900,
        "duration": 365,
        "features": ["Priority support", "Unlimited usage", "Advanced analytics", "Custom reports", "12 month plan validity"],
        "billing_cycle": "yearly",
        "priority": 3,
        "renew_limit": 0,
        "allow_downgrade": True,
    },
}


def validate_plan(plan: Plan) -> Plan:
    """Check catalogue invariants before a plan is persisted."""
    if plan.name not in ALLOWED_PLAN_NAMES:
        raise ValidationError("Plan name must be Basic, Standard, or Premium")
    if not isinstance(plan.amount, int) or plan.amount <= 0:
        raise ValidationError(f"Plan {plan.name}: amount must be a positive integer")
    if not isinstance(plan.duration, int) or plan.duration <= 0:
        raise ValidationError(f"Plan {plan.name}: duration must be a positive integer")
    if plan.price is None or plan.price < 0:
        raise ValidationError(f"Plan {plan.name}: price cannot be negative")
    if plan.renew_limit is None or plan.renew_limit < 0:
        raise ValidationError(f"Plan {plan.name}: renew_limit cannot be negative")
    if plan.billing_cycle not in BILLING_CYCLES:
        raise ValidationError(f"Plan {plan.name}: invalid billing cycle")
    if not isinstance(plan.features, list):
        plan.features = [plan.features] if plan.features else []
    return plan


class PlanCatalog:
    """Read-only plan lookups for the payment and subscription layers."""

    @staticmethod
    def get(db: Session, plan_id: int) -> Plan:
        plan = db.query(Plan).filter(Plan.id == plan_id).first()
        if not plan:
            raise NotFoundError("Plan not found")
        return plan

    @staticmethod
    def get_active(db: Session, plan_id: int) -> Plan:
        """Plan a new order may be placed for; unknown and retired plans are both invalid input."""
        plan = db.query(Plan).filter(Plan.id == plan_id, Plan.is_active == True).first()
        if not plan:
            raise ValidationError("Invalid planId")
        return plan

    @staticmethod
    def list_active(db: Session) -> List[Plan]:
        return db.query(Plan).filter(Plan.is_active == True).order_by(Plan.amount.asc()).all()

    @staticmethod
    def seed_default_plans(db: Session, overrides: Iterable[dict] = ()) -> List[Plan]:
        """Create the default plans, or refresh the stored ones to the defaults."""
        definitions = {name: dict(data) for name, data in DEFAULT_PLANS.items()}
        for override in overrides:
            name = override.get("name")
            if name in definitions:
                definitions[name].update(override)

        plans = []
        for name in ALLOWED_PLAN_NAMES:
            data = definitions[name]
            plan = db.query(Plan).filter(Plan.name == name).first()
            if plan:
                for key, value in data.items():
                    setattr(plan, key, value)
                plan.is_active = data.get("is_active", True)
                action = "updated"
            else:
                plan = Plan(**data)
                db.add(plan)
                action = "created"
            validate_plan(plan)
            plans.append(plan)
            logger.info(f"Plan {name} {action}")
        db.commit()
        return plans
