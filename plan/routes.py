# src/plan/routes.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from plan.services import PlanCatalog
from plan.schemas import PlanResponse
from database import get_db

router = APIRouter(prefix="/plans", tags=["plans"])

@router.get("/", response_model=List[PlanResponse])
def get_plans(db: Session = Depends(get_db)):
    """List active plans, cheapest first."""
    return PlanCatalog.list_active(db)

@router.get("/{plan_id}", response_model=PlanResponse)
def get_plan(plan_id: int, db: Session = Depends(get_db)):
    return PlanCatalog.get(db, plan_id)
