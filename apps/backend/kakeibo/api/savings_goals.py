from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kakeibo.core.database import get_db
from kakeibo.errors import SavingsGoalBalanceNotFound
from kakeibo.schemas import (
    MonthlySavingsRequest,
    SavingsGoalBalanceOut,
    SavingsGoalCreate,
    SavingsGoalOut,
    SavingsGoalUpdate,
    SavingsGoalWithdrawalCreate,
    SavingsGoalWithdrawalOut,
)
from kakeibo.services.savings_goal_service import SavingsGoalService


router = APIRouter(prefix="/savings-goals", tags=["savings-goals"])


@router.get("", response_model=list[SavingsGoalOut])
def list_goals(is_active: Optional[bool] = Query(None), db: Session = Depends(get_db)):
    return SavingsGoalService(db).get_all(is_active=is_active)


@router.post("", response_model=SavingsGoalOut, status_code=201)
def create_goal(payload: SavingsGoalCreate, db: Session = Depends(get_db)):
    return SavingsGoalService(db).create(payload.model_dump())


@router.get("/{goal_id}", response_model=SavingsGoalOut)
def get_goal(goal_id: int, db: Session = Depends(get_db)):
    return SavingsGoalService(db).get_by_id(goal_id)


@router.put("/{goal_id}", response_model=SavingsGoalOut)
def update_goal(goal_id: int, payload: SavingsGoalUpdate, db: Session = Depends(get_db)):
    return SavingsGoalService(db).update(goal_id, payload.model_dump(exclude_unset=True))


@router.delete("/{goal_id}", status_code=204)
def delete_goal(goal_id: int, db: Session = Depends(get_db)):
    SavingsGoalService(db).delete(goal_id)


@router.post("/{goal_id}/monthly-savings", response_model=SavingsGoalBalanceOut)
def record_goal_savings(goal_id: int, payload: MonthlySavingsRequest, db: Session = Depends(get_db)):
    return SavingsGoalService(db).record_monthly_savings(goal_id, payload.year, payload.month)


@router.post("/{goal_id}/withdrawals", response_model=SavingsGoalWithdrawalOut, status_code=201)
def create_withdrawal(goal_id: int, payload: SavingsGoalWithdrawalCreate, db: Session = Depends(get_db)):
    return SavingsGoalService(db).record_withdrawal(
        goal_id,
        amount=payload.amount,
        withdrawal_date=payload.withdrawal_date,
        purpose=payload.purpose,
        transaction_id=payload.transaction_id,
    )


@router.get("/{goal_id}/balance", response_model=SavingsGoalBalanceOut)
def get_goal_balance(goal_id: int, db: Session = Depends(get_db)):
    goal = SavingsGoalService(db).get_by_id(goal_id)
    if goal.balance is None:
        raise SavingsGoalBalanceNotFound(goal_id)
    return goal.balance


@router.post("/{goal_id}/recalculate", response_model=SavingsGoalBalanceOut)
def recalculate_goal_balance(goal_id: int, payload: MonthlySavingsRequest, db: Session = Depends(get_db)):
    return SavingsGoalService(db).recalculate(goal_id, payload.year, payload.month)
