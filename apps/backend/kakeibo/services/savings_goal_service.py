"""
저축 목표 서비스

정기 지출 잔액과 같은 원장 규칙(saving_ledger)을 쓰되,
지급(paid) 대신 인출(withdrawn)을 누적한다.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kakeibo import models
from kakeibo.errors import CategoryNotFound, PersistenceFailed, SavingsGoalNotFound, ValidationFailed
from kakeibo.services.saving_ledger import (
    ZERO,
    recalculate_goal_balance,
    record_monthly_savings,
    record_withdrawal,
)

logger = logging.getLogger(__name__)

GOAL_FIELDS = (
    "name",
    "target_amount",
    "monthly_saving_amount",
    "category_id",
    "notes",
    "start_date",
    "target_date",
    "is_active",
)


def validate_goal(data: dict[str, Any]) -> list[str]:
    reasons: list[str] = []
    if not (data.get("name") or "").strip():
        reasons.append("name must not be empty")
    target = data.get("target_amount")
    if target is not None and Decimal(target) < 0:
        reasons.append("target_amount must not be negative")
    monthly = data.get("monthly_saving_amount")
    if monthly is not None and Decimal(monthly) < 0:
        reasons.append("monthly_saving_amount must not be negative")
    start = data.get("start_date")
    target_date = data.get("target_date")
    if start is None:
        reasons.append("start_date is required")
    elif target_date is not None and target_date < start:
        reasons.append("target_date must not be before start_date")
    return reasons


class SavingsGoalService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_all(self, *, is_active: Optional[bool] = None) -> list[models.SavingsGoal]:
        q = self.db.query(models.SavingsGoal)
        if is_active is not None:
            q = q.filter(models.SavingsGoal.is_active == bool(is_active))
        return q.order_by(models.SavingsGoal.id).all()

    def get_by_id(self, goal_id: int) -> models.SavingsGoal:
        row = self.db.get(models.SavingsGoal, goal_id)
        if row is None:
            raise SavingsGoalNotFound(goal_id)
        return row

    def create(self, payload: dict[str, Any]) -> models.SavingsGoal:
        data = {k: payload[k] for k in GOAL_FIELDS if k in payload}
        data.setdefault("monthly_saving_amount", ZERO)
        self._validate(data)
        data["name"] = data["name"].strip()
        row = models.SavingsGoal(**data)
        self.db.add(row)
        self._commit()
        self.db.refresh(row)
        return row

    def update(self, goal_id: int, patch: dict[str, Any]) -> models.SavingsGoal:
        row = self.get_by_id(goal_id)
        merged = {k: getattr(row, k) for k in GOAL_FIELDS}
        merged.update({k: v for k, v in patch.items() if k in GOAL_FIELDS})
        self._validate(merged)
        merged["name"] = merged["name"].strip()
        for key, value in merged.items():
            setattr(row, key, value)
        self._commit()
        self.db.refresh(row)
        return row

    def delete(self, goal_id: int) -> None:
        row = self.get_by_id(goal_id)
        self.db.delete(row)
        self._commit()

    # ---- Balance ---------------------------------------------------------
    def record_monthly_savings(self, goal_id: int, year: int, month: int) -> models.SavingsGoalBalance:
        goal = self.get_by_id(goal_id)
        balance = goal.balance
        if balance is None:
            balance = models.SavingsGoalBalance(
                goal_id=goal.id,
                total_saved_amount=Decimal(goal.monthly_saving_amount or ZERO),
                total_withdrawn_amount=ZERO,
                last_updated_year=year,
                last_updated_month=month,
            )
            self.db.add(balance)
        else:
            record_monthly_savings(balance, year, month, Decimal(goal.monthly_saving_amount or ZERO))
        self._commit()
        self.db.refresh(balance)
        return balance

    def record_withdrawal(
        self,
        goal_id: int,
        *,
        amount: Decimal,
        withdrawal_date: date,
        purpose: Optional[str] = None,
        transaction_id: Optional[int] = None,
    ) -> models.SavingsGoalWithdrawal:
        goal = self.get_by_id(goal_id)
        if amount is None or Decimal(amount) <= 0:
            raise ValidationFailed(["amount must be positive"])
        balance = goal.balance
        if balance is None:
            balance = models.SavingsGoalBalance(
                goal_id=goal.id,
                total_saved_amount=ZERO,
                total_withdrawn_amount=ZERO,
                last_updated_year=goal.start_date.year,
                last_updated_month=goal.start_date.month,
            )
            self.db.add(balance)
        record_withdrawal(balance, Decimal(amount))
        row = models.SavingsGoalWithdrawal(
            goal_id=goal.id,
            amount=amount,
            withdrawal_date=withdrawal_date,
            purpose=purpose,
            transaction_id=transaction_id,
        )
        self.db.add(row)
        self._commit()
        self.db.refresh(row)
        logger.info("Savings goal %s withdrawal %s on %s", goal.id, amount, withdrawal_date)
        return row

    def recalculate(self, goal_id: int, year: int, month: int) -> models.SavingsGoalBalance:
        goal = self.get_by_id(goal_id)
        balance = goal.balance
        if balance is None:
            balance = models.SavingsGoalBalance(goal_id=goal.id, last_updated_year=year, last_updated_month=month)
            self.db.add(balance)
        recalculate_goal_balance(balance, goal, goal.withdrawals, year, month)
        self._commit()
        self.db.refresh(balance)
        return balance

    # ==================== Private Methods ====================

    def _validate(self, data: dict[str, Any]) -> None:
        reasons = validate_goal(data)
        if reasons:
            raise ValidationFailed(reasons)
        category_id = data.get("category_id")
        if category_id is not None and self.db.get(models.Category, category_id) is None:
            raise CategoryNotFound(category_id)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Commit failed")
            raise PersistenceFailed(exc) from exc
