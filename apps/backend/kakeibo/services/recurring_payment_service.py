from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kakeibo import models
from kakeibo.errors import CategoryNotFound, DefinitionNotFound, OccurrenceNotFound, PersistenceFailed, ValidationFailed
from kakeibo.services.day_patterns import parse_pattern
from kakeibo.services.occurrence_service import DefinitionLockRegistry, definition_locks
from kakeibo.services.saving_ledger import new_saving_balance, recalculate_balance, record_monthly_savings

logger = logging.getLogger(__name__)

DEFINITION_FIELDS = (
    "name",
    "notes",
    "amount",
    "recurrence_interval_months",
    "first_occurrence_date",
    "end_date",
    "lead_time_months",
    "category_id",
    "saving_strategy",
    "custom_monthly_saving_amount",
    "date_adjustment_policy",
    "recurrence_day_pattern",
)


def validate_definition(data: dict[str, Any]) -> list[str]:
    reasons: list[str] = []
    if not (data.get("name") or "").strip():
        reasons.append("name must not be empty")

    amount = data.get("amount")
    if amount is None or Decimal(amount) <= 0:
        reasons.append("amount must be positive")

    interval = data.get("recurrence_interval_months")
    if interval is None or int(interval) < 1:
        reasons.append("recurrence_interval_months must be >= 1")

    if int(data.get("lead_time_months") or 0) < 0:
        reasons.append("lead_time_months must be >= 0")

    strategy = models.SavingStrategy(data.get("saving_strategy") or models.SavingStrategy.EVENLY_DISTRIBUTED)
    custom = data.get("custom_monthly_saving_amount")
    if strategy == models.SavingStrategy.CUSTOM_MONTHLY:
        if custom is None:
            reasons.append("custom_monthly_saving_amount is required for custom_monthly strategy")
        elif Decimal(custom) <= 0:
            reasons.append("custom_monthly_saving_amount must be positive")
    elif custom is not None:
        reasons.append("custom_monthly_saving_amount is only allowed for custom_monthly strategy")

    first = data.get("first_occurrence_date")
    end = data.get("end_date")
    if first is None:
        reasons.append("first_occurrence_date is required")
    elif end is not None and end < first:
        reasons.append("end_date must not be before first_occurrence_date")

    if data.get("recurrence_day_pattern") is not None:
        try:
            parse_pattern(data["recurrence_day_pattern"])
        except ValidationError:
            reasons.append("recurrence_day_pattern is invalid")
    return reasons


class RecurringPaymentService:
    """정기 지출 정의/발생분/잔액 조회 및 정의 CRUD"""

    def __init__(self, db: Session, *, locks: Optional[DefinitionLockRegistry] = None) -> None:
        self.db = db
        self.locks = locks or definition_locks

    # ---- Queries ---------------------------------------------------------
    def definitions(
        self,
        *,
        ids: Optional[Iterable[int]] = None,
        search_text: Optional[str] = None,
        category_ids: Optional[Iterable[int]] = None,
    ) -> list[models.RecurringPaymentDefinition]:
        q = self.db.query(models.RecurringPaymentDefinition)
        if ids:
            q = q.filter(models.RecurringPaymentDefinition.id.in_(list(ids)))
        if search_text and search_text.strip():
            q = q.filter(func.lower(models.RecurringPaymentDefinition.name).contains(search_text.strip().lower()))
        if category_ids:
            q = q.filter(models.RecurringPaymentDefinition.category_id.in_(list(category_ids)))
        return q.order_by(models.RecurringPaymentDefinition.first_occurrence_date, models.RecurringPaymentDefinition.id).all()

    def get_definition(self, definition_id: int) -> models.RecurringPaymentDefinition:
        row = self.db.get(models.RecurringPaymentDefinition, definition_id)
        if row is None:
            raise DefinitionNotFound(definition_id)
        return row

    def get_occurrence(self, occurrence_id: int) -> models.RecurringPaymentOccurrence:
        row = self.db.get(models.RecurringPaymentOccurrence, occurrence_id)
        if row is None:
            raise OccurrenceNotFound(occurrence_id)
        return row

    def occurrences(
        self,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
        statuses: Optional[Iterable[models.OccurrenceStatus]] = None,
        definition_ids: Optional[Iterable[int]] = None,
    ) -> list[models.RecurringPaymentOccurrence]:
        Occ = models.RecurringPaymentOccurrence
        q = self.db.query(Occ)
        if start is not None and end is not None and start > end:
            start, end = end, start
        if start is not None:
            q = q.filter(Occ.scheduled_date >= start)
        if end is not None:
            q = q.filter(Occ.scheduled_date <= end)
        if statuses:
            q = q.filter(Occ.status.in_([models.OccurrenceStatus(s) for s in statuses]))
        if definition_ids:
            q = q.filter(Occ.definition_id.in_(list(definition_ids)))
        return q.order_by(Occ.scheduled_date, Occ.id).all()

    def balances(self, *, definition_ids: Optional[Iterable[int]] = None) -> list[models.RecurringPaymentSavingBalance]:
        q = self.db.query(models.RecurringPaymentSavingBalance)
        if definition_ids:
            q = q.filter(models.RecurringPaymentSavingBalance.definition_id.in_(list(definition_ids)))
        return q.order_by(models.RecurringPaymentSavingBalance.definition_id).all()

    # ---- Definition CRUD -------------------------------------------------
    def create_definition(self, payload: dict[str, Any]) -> models.RecurringPaymentDefinition:
        data = {k: payload.get(k) for k in DEFINITION_FIELDS if k in payload}
        data.setdefault("saving_strategy", models.SavingStrategy.EVENLY_DISTRIBUTED)
        data.setdefault("date_adjustment_policy", models.DateAdjustmentPolicy.NONE)
        data.setdefault("recurrence_interval_months", 1)
        data.setdefault("lead_time_months", 0)
        self._validate(data)
        data["name"] = data["name"].strip()
        data["notes"] = data.get("notes") or ""
        data["recurrence_day_pattern"] = _dump_pattern(data.get("recurrence_day_pattern"))

        row = models.RecurringPaymentDefinition(**data)
        self.db.add(row)
        self._commit()
        self.db.refresh(row)
        logger.info("Created recurring payment definition %s (%s)", row.id, row.name)
        return row

    def update_definition(self, definition_id: int, patch: dict[str, Any]) -> tuple[models.RecurringPaymentDefinition, bool]:
        """
        정의 수정

        Returns:
            (row, needs_backfill) - 첫 발생일이 앞당겨졌으면 needs_backfill=True
        """
        with self.locks.hold(definition_id):
            row = self.get_definition(definition_id)
            merged = {k: getattr(row, k) for k in DEFINITION_FIELDS}
            merged.update({k: v for k, v in patch.items() if k in DEFINITION_FIELDS})
            self._validate(merged)

            needs_backfill = merged["first_occurrence_date"] < row.first_occurrence_date
            merged["name"] = merged["name"].strip()
            merged["notes"] = merged.get("notes") or ""
            merged["recurrence_day_pattern"] = _dump_pattern(merged.get("recurrence_day_pattern"))
            for key, value in merged.items():
                setattr(row, key, value)
            self._commit()
            self.db.refresh(row)
            return row, needs_backfill

    def delete_definition(self, definition_id: int) -> None:
        with self.locks.hold(definition_id):
            row = self.get_definition(definition_id)
            self.db.delete(row)
            self._commit()
        self.locks.discard(definition_id)
        logger.info("Deleted recurring payment definition %s", definition_id)

    # ---- Balances --------------------------------------------------------
    def record_monthly_savings(self, definition_id: int, year: int, month: int) -> models.RecurringPaymentSavingBalance:
        with self.locks.hold(definition_id):
            definition = self.get_definition(definition_id)
            balance = definition.balance
            if balance is None:
                balance = new_saving_balance(definition, year, month)
                self.db.add(balance)
            else:
                record_monthly_savings(balance, year, month, definition.monthly_saving_amount)
            self._commit()
            self.db.refresh(balance)
            return balance

    def recalculate_balance(
        self,
        definition_id: int,
        year: int,
        month: int,
        *,
        start_year: Optional[int] = None,
        start_month: Optional[int] = None,
    ) -> models.RecurringPaymentSavingBalance:
        with self.locks.hold(definition_id):
            definition = self.get_definition(definition_id)
            balance = definition.balance
            if balance is None:
                balance = new_saving_balance(definition, year, month)
                self.db.add(balance)
            recalculate_balance(
                balance,
                definition,
                definition.occurrences,
                year,
                month,
                start_year=start_year,
                start_month=start_month,
            )
            self._commit()
            self.db.refresh(balance)
            return balance

    # ==================== Private Methods ====================

    def _validate(self, data: dict[str, Any]) -> None:
        reasons = validate_definition(data)
        if reasons:
            logger.warning("Definition rejected: %s", "; ".join(reasons))
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


def _dump_pattern(raw: Any) -> Optional[dict[str, Any]]:
    pattern = parse_pattern(raw)
    return pattern.model_dump() if pattern is not None else None
