from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kakeibo import models
from kakeibo.errors import (
    DefinitionNotFound,
    OccurrenceNotFound,
    PersistenceFailed,
    TransactionNotFound,
)
from kakeibo.services.gateways import SynchronizationSummary
from kakeibo.services.saving_ledger import empty_saving_balance
from kakeibo.services.schedule_service import SynchronizationPlan

logger = logging.getLogger(__name__)


class SqlAlchemyPersistenceGateway:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_definition(self, definition_id: int, *, refresh: bool = False) -> models.RecurringPaymentDefinition:
        row = self.db.get(models.RecurringPaymentDefinition, definition_id, populate_existing=refresh)
        if row is None:
            raise DefinitionNotFound(definition_id)
        return row

    def get_occurrence(self, occurrence_id: int, *, refresh: bool = False) -> models.RecurringPaymentOccurrence:
        """refresh=True 면 identity map 을 무시하고 DB 값으로 다시 읽는다 (락 획득 후 사용)"""
        row = self.db.get(models.RecurringPaymentOccurrence, occurrence_id, populate_existing=refresh)
        if row is None:
            raise OccurrenceNotFound(occurrence_id)
        return row

    def occurrences_for(self, definition_id: int, *, refresh: bool = False) -> list[models.RecurringPaymentOccurrence]:
        query = self.db.query(models.RecurringPaymentOccurrence)
        if refresh:
            query = query.populate_existing()
        return (
            query
            .filter(models.RecurringPaymentOccurrence.definition_id == definition_id)
            .order_by(models.RecurringPaymentOccurrence.scheduled_date, models.RecurringPaymentOccurrence.id)
            .all()
        )

    def apply_plan(
        self,
        definition: models.RecurringPaymentDefinition,
        plan: SynchronizationPlan,
        synced_at: datetime,
    ) -> SynchronizationSummary:
        try:
            for draft in plan.created:
                self.db.add(
                    models.RecurringPaymentOccurrence(
                        definition_id=definition.id,
                        scheduled_date=draft.scheduled_date,
                        expected_amount=draft.expected_amount,
                        status=draft.status,
                        updated_at=synced_at,
                    )
                )
            for change in plan.updated:
                row = self.db.get(models.RecurringPaymentOccurrence, change.occurrence_id)
                if row is None or row.is_scheduling_locked:
                    # 계획 산출 후 잠긴 발생분은 건드리지 않음
                    continue
                row.expected_amount = change.expected_amount
                row.status = change.status
                row.updated_at = synced_at
            for occurrence_id in plan.removed:
                row = self.db.get(models.RecurringPaymentOccurrence, occurrence_id)
                if row is None or row.is_scheduling_locked:
                    continue
                self.db.delete(row)
            definition.updated_at = synced_at
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to apply synchronization plan for definition %s", definition.id)
            raise PersistenceFailed(exc) from exc

        return SynchronizationSummary(
            definition_id=definition.id,
            synced_at=synced_at,
            created_count=len(plan.created),
            updated_count=len(plan.updated),
            removed_count=len(plan.removed),
        )

    def save_occurrence(
        self,
        occurrence: models.RecurringPaymentOccurrence,
        *,
        balance: Optional[models.RecurringPaymentSavingBalance] = None,
    ) -> models.RecurringPaymentOccurrence:
        try:
            self.db.add(occurrence)
            if balance is not None:
                self.db.add(balance)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to save occurrence %s", occurrence.id)
            raise PersistenceFailed(exc) from exc
        self.db.refresh(occurrence)
        return occurrence

    def get_balance(self, definition_id: int) -> Optional[models.RecurringPaymentSavingBalance]:
        # 항상 DB 값으로 다시 읽음
        return (
            self.db.query(models.RecurringPaymentSavingBalance)
            .populate_existing()
            .filter(models.RecurringPaymentSavingBalance.definition_id == definition_id)
            .first()
        )

    def ensure_balance(self, definition: models.RecurringPaymentDefinition) -> models.RecurringPaymentSavingBalance:
        """기존 잔액이 없으면 빈 잔액을 세션에 추가만 한다 (commit 은 호출자)."""
        balance = self.get_balance(definition.id)
        if balance is None:
            balance = empty_saving_balance(definition)
            self.db.add(balance)
        return balance

    def commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Commit failed")
            raise PersistenceFailed(exc) from exc


class SqlAlchemyTransactionStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def transactions_between(self, start: date, end: date) -> list[models.Transaction]:
        return (
            self.db.query(models.Transaction)
            .filter(models.Transaction.occurred_at >= start, models.Transaction.occurred_at <= end)
            .order_by(models.Transaction.occurred_at, models.Transaction.id)
            .all()
        )

    def get_transaction(self, transaction_id: int) -> models.Transaction:
        row = self.db.get(models.Transaction, transaction_id)
        if row is None:
            raise TransactionNotFound(transaction_id)
        return row

    def linked_lookup(self) -> dict[int, int]:
        rows = (
            self.db.query(models.RecurringPaymentOccurrence.transaction_id, models.RecurringPaymentOccurrence.id)
            .filter(models.RecurringPaymentOccurrence.transaction_id.isnot(None))
            .all()
        )
        return {txn_id: occ_id for txn_id, occ_id in rows}

    def link(self, occurrence: models.RecurringPaymentOccurrence, transaction_id: Optional[int]) -> None:
        if transaction_id is not None:
            self.get_transaction(transaction_id)
        occurrence.transaction_id = transaction_id

