"""
동기화 오케스트레이터 (SynchronizationOrchestrator)

책임:
- 스케줄 계획(SynchronizationPlan) 산출 → PersistenceGateway 로 원자적 적용
- 발생분 완료/수정 처리와 잔액 반영
- 완료 상태가 바뀌면 재동기화

동일 정의(definition)에 대한 쓰기는 정의별 락으로 직렬화한다.
서로 다른 정의의 동기화, 조회/후보 매칭은 락 없이 동시에 실행된다.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterator, Optional

from kakeibo import models
from kakeibo.errors import InvalidHorizon, SynchronizationCancelled, ValidationFailed
from kakeibo.models import OccurrenceStatus, now_local_naive, today_local
from kakeibo.services.gateways import PersistenceGateway, SynchronizationSummary, TransactionStore
from kakeibo.services.saving_ledger import completed_paid_total, record_payment
from kakeibo.services.schedule_service import DEFAULT_HORIZON_MONTHS, RecurrenceScheduler

logger = logging.getLogger(__name__)

MAX_ACTUAL_DATE_DEVIATION_DAYS = 90

# 수동 수정에서 허용되는 상태 전이. 스케줄러는 잠긴 상태(completed/cancelled)를 바꾸지 않는다.
ALLOWED_TRANSITIONS: dict[OccurrenceStatus, set[OccurrenceStatus]] = {
    OccurrenceStatus.PLANNED: {
        OccurrenceStatus.PLANNED,
        OccurrenceStatus.SAVING,
        OccurrenceStatus.COMPLETED,
        OccurrenceStatus.CANCELLED,
    },
    OccurrenceStatus.SAVING: {
        OccurrenceStatus.PLANNED,
        OccurrenceStatus.SAVING,
        OccurrenceStatus.COMPLETED,
        OccurrenceStatus.CANCELLED,
    },
    # 완료 취소(reopen)는 허용, 완료 → 취소는 불가
    OccurrenceStatus.COMPLETED: {
        OccurrenceStatus.PLANNED,
        OccurrenceStatus.SAVING,
        OccurrenceStatus.COMPLETED,
    },
    OccurrenceStatus.CANCELLED: {
        OccurrenceStatus.PLANNED,
        OccurrenceStatus.SAVING,
        OccurrenceStatus.COMPLETED,
        OccurrenceStatus.CANCELLED,
    },
}


class DefinitionLockRegistry:
    """definition_id 별 재진입 가능 락 (완료 처리 중 재동기화 호출 허용)"""

    def __init__(self) -> None:
        self._locks: dict[int, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, definition_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(definition_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[definition_id] = lock
            return lock

    @contextmanager
    def hold(self, definition_id: int) -> Iterator[None]:
        lock = self.lock_for(definition_id)
        if not lock.acquire(blocking=False):
            logger.debug("Waiting for definition %s lock", definition_id)
            lock.acquire()
        try:
            yield
        finally:
            lock.release()

    def discard(self, definition_id: int) -> None:
        with self._guard:
            self._locks.pop(definition_id, None)


# 프로세스 전역 레지스트리 (요청마다 서비스 인스턴스가 새로 만들어지므로)
definition_locks = DefinitionLockRegistry()


def validate_occurrence_values(
    *,
    scheduled_date: date,
    expected_amount: Decimal,
    status: OccurrenceStatus,
    actual_date: Optional[date],
    actual_amount: Optional[Decimal],
) -> list[str]:
    reasons: list[str] = []
    if expected_amount is None or Decimal(expected_amount) <= 0:
        reasons.append("expected_amount must be positive")
    if status == OccurrenceStatus.COMPLETED and (actual_date is None or actual_amount is None):
        reasons.append("completed occurrence requires actual_date and actual_amount")
    if actual_amount is not None and Decimal(actual_amount) <= 0:
        reasons.append("actual_amount must be positive")
    if actual_date is not None and abs((actual_date - scheduled_date).days) > MAX_ACTUAL_DATE_DEVIATION_DAYS:
        reasons.append(f"actual_date must be within {MAX_ACTUAL_DATE_DEVIATION_DAYS} days of scheduled_date")
    return reasons


class SynchronizationOrchestrator:
    def __init__(
        self,
        gateway: PersistenceGateway,
        scheduler: RecurrenceScheduler,
        *,
        transaction_store: Optional[TransactionStore] = None,
        locks: Optional[DefinitionLockRegistry] = None,
        today: Callable[[], date] = today_local,
        default_horizon_months: int = DEFAULT_HORIZON_MONTHS,
        backfill_from_first_date: bool = False,
    ) -> None:
        self.gateway = gateway
        self.scheduler = scheduler
        self.transaction_store = transaction_store
        self.locks = locks or definition_locks
        self.today = today
        self.default_horizon_months = default_horizon_months
        self.backfill_from_first_date = backfill_from_first_date

    # ---- Synchronize -----------------------------------------------------
    def synchronize(
        self,
        definition_id: int,
        horizon_months: Optional[int] = None,
        reference_date: Optional[date] = None,
        *,
        backfill_from_first_date: Optional[bool] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SynchronizationSummary:
        horizon = self.default_horizon_months if horizon_months is None else horizon_months
        if horizon < 0:
            raise InvalidHorizon(horizon)
        backfill = self.backfill_from_first_date if backfill_from_first_date is None else backfill_from_first_date

        with self.locks.hold(definition_id):
            self._check_cancelled(definition_id, cancel_event)
            definition = self.gateway.get_definition(definition_id, refresh=True)
            occurrences = self.gateway.occurrences_for(definition_id, refresh=True)
            reference = reference_date or self.today()

            plan = self.scheduler.synchronization_plan(
                definition,
                occurrences,
                reference,
                horizon,
                backfill_from_first_date=backfill,
            )
            # 여기까지는 읽기만 수행. 이후 적용은 중단 없이 끝까지 진행
            self._check_cancelled(definition_id, cancel_event)

            synced_at = datetime.combine(reference, now_local_naive().time())
            if not plan.has_changes:
                logger.debug("Definition %s already in sync", definition_id)
                return SynchronizationSummary(definition_id=definition_id, synced_at=synced_at)

            summary = self.gateway.apply_plan(definition, plan, synced_at)
            logger.info(
                "Synchronized definition %s: created=%d updated=%d removed=%d",
                definition_id,
                summary.created_count,
                summary.updated_count,
                summary.removed_count,
            )
            return summary

    # ---- Occurrence edits --------------------------------------------------
    def mark_occurrence_completed(
        self,
        occurrence_id: int,
        actual_date: date,
        actual_amount: Decimal,
        linked_transaction_id: Optional[int] = None,
        horizon_months: Optional[int] = None,
        *,
        reference_date: Optional[date] = None,
    ) -> SynchronizationSummary:
        definition_id = self.gateway.get_occurrence(occurrence_id).definition_id
        with self.locks.hold(definition_id):
            occurrence = self._reload(definition_id, occurrence_id)
            transaction_id = linked_transaction_id if linked_transaction_id is not None else occurrence.transaction_id
            self._apply_edit(
                occurrence,
                OccurrenceStatus.COMPLETED,
                actual_date,
                actual_amount,
                transaction_id,
            )
            # 완료로 새 horizon 구간이 열릴 수 있으므로 항상 재동기화
            return self.synchronize(definition_id, horizon_months, reference_date, backfill_from_first_date=False)

    def update_occurrence(
        self,
        occurrence_id: int,
        status: OccurrenceStatus | str,
        actual_date: Optional[date] = None,
        actual_amount: Optional[Decimal] = None,
        linked_transaction_id: Optional[int] = None,
        horizon_months: Optional[int] = None,
        *,
        reference_date: Optional[date] = None,
    ) -> Optional[SynchronizationSummary]:
        """
        발생분 수정

        완료 여부가 바뀐 경우에만 재동기화하고 요약을 반환한다. 그 외에는 None.
        """
        definition_id = self.gateway.get_occurrence(occurrence_id).definition_id
        with self.locks.hold(definition_id):
            occurrence = self._reload(definition_id, occurrence_id)
            was_completed = OccurrenceStatus(occurrence.status) == OccurrenceStatus.COMPLETED
            new_status = OccurrenceStatus(status)
            self._apply_edit(occurrence, new_status, actual_date, actual_amount, linked_transaction_id)
            if was_completed == (new_status == OccurrenceStatus.COMPLETED):
                return None
            return self.synchronize(definition_id, horizon_months, reference_date, backfill_from_first_date=False)

    # ==================== Private Methods ====================

    def _reload(self, definition_id: int, occurrence_id: int):
        """락 획득 후 정의의 발생분을 DB 값으로 다시 읽는다 (대기 중 다른 요청이 커밋했을 수 있음)"""
        self.gateway.occurrences_for(definition_id, refresh=True)
        return self.gateway.get_occurrence(occurrence_id, refresh=True)

    def _check_cancelled(self, definition_id: int, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Synchronization of definition %s cancelled before commit", definition_id)
            raise SynchronizationCancelled(definition_id)

    def _apply_edit(
        self,
        occurrence: models.RecurringPaymentOccurrence,
        new_status: OccurrenceStatus,
        actual_date: Optional[date],
        actual_amount: Optional[Decimal],
        transaction_id: Optional[int],
    ) -> None:
        current = OccurrenceStatus(occurrence.status)
        reasons: list[str] = []
        if new_status not in ALLOWED_TRANSITIONS[current]:
            reasons.append(f"status cannot change from {current.value} to {new_status.value}")
        reasons += validate_occurrence_values(
            scheduled_date=occurrence.scheduled_date,
            expected_amount=occurrence.expected_amount,
            status=new_status,
            actual_date=actual_date,
            actual_amount=actual_amount,
        )
        if reasons:
            logger.warning("Occurrence %s rejected: %s", occurrence.id, "; ".join(reasons))
            raise ValidationFailed(reasons)

        if self.transaction_store is not None:
            # 존재하지 않는 거래면 TransactionNotFound (변경 전)
            self.transaction_store.link(occurrence, transaction_id)
        else:
            occurrence.transaction_id = transaction_id

        was_completed = current == OccurrenceStatus.COMPLETED
        occurrence.status = new_status
        occurrence.actual_date = actual_date
        occurrence.actual_amount = actual_amount

        balance = None
        definition = self.gateway.get_definition(occurrence.definition_id)
        if new_status == OccurrenceStatus.COMPLETED and not was_completed:
            balance = self.gateway.ensure_balance(definition)
            difference = record_payment(balance, occurrence)
            logger.info(
                "Occurrence %s completed: expected=%s actual=%s (%s)",
                occurrence.id,
                difference.expected,
                difference.actual,
                difference.type.value,
            )
        elif was_completed:
            # 완료 금액 수정 또는 완료 취소 → 지급 합계 재계산
            balance = self.gateway.get_balance(definition.id)
            if balance is not None:
                balance.total_paid_amount = completed_paid_total(self.gateway.occurrences_for(definition.id))

        self.gateway.save_occurrence(occurrence, balance=balance)
