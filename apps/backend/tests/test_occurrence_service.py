from __future__ import annotations

import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from kakeibo import models
from kakeibo.errors import (
    InvalidHorizon,
    OccurrenceNotFound,
    SynchronizationCancelled,
    TransactionNotFound,
    ValidationFailed,
)
from kakeibo.models import OccurrenceStatus
from kakeibo.services.business_days import BusinessDayResolver
from kakeibo.services.occurrence_service import (
    DefinitionLockRegistry,
    SynchronizationOrchestrator,
    validate_occurrence_values,
)
from kakeibo.services.recurring_payment_service import RecurringPaymentService
from kakeibo.services.schedule_service import RecurrenceScheduler
from kakeibo.services.sqlalchemy_gateway import SqlAlchemyPersistenceGateway, SqlAlchemyTransactionStore


TODAY = date(2025, 1, 1)


@pytest.fixture()
def orchestrator(db_session):
    return SynchronizationOrchestrator(
        SqlAlchemyPersistenceGateway(db_session),
        RecurrenceScheduler(BusinessDayResolver()),
        transaction_store=SqlAlchemyTransactionStore(db_session),
        locks=DefinitionLockRegistry(),
        today=lambda: TODAY,
        default_horizon_months=3,
    )


def _occurrences(db_session, definition_id):
    return (
        db_session.query(models.RecurringPaymentOccurrence)
        .filter_by(definition_id=definition_id)
        .order_by(models.RecurringPaymentOccurrence.scheduled_date)
        .all()
    )


def test_synchronize_creates_then_noop(db_session, orchestrator, make_definition):
    definition = make_definition()

    summary = orchestrator.synchronize(definition.id)
    assert (summary.created_count, summary.updated_count, summary.removed_count) == (3, 0, 0)
    assert summary.synced_at.date() == TODAY

    rows = _occurrences(db_session, definition.id)
    assert [r.scheduled_date for r in rows] == [date(2025, 1, 27), date(2025, 2, 27), date(2025, 3, 27)]
    assert [r.status for r in rows] == [OccurrenceStatus.SAVING, OccurrenceStatus.PLANNED, OccurrenceStatus.PLANNED]

    again = orchestrator.synchronize(definition.id)
    assert (again.created_count, again.updated_count, again.removed_count) == (0, 0, 0)
    assert len(_occurrences(db_session, definition.id)) == 3


def test_synchronize_honours_horizon_and_reference(db_session, orchestrator, make_definition):
    definition = make_definition()
    summary = orchestrator.synchronize(definition.id, horizon_months=6, reference_date=date(2025, 1, 15))
    assert summary.created_count == 6

    with pytest.raises(InvalidHorizon):
        orchestrator.synchronize(definition.id, horizon_months=-1)


def test_mark_completed_records_payment_and_resyncs(db_session, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan, feb, _ = _occurrences(db_session, definition.id)

    summary = orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("79000"))

    assert summary.updated_count == 1  # 2/27 → saving
    db_session.refresh(jan)
    db_session.refresh(feb)
    assert jan.status == OccurrenceStatus.COMPLETED
    assert jan.actual_amount == Decimal("79000")
    assert feb.status == OccurrenceStatus.SAVING

    balance = db_session.query(models.RecurringPaymentSavingBalance).filter_by(definition_id=definition.id).one()
    assert balance.total_saved_amount == Decimal("0")
    assert balance.total_paid_amount == Decimal("79000")
    assert (balance.last_updated_year, balance.last_updated_month) == (None, None)


def test_end_date_before_next_period_removes_open_rows(db_session, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan = _occurrences(db_session, definition.id)[0]
    orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("80000"))

    definition.end_date = date(2025, 1, 31)
    db_session.commit()
    summary = orchestrator.synchronize(definition.id)

    assert summary.removed_count == 2
    rows = _occurrences(db_session, definition.id)
    assert [(r.scheduled_date, r.status) for r in rows] == [(date(2025, 1, 27), OccurrenceStatus.COMPLETED)]


def test_completion_before_any_savings_keeps_months_open(db_session, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan, feb, _ = _occurrences(db_session, definition.id)
    orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("80000"))
    orchestrator.mark_occurrence_completed(feb.id, date(2025, 3, 2), Decimal("80000"))

    # 완료 시점 이전 달의 적립도 그대로 기록 가능
    service = RecurringPaymentService(db_session, locks=orchestrator.locks)
    service.record_monthly_savings(definition.id, 2025, 1)
    balance = service.record_monthly_savings(definition.id, 2025, 2)

    assert balance.total_saved_amount == Decimal("160000")
    assert balance.total_paid_amount == Decimal("160000")
    assert (balance.last_updated_year, balance.last_updated_month) == (2025, 2)


def test_stale_session_does_not_double_count_payment(db_session, engine, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan = _occurrences(db_session, definition.id)[0]

    other = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        stale = other.get(models.RecurringPaymentOccurrence, jan.id)
        assert stale.status == OccurrenceStatus.SAVING

        orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("80000"))

        late = SynchronizationOrchestrator(
            SqlAlchemyPersistenceGateway(other),
            RecurrenceScheduler(BusinessDayResolver()),
            transaction_store=SqlAlchemyTransactionStore(other),
            locks=orchestrator.locks,
            today=lambda: TODAY,
            default_horizon_months=3,
        )
        late.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("80000"))
    finally:
        other.close()

    balance = db_session.query(models.RecurringPaymentSavingBalance).filter_by(definition_id=definition.id).one()
    db_session.refresh(balance)
    assert balance.total_paid_amount == Decimal("80000")


def test_completed_occurrence_survives_definition_change(db_session, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan = _occurrences(db_session, definition.id)[0]
    orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("80000"))

    definition.amount = Decimal("90000")
    db_session.commit()
    summary = orchestrator.synchronize(definition.id)

    assert summary.updated_count == 2
    rows = _occurrences(db_session, definition.id)
    assert rows[0].expected_amount == Decimal("80000")
    assert rows[0].status == OccurrenceStatus.COMPLETED
    assert [r.expected_amount for r in rows[1:]] == [Decimal("90000"), Decimal("90000")]


def test_update_occurrence_returns_none_without_completion_change(db_session, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    feb = _occurrences(db_session, definition.id)[1]

    assert orchestrator.update_occurrence(feb.id, OccurrenceStatus.CANCELLED) is None
    db_session.refresh(feb)
    assert feb.status == OccurrenceStatus.CANCELLED


def test_reopen_completed_recomputes_paid_total(db_session, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan, feb, _ = _occurrences(db_session, definition.id)
    orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 28), Decimal("80000"))
    orchestrator.update_occurrence(feb.id, "cancelled")

    summary = orchestrator.update_occurrence(jan.id, OccurrenceStatus.PLANNED)

    assert summary is not None
    db_session.refresh(jan)
    assert jan.status == OccurrenceStatus.SAVING
    assert jan.actual_date is None and jan.actual_amount is None
    balance = db_session.query(models.RecurringPaymentSavingBalance).filter_by(definition_id=definition.id).one()
    assert balance.total_paid_amount == Decimal("0")
    # 취소된 2/27 은 그대로
    db_session.refresh(feb)
    assert feb.status == OccurrenceStatus.CANCELLED


def test_completed_cannot_be_cancelled(db_session, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan = _occurrences(db_session, definition.id)[0]
    orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("80000"))

    with pytest.raises(ValidationFailed) as exc:
        orchestrator.update_occurrence(jan.id, OccurrenceStatus.CANCELLED)
    assert "status cannot change from completed to cancelled" in exc.value.reasons


def test_completion_validation(db_session, orchestrator, make_definition):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan = _occurrences(db_session, definition.id)[0]

    with pytest.raises(ValidationFailed) as exc:
        orchestrator.mark_occurrence_completed(jan.id, date(2025, 6, 1), Decimal("0"))
    assert exc.value.reasons == [
        "actual_amount must be positive",
        "actual_date must be within 90 days of scheduled_date",
    ]
    db_session.refresh(jan)
    assert jan.status == OccurrenceStatus.SAVING

    with pytest.raises(ValidationFailed):
        orchestrator.update_occurrence(jan.id, OccurrenceStatus.COMPLETED)


def test_link_transaction(db_session, orchestrator, make_definition, make_transaction):
    definition = make_definition()
    orchestrator.synchronize(definition.id)
    jan = _occurrences(db_session, definition.id)[0]

    with pytest.raises(TransactionNotFound):
        orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("80000"), linked_transaction_id=999)

    txn = make_transaction(date(2025, 1, 27), -80000, "家賃")
    orchestrator.mark_occurrence_completed(jan.id, date(2025, 1, 27), Decimal("80000"), linked_transaction_id=txn.id)
    db_session.refresh(jan)
    assert jan.transaction_id == txn.id

    # 전체 교체: None 이면 연결 해제
    orchestrator.update_occurrence(jan.id, OccurrenceStatus.COMPLETED, date(2025, 1, 27), Decimal("80000"))
    db_session.refresh(jan)
    assert jan.transaction_id is None


def test_unknown_occurrence(orchestrator):
    with pytest.raises(OccurrenceNotFound):
        orchestrator.update_occurrence(12345, OccurrenceStatus.PLANNED)


def test_cancel_event_prevents_writes(db_session, orchestrator, make_definition):
    definition = make_definition()
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(SynchronizationCancelled):
        orchestrator.synchronize(definition.id, cancel_event=cancel)
    assert _occurrences(db_session, definition.id) == []


def test_lock_registry_is_reentrant_and_exclusive():
    registry = DefinitionLockRegistry()
    assert registry.lock_for(1) is registry.lock_for(1)
    assert registry.lock_for(1) is not registry.lock_for(2)

    acquired_elsewhere: list[bool] = []

    def _try_acquire():
        lock = registry.lock_for(1)
        got = lock.acquire(blocking=False)
        acquired_elsewhere.append(got)
        if got:
            lock.release()

    with registry.hold(1):
        with registry.hold(1):
            worker = threading.Thread(target=_try_acquire)
            worker.start()
            worker.join()
    assert acquired_elsewhere == [False]

    worker = threading.Thread(target=_try_acquire)
    worker.start()
    worker.join()
    assert acquired_elsewhere == [False, True]


def test_validate_occurrence_values():
    assert validate_occurrence_values(
        scheduled_date=date(2025, 1, 27),
        expected_amount=Decimal("80000"),
        status=OccurrenceStatus.COMPLETED,
        actual_date=date(2025, 4, 27),
        actual_amount=Decimal("80000"),
    ) == []
    assert validate_occurrence_values(
        scheduled_date=date(2025, 1, 27),
        expected_amount=Decimal("0"),
        status=OccurrenceStatus.COMPLETED,
        actual_date=None,
        actual_amount=None,
    ) == [
        "expected_amount must be positive",
        "completed occurrence requires actual_date and actual_amount",
    ]


def test_occurrence_overdue_and_remaining():
    occ = models.RecurringPaymentOccurrence(
        scheduled_date=date(2025, 1, 27),
        expected_amount=Decimal("80000"),
        status=OccurrenceStatus.SAVING,
    )
    assert occ.is_overdue(date(2025, 1, 28))
    assert not occ.is_overdue(date(2025, 1, 27))
    assert occ.remaining_amount == Decimal("80000")

    occ.status = OccurrenceStatus.COMPLETED
    occ.actual_amount = Decimal("85000")
    assert not occ.is_overdue(date(2025, 2, 1))
    assert occ.remaining_amount == Decimal("0")
