from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kakeibo.core.database import get_db
from kakeibo.core.deps import get_matcher, get_orchestrator, get_recurring_payment_service
from kakeibo.models import OccurrenceStatus, today_local
from kakeibo.schemas import (
    MonthlySavingsRequest,
    OccurrenceCompleteRequest,
    OccurrenceUpdateRequest,
    RecalculateBalanceRequest,
    RecurringPaymentDefinitionCreate,
    RecurringPaymentDefinitionOut,
    RecurringPaymentDefinitionUpdate,
    RecurringPaymentDefinitionUpdateOut,
    RecurringPaymentOccurrenceOut,
    SavingBalanceOut,
)
from kakeibo.services.gateways import SynchronizationSummary
from kakeibo.services.occurrence_service import SynchronizationOrchestrator
from kakeibo.services.reconciliation_service import ReconciliationMatcher, TransactionCandidate, candidate_window
from kakeibo.services.recurring_payment_service import RecurringPaymentService
from kakeibo.services.sqlalchemy_gateway import SqlAlchemyTransactionStore


router = APIRouter(prefix="/recurring-payments", tags=["recurring-payments"])


# ---- Definitions ---------------------------------------------------------
@router.get("", response_model=list[RecurringPaymentDefinitionOut])
def list_definitions(
    ids: Optional[list[int]] = Query(None),
    search: Optional[str] = Query(None, description="이름 부분 일치 (대소문자 무시)"),
    category_ids: Optional[list[int]] = Query(None),
    svc: RecurringPaymentService = Depends(get_recurring_payment_service),
):
    return svc.definitions(ids=ids, search_text=search, category_ids=category_ids)


@router.post("", response_model=RecurringPaymentDefinitionOut, status_code=201)
def create_definition(
    payload: RecurringPaymentDefinitionCreate,
    synchronize: bool = Query(True, description="생성 직후 발생분 스케줄 생성"),
    svc: RecurringPaymentService = Depends(get_recurring_payment_service),
    orchestrator: SynchronizationOrchestrator = Depends(get_orchestrator),
):
    row = svc.create_definition(payload.model_dump())
    if synchronize:
        orchestrator.synchronize(row.id)
        svc.db.refresh(row)
    return row


# 정적 경로(/occurrences, /balances)를 /{definition_id} 보다 먼저 등록
@router.get("/occurrences", response_model=list[RecurringPaymentOccurrenceOut])
def list_occurrences(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    status: Optional[list[OccurrenceStatus]] = Query(None),
    definition_id: Optional[list[int]] = Query(None),
    svc: RecurringPaymentService = Depends(get_recurring_payment_service),
):
    return svc.occurrences(start=start, end=end, statuses=status, definition_ids=definition_id)


@router.post("/occurrences/{occurrence_id}/complete", response_model=SynchronizationSummary)
def complete_occurrence(
    occurrence_id: int,
    payload: OccurrenceCompleteRequest,
    orchestrator: SynchronizationOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.mark_occurrence_completed(
        occurrence_id,
        payload.actual_date,
        payload.actual_amount,
        payload.linked_transaction_id,
        payload.horizon_months,
        reference_date=payload.reference_date,
    )


@router.patch("/occurrences/{occurrence_id}", response_model=Optional[SynchronizationSummary])
def update_occurrence(
    occurrence_id: int,
    payload: OccurrenceUpdateRequest,
    orchestrator: SynchronizationOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.update_occurrence(
        occurrence_id,
        payload.status,
        payload.actual_date,
        payload.actual_amount,
        payload.linked_transaction_id,
        payload.horizon_months,
        reference_date=payload.reference_date,
    )


@router.get("/occurrences/{occurrence_id}/candidates", response_model=list[TransactionCandidate])
def occurrence_candidates(
    occurrence_id: int,
    window_days: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=0),
    current_date: Optional[date] = Query(None, description="이 날짜 이후 거래는 제외 (기본: 오늘)"),
    db: Session = Depends(get_db),
    svc: RecurringPaymentService = Depends(get_recurring_payment_service),
    matcher: ReconciliationMatcher = Depends(get_matcher),
):
    occurrence = svc.get_occurrence(occurrence_id)
    definition = svc.get_definition(occurrence.definition_id)
    store = SqlAlchemyTransactionStore(db)
    today = current_date or today_local()
    window = matcher.window_days if window_days is None else window_days
    start, end = candidate_window(occurrence.scheduled_date, window, today)
    transactions = store.transactions_between(start, end) if start <= end else []
    return matcher.transaction_candidates(
        occurrence,
        definition,
        transactions,
        store.linked_lookup(),
        window_days=window,
        limit=limit,
        current_date=today,
    )


@router.get("/balances", response_model=list[SavingBalanceOut])
def list_balances(
    definition_id: Optional[list[int]] = Query(None),
    svc: RecurringPaymentService = Depends(get_recurring_payment_service),
):
    return svc.balances(definition_ids=definition_id)


@router.get("/{definition_id}", response_model=RecurringPaymentDefinitionOut)
def get_definition(definition_id: int, svc: RecurringPaymentService = Depends(get_recurring_payment_service)):
    return svc.get_definition(definition_id)


@router.put("/{definition_id}", response_model=RecurringPaymentDefinitionUpdateOut)
def update_definition(
    definition_id: int,
    payload: RecurringPaymentDefinitionUpdate,
    synchronize: bool = Query(True),
    svc: RecurringPaymentService = Depends(get_recurring_payment_service),
    orchestrator: SynchronizationOrchestrator = Depends(get_orchestrator),
):
    row, needs_backfill = svc.update_definition(definition_id, payload.model_dump(exclude_unset=True))
    summary = None
    if synchronize:
        # 첫 발생일을 앞당긴 경우 첫 발생일부터 다시 채운다
        summary = orchestrator.synchronize(definition_id, backfill_from_first_date=needs_backfill or None)
        svc.db.refresh(row)
    return RecurringPaymentDefinitionUpdateOut(
        definition=RecurringPaymentDefinitionOut.model_validate(row),
        needs_backfill=needs_backfill,
        synchronization=summary,
    )


@router.delete("/{definition_id}", status_code=204)
def delete_definition(definition_id: int, svc: RecurringPaymentService = Depends(get_recurring_payment_service)):
    svc.delete_definition(definition_id)


@router.post("/{definition_id}/synchronize", response_model=SynchronizationSummary)
def synchronize_definition(
    definition_id: int,
    horizon_months: Optional[int] = Query(None),
    reference_date: Optional[date] = Query(None),
    backfill_from_first_date: Optional[bool] = Query(None),
    orchestrator: SynchronizationOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.synchronize(
        definition_id,
        horizon_months,
        reference_date,
        backfill_from_first_date=backfill_from_first_date,
    )


@router.post("/{definition_id}/balance/monthly-savings", response_model=SavingBalanceOut)
def record_monthly_savings(
    definition_id: int,
    payload: MonthlySavingsRequest,
    svc: RecurringPaymentService = Depends(get_recurring_payment_service),
):
    return svc.record_monthly_savings(definition_id, payload.year, payload.month)


@router.post("/{definition_id}/balance/recalculate", response_model=SavingBalanceOut)
def recalculate_balance(
    definition_id: int,
    payload: RecalculateBalanceRequest,
    svc: RecurringPaymentService = Depends(get_recurring_payment_service),
):
    return svc.recalculate_balance(
        definition_id,
        payload.year,
        payload.month,
        start_year=payload.start_year,
        start_month=payload.start_month,
    )
