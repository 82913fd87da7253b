from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from kakeibo.core.config import settings
from kakeibo.core.database import get_db
from kakeibo.services.business_days import BusinessDayResolver, build_holiday_provider
from kakeibo.services.occurrence_service import SynchronizationOrchestrator
from kakeibo.services.reconciliation_service import ReconciliationMatcher
from kakeibo.services.recurring_payment_service import RecurringPaymentService
from kakeibo.services.schedule_service import RecurrenceScheduler
from kakeibo.services.sqlalchemy_gateway import SqlAlchemyPersistenceGateway, SqlAlchemyTransactionStore


def get_business_day_resolver(db: Session = Depends(get_db)) -> BusinessDayResolver:
    """National calendar (settings.HOLIDAY_CALENDAR) + user-defined holidays."""
    return BusinessDayResolver(build_holiday_provider(db, settings.HOLIDAY_CALENDAR))


def get_orchestrator(
    db: Session = Depends(get_db),
    resolver: BusinessDayResolver = Depends(get_business_day_resolver),
) -> SynchronizationOrchestrator:
    return SynchronizationOrchestrator(
        SqlAlchemyPersistenceGateway(db),
        RecurrenceScheduler(resolver),
        transaction_store=SqlAlchemyTransactionStore(db),
        default_horizon_months=settings.DEFAULT_HORIZON_MONTHS,
        backfill_from_first_date=settings.BACKFILL_FROM_FIRST_DATE,
    )


def get_recurring_payment_service(db: Session = Depends(get_db)) -> RecurringPaymentService:
    return RecurringPaymentService(db)


def get_matcher() -> ReconciliationMatcher:
    return ReconciliationMatcher(window_days=settings.CANDIDATE_WINDOW_DAYS, limit=settings.CANDIDATE_LIMIT)
