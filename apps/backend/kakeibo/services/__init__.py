"""
Services 패키지

정기 지출 스케줄/매칭/동기화 서비스 클래스들을 제공합니다.
"""

from .business_days import BusinessDayResolver
from .schedule_service import RecurrenceScheduler
from .reconciliation_service import ReconciliationMatcher
from .occurrence_service import SynchronizationOrchestrator
from .recurring_payment_service import RecurringPaymentService

__all__ = [
    "BusinessDayResolver",
    "RecurrenceScheduler",
    "ReconciliationMatcher",
    "SynchronizationOrchestrator",
    "RecurringPaymentService",
]
