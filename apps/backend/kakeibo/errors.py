"""
정기 지출 도메인 예외

모든 예외는 사용자에게 보여줄 메시지 목록(messages)을 가진다.
API 계층(main.py)에서 HTTP 상태 코드로 매핑된다.
"""

from __future__ import annotations

from typing import Any, Iterable


class RecurringPaymentError(Exception):
    status_code: int = 400

    def __init__(self, messages: Iterable[str] | str):
        if isinstance(messages, str):
            messages = [messages]
        self.messages: list[str] = list(messages)
        super().__init__("; ".join(self.messages))


class ValidationFailed(RecurringPaymentError):
    status_code = 422

    def __init__(self, reasons: Iterable[str] | str):
        super().__init__(reasons)

    @property
    def reasons(self) -> list[str]:
        return self.messages


class NotFound(RecurringPaymentError):
    status_code = 404
    resource: str = "resource"

    def __init__(self, identifier: Any):
        self.identifier = identifier
        super().__init__(f"{self.resource} not found: {identifier}")


class DefinitionNotFound(NotFound):
    resource = "RecurringPaymentDefinition"


class OccurrenceNotFound(NotFound):
    resource = "RecurringPaymentOccurrence"


class CategoryNotFound(NotFound):
    resource = "Category"


class TransactionNotFound(NotFound):
    resource = "Transaction"


class SavingsGoalNotFound(NotFound):
    resource = "SavingsGoal"


class SavingsGoalBalanceNotFound(NotFound):
    resource = "SavingsGoalBalance"


class HolidayNotFound(NotFound):
    resource = "CustomHoliday"


class InvalidRecurrence(RecurringPaymentError):
    def __init__(self, interval_months: int):
        self.interval_months = interval_months
        super().__init__(f"recurrence_interval_months must be >= 1 (got {interval_months})")


class InvalidHorizon(RecurringPaymentError):
    def __init__(self, horizon_months: int):
        self.horizon_months = horizon_months
        super().__init__(f"horizon_months must be >= 0 (got {horizon_months})")


class SynchronizationCancelled(RecurringPaymentError):
    status_code = 409

    def __init__(self, definition_id: int):
        self.definition_id = definition_id
        super().__init__(f"synchronization cancelled before commit: definition {definition_id}")


class PersistenceFailed(RecurringPaymentError):
    status_code = 500

    def __init__(self, original: Exception):
        self.original = original
        super().__init__(str(original))
