"""
외부 협력자 계약 (PersistenceGateway / TransactionStore)

구현체는 sqlalchemy_gateway.py 참조. 테스트에서는 같은 메서드를 가진
객체로 대체할 수 있다.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel

from kakeibo.services.schedule_service import SynchronizationPlan


class SynchronizationSummary(BaseModel):
    definition_id: int
    synced_at: datetime
    created_count: int = 0
    updated_count: int = 0
    removed_count: int = 0


class PersistenceGateway(Protocol):
    def get_definition(self, definition_id: int, *, refresh: bool = False) -> Any:
        """Raise DefinitionNotFound when missing."""
        ...

    def get_occurrence(self, occurrence_id: int, *, refresh: bool = False) -> Any:
        """Raise OccurrenceNotFound when missing. refresh re-reads committed state."""
        ...

    def occurrences_for(self, definition_id: int, *, refresh: bool = False) -> Sequence[Any]:
        ...

    def apply_plan(self, definition: Any, plan: SynchronizationPlan, synced_at: datetime) -> SynchronizationSummary:
        """Persist created/updated/removed in one transaction (all-or-nothing)."""
        ...

    def save_occurrence(self, occurrence: Any, *, balance: Any = None) -> Any:
        ...

    def get_balance(self, definition_id: int) -> Optional[Any]:
        ...

    def ensure_balance(self, definition: Any) -> Any:
        ...

    def commit(self) -> None:
        ...


class TransactionStore(Protocol):
    def transactions_between(self, start: date, end: date) -> Sequence[Any]:
        ...

    def get_transaction(self, transaction_id: int) -> Any:
        """Raise TransactionNotFound when missing."""
        ...

    def linked_lookup(self) -> Mapping[int, int]:
        """transaction_id → occurrence_id for every linked occurrence."""
        ...

    def link(self, occurrence: Any, transaction_id: Optional[int]) -> None:
        ...
