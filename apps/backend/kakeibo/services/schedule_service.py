"""
정기 지출 스케줄 서비스 (RecurrenceScheduler)

책임:
- 정의 + 기준일 + horizon 으로 발생 예정일(target) 목록 생성
- 기존 발생분과 비교하여 생성/수정/삭제 계획(SynchronizationPlan) 산출

DB 에 접근하지 않는 순수 계산 계층. 입력 객체를 변경하지 않으며,
계획의 적용은 PersistenceGateway 가 담당한다.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field, computed_field

from kakeibo.errors import InvalidHorizon, InvalidRecurrence
from kakeibo.models import DateAdjustmentPolicy, OccurrenceStatus
from kakeibo.services.business_days import BusinessDayResolver
from kakeibo.services.day_patterns import (
    add_months,
    adjust_date,
    clamp_day,
    month_index,
    parse_pattern,
    shift_months,
)

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_MONTHS = 36
MAX_ITERATIONS = 600


class ScheduleTarget(BaseModel):
    scheduled_date: date
    expected_amount: Decimal


class OccurrenceDraft(BaseModel):
    """새로 만들 발생분"""

    scheduled_date: date
    expected_amount: Decimal
    status: OccurrenceStatus


class OccurrenceChange(BaseModel):
    """기존 발생분에 덮어쓸 값"""

    occurrence_id: int
    expected_amount: Decimal
    status: OccurrenceStatus


class PlannedOccurrence(BaseModel):
    id: Optional[int] = None  # None → 이번 계획에서 생성
    scheduled_date: date
    expected_amount: Decimal
    status: OccurrenceStatus

    @computed_field  # type: ignore[misc]
    @property
    def is_scheduling_locked(self) -> bool:
        return self.status.is_locked


class SynchronizationPlan(BaseModel):
    definition_id: Optional[int] = None
    reference_date: date
    created: list[OccurrenceDraft] = Field(default_factory=list)
    updated: list[OccurrenceChange] = Field(default_factory=list)
    removed: list[int] = Field(default_factory=list)
    locked: list[int] = Field(default_factory=list)
    occurrences: list[PlannedOccurrence] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.created or self.updated or self.removed)


class RecurrenceScheduler:
    """
    발생 예정일 생성기

    주기(period) k 의 월 = 첫 발생 월 + k × 주기개월.
    k=0 은 first_occurrence_date 그대로, 이후는 패턴(없으면 첫 발생일의 일자)으로 결정.
    """

    def __init__(self, resolver: Optional[BusinessDayResolver] = None, *, max_iterations: int = MAX_ITERATIONS):
        self.resolver = resolver or BusinessDayResolver()
        self.max_iterations = max_iterations

    # ---- Period / date helpers --------------------------------------------
    def adjust(self, value: date, policy: DateAdjustmentPolicy | str) -> date:
        return adjust_date(value, policy, self.resolver)

    def period_date(self, definition: Any, k: int) -> Optional[date]:
        """조정 전 k 번째 주기 날짜. 패턴상 해당 월에 날짜가 없으면 None."""
        first: date = definition.first_occurrence_date
        if k == 0:
            return first
        year, month = add_months(first.year, first.month, k * int(definition.recurrence_interval_months))
        pattern = parse_pattern(definition.recurrence_day_pattern)
        if pattern is None:
            return clamp_day(year, month, first.day)
        return pattern.resolve(year, month, self.resolver)

    def period_index_for(self, definition: Any, value: date) -> int:
        """value 가 속한 주기 번호 (첫 발생 이전이면 음수)"""
        first: date = definition.first_occurrence_date
        interval = int(definition.recurrence_interval_months)
        return (month_index(value.year, value.month) - month_index(first.year, first.month)) // interval

    def seed_period(self, definition: Any, occurrences: Sequence[Any], backfill_from_first_date: bool = False) -> int:
        """
        생성을 시작할 주기 번호

        - backfill: 항상 첫 발생부터
        - 완료 이력 없음: 첫 발생부터
        - 첫 발생일이 가장 이른 잠금 발생분보다 앞 (시작일을 과거로 변경): 첫 발생부터
        - 그 외: 마지막 완료 발생분의 다음 주기부터
        """
        if backfill_from_first_date:
            return 0
        completed = [o.scheduled_date for o in occurrences if OccurrenceStatus(o.status) == OccurrenceStatus.COMPLETED]
        if not completed:
            return 0
        locked = [o.scheduled_date for o in occurrences if OccurrenceStatus(o.status).is_locked]
        if locked and definition.first_occurrence_date < min(locked):
            return 0
        return max(0, self.period_index_for(definition, max(completed)) + 1)

    # ---- Targets --------------------------------------------------------
    def schedule_targets(
        self,
        definition: Any,
        reference_date: date,
        horizon_months: int,
        *,
        seed_period: int = 0,
    ) -> list[ScheduleTarget]:
        interval = int(definition.recurrence_interval_months)
        if interval <= 0:
            raise InvalidRecurrence(interval)
        if horizon_months < 0:
            raise InvalidHorizon(horizon_months)

        policy = definition.date_adjustment_policy
        amount = Decimal(definition.amount)
        end_date: Optional[date] = definition.end_date

        horizon_end = shift_months(reference_date.replace(day=1), horizon_months)
        effective_end = min(horizon_end, end_date) if end_date else horizon_end

        # seed 주기가 패턴상 비어 있으면 다음 주기로
        k = seed_period
        seed_date = self.period_date(definition, k)
        while seed_date is None and k - seed_period < self.max_iterations:
            k += 1
            seed_date = self.period_date(definition, k)
        if seed_date is None:
            return []
        end_boundary = max(effective_end, seed_date)

        targets: list[ScheduleTarget] = []
        current: Optional[date] = seed_date
        iterations = 0
        while iterations < self.max_iterations:
            if current is not None:
                if current > end_boundary:
                    break
                if end_date and current > end_date:
                    break
                targets.append(ScheduleTarget(scheduled_date=self.adjust(current, policy), expected_amount=amount))
            k += 1
            iterations += 1
            # 해당 월에 패턴 날짜가 없으면 None (예: 5번째 금요일) → 다음 주기로
            current = self.period_date(definition, k)
        return targets

    # ---- Plan ------------------------------------------------------------
    def synchronization_plan(
        self,
        definition: Any,
        occurrences: Sequence[Any],
        reference_date: date,
        horizon_months: int = DEFAULT_HORIZON_MONTHS,
        *,
        backfill_from_first_date: bool = False,
    ) -> SynchronizationPlan:
        """
        기존 발생분 대비 동기화 계획 산출

        Args:
            definition: 정기 지출 정의 (ORM row 또는 동일 속성을 가진 객체)
            occurrences: 정의의 기존 발생분 전체
            reference_date: 기준일 (보통 오늘)
            horizon_months: 기준 월부터 생성할 개월 수
            backfill_from_first_date: True 면 완료 이력과 무관하게 첫 발생일부터 생성

        Returns:
            SynchronizationPlan (created / updated / removed / 최종 정렬 목록)
        """
        interval = int(definition.recurrence_interval_months)
        if interval <= 0:
            raise InvalidRecurrence(interval)
        if horizon_months < 0:
            raise InvalidHorizon(horizon_months)

        definition_id = getattr(definition, "id", None)
        locked = [o for o in occurrences if OccurrenceStatus(o.status).is_locked]
        editable = sorted(
            (o for o in occurrences if not OccurrenceStatus(o.status).is_locked),
            key=lambda o: (o.scheduled_date, o.id or 0),
        )
        locked_out = [_planned(o) for o in locked]

        seed = self.seed_period(definition, occurrences, backfill_from_first_date)
        raw_targets = self.schedule_targets(definition, reference_date, horizon_months, seed_period=seed)

        # 잠긴 발생분이 이미 차지한 날짜와 중복 날짜는 제외
        taken = {o.scheduled_date for o in locked}
        targets: list[ScheduleTarget] = []
        for target in raw_targets:
            if target.scheduled_date in taken:
                continue
            taken.add(target.scheduled_date)
            targets.append(target)

        if not targets:
            # 생성할 주기가 없어도 종료일 이후의 편집 가능 발생분은 제거
            end_date = getattr(definition, "end_date", None)
            expired = [o for o in editable if end_date is not None and o.scheduled_date > end_date]
            kept = [o for o in editable if end_date is None or o.scheduled_date <= end_date]
            logger.info(
                "Definition %s: no schedulable periods, removing %d past end date",
                definition_id,
                len(expired),
            )
            return SynchronizationPlan(
                definition_id=definition_id,
                reference_date=reference_date,
                removed=[o.id for o in expired],
                locked=[o.id for o in locked],
                occurrences=sorted(locked_out + [_planned(o) for o in kept], key=_sort_key),
            )

        next_upcoming = targets[0].scheduled_date
        created: list[OccurrenceDraft] = []
        updated: list[OccurrenceChange] = []
        matched: list[PlannedOccurrence] = []
        remaining = list(editable)

        for target in targets:
            status = OccurrenceStatus.SAVING if target.scheduled_date == next_upcoming else OccurrenceStatus.PLANNED
            existing = next((o for o in remaining if o.scheduled_date == target.scheduled_date), None)
            if existing is None:
                created.append(
                    OccurrenceDraft(
                        scheduled_date=target.scheduled_date,
                        expected_amount=target.expected_amount,
                        status=status,
                    )
                )
                matched.append(
                    PlannedOccurrence(
                        scheduled_date=target.scheduled_date,
                        expected_amount=target.expected_amount,
                        status=status,
                    )
                )
                continue

            remaining.remove(existing)
            if Decimal(existing.expected_amount) != target.expected_amount or OccurrenceStatus(existing.status) != status:
                updated.append(
                    OccurrenceChange(
                        occurrence_id=existing.id,
                        expected_amount=target.expected_amount,
                        status=status,
                    )
                )
            matched.append(
                PlannedOccurrence(
                    id=existing.id,
                    scheduled_date=existing.scheduled_date,
                    expected_amount=target.expected_amount,
                    status=status,
                )
            )

        plan = SynchronizationPlan(
            definition_id=definition_id,
            reference_date=reference_date,
            created=created,
            updated=updated,
            removed=[o.id for o in remaining],
            locked=[o.id for o in locked],
            occurrences=sorted(matched + locked_out, key=_sort_key),
        )
        logger.debug(
            "Definition %s plan: created=%d updated=%d removed=%d locked=%d",
            definition_id,
            len(plan.created),
            len(plan.updated),
            len(plan.removed),
            len(plan.locked),
        )
        return plan


def _planned(occurrence: Any) -> PlannedOccurrence:
    return PlannedOccurrence(
        id=occurrence.id,
        scheduled_date=occurrence.scheduled_date,
        expected_amount=Decimal(occurrence.expected_amount),
        status=OccurrenceStatus(occurrence.status),
    )


def _sort_key(item: PlannedOccurrence) -> tuple[date, int]:
    return item.scheduled_date, item.id or 0
