"""
월 단위 날짜 패턴 (DayOfMonthPattern)

recurrence_day_pattern JSON 컬럼에 {"kind": ..., ...} 형태로 저장되며,
kind 값으로 아래 모델 중 하나가 선택된다.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from kakeibo.models import DateAdjustmentPolicy
from kakeibo.services.business_days import BusinessDayResolver, ShiftDirection


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_index(year: int, month: int) -> int:
    return year * 12 + (month - 1)


def add_months(year: int, month: int, delta: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    return total // 12, total % 12 + 1


def clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, max(1, min(day, days_in_month(year, month))))


def shift_months(value: date, delta: int) -> date:
    """Same day-of-month `delta` months later, clamped to the month end."""
    year, month = add_months(value.year, value.month, delta)
    return clamp_day(year, month, value.day)


class _PatternBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    def resolve(self, year: int, month: int, resolver: BusinessDayResolver) -> Optional[date]:
        raise NotImplementedError


class FixedDayPattern(_PatternBase):
    kind: Literal["fixed"] = "fixed"
    day: int = Field(ge=1, le=31)

    def resolve(self, year, month, resolver):
        return clamp_day(year, month, self.day)


class EndOfMonthPattern(_PatternBase):
    kind: Literal["end_of_month"] = "end_of_month"

    def resolve(self, year, month, resolver):
        return date(year, month, days_in_month(year, month))


class EndOfMonthMinusPattern(_PatternBase):
    kind: Literal["end_of_month_minus"] = "end_of_month_minus"
    days: int = Field(ge=0, le=27)

    def resolve(self, year, month, resolver):
        # 전월로 넘어갈 수 있음
        return date(year, month, days_in_month(year, month)) - timedelta(days=self.days)


class NthWeekdayPattern(_PatternBase):
    kind: Literal["nth_weekday"] = "nth_weekday"
    week: int = Field(ge=1, le=5)
    weekday: int = Field(ge=0, le=6)  # 0=Mon .. 6=Sun

    def resolve(self, year, month, resolver):
        first = date(year, month, 1)
        offset = (self.weekday - first.weekday()) % 7
        day = 1 + offset + (self.week - 1) * 7
        if day > days_in_month(year, month):
            return None
        return date(year, month, day)


class LastWeekdayPattern(_PatternBase):
    kind: Literal["last_weekday"] = "last_weekday"
    weekday: int = Field(ge=0, le=6)

    def resolve(self, year, month, resolver):
        last = date(year, month, days_in_month(year, month))
        return last - timedelta(days=(last.weekday() - self.weekday) % 7)


class FirstBusinessDayPattern(_PatternBase):
    kind: Literal["first_business_day"] = "first_business_day"

    def resolve(self, year, month, resolver):
        return resolver.first_business_day(year, month)


class LastBusinessDayPattern(_PatternBase):
    kind: Literal["last_business_day"] = "last_business_day"

    def resolve(self, year, month, resolver):
        return resolver.last_business_day(year, month)


class NthBusinessDayPattern(_PatternBase):
    kind: Literal["nth_business_day"] = "nth_business_day"
    nth: int = Field(ge=1, le=23)

    def resolve(self, year, month, resolver):
        return resolver.nth_business_day(self.nth, year, month)


class LastBusinessDayMinusPattern(_PatternBase):
    kind: Literal["last_business_day_minus"] = "last_business_day_minus"
    days: int = Field(ge=0, le=20)

    def resolve(self, year, month, resolver):
        return resolver.last_business_day_minus(self.days, year, month)


DayOfMonthPattern = Annotated[
    Union[
        FixedDayPattern,
        EndOfMonthPattern,
        EndOfMonthMinusPattern,
        NthWeekdayPattern,
        LastWeekdayPattern,
        FirstBusinessDayPattern,
        LastBusinessDayPattern,
        NthBusinessDayPattern,
        LastBusinessDayMinusPattern,
    ],
    Field(discriminator="kind"),
]

_pattern_adapter: TypeAdapter[DayOfMonthPattern] = TypeAdapter(DayOfMonthPattern)


def parse_pattern(raw: Any) -> Optional[_PatternBase]:
    """Accept None, a pattern model or its JSON dict (as stored in the DB)."""
    if raw is None or isinstance(raw, _PatternBase):
        return raw
    return _pattern_adapter.validate_python(raw)


def adjust_date(value: date, policy: DateAdjustmentPolicy | str, resolver: BusinessDayResolver) -> date:
    """Shift `value` off a non-business day; business days are returned unchanged."""
    policy = DateAdjustmentPolicy(policy)
    if policy == DateAdjustmentPolicy.NONE or resolver.is_business_day(value):
        return value
    direction = ShiftDirection.PREVIOUS if policy == DateAdjustmentPolicy.PREVIOUS else ShiftDirection.NEXT
    return resolver.shift(value, direction) or value


def resolve_pattern_date(
    pattern: Any,
    year: int,
    month: int,
    resolver: BusinessDayResolver,
    policy: DateAdjustmentPolicy | str = DateAdjustmentPolicy.NONE,
) -> Optional[date]:
    resolved = parse_pattern(pattern)
    if resolved is None:
        raise ValueError("pattern is required")
    raw = resolved.resolve(year, month, resolver)
    if raw is None:
        return None
    return adjust_date(raw, policy, resolver)


def month_period(
    year: int,
    month: int,
    start_day: int,
    policy: DateAdjustmentPolicy | str,
    resolver: BusinessDayResolver,
) -> tuple[date, date]:
    """
    월 구간 [start, end) 계산

    start_day 는 1~28 로 보정. start 에만 영업일 조정을 적용하고
    end 는 다음 달 start_day 의 조정 전 날짜로 둔다 (구간 연속성 유지).
    """
    day = max(1, min(start_day, 28))
    start = adjust_date(date(year, month, day), policy, resolver)
    next_year, next_month = add_months(year, month, 1)
    end = date(next_year, next_month, day)
    return start, end
