"""
영업일 판정 서비스

책임:
- 주말(토/일) + 공휴일 제공자(provider) 기반 영업일 판정
- 가장 가까운 이전/다음 영업일로 이동
- 월 단위 영업일 계산 (첫/마지막/N번째 영업일)
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence

import holidays as holiday_calendars
from sqlalchemy.orm import Session

from kakeibo import models

logger = logging.getLogger(__name__)

# 연속 휴일이 이보다 길면 탐색 포기 (연말연시/골든위크 포함 충분)
MAX_SHIFT_DAYS = 10


class ShiftDirection(str, Enum):
    PREVIOUS = "previous"
    NEXT = "next"


class HolidayProvider(Protocol):
    def holidays(self, year: int) -> set[date]:
        ...


class StaticHolidayProvider:
    """Fixed set of dates, e.g. for tests or a hand-maintained calendar."""

    def __init__(self, dates: Iterable[date] = ()):
        self._dates = frozenset(dates)

    def holidays(self, year: int) -> set[date]:
        return {d for d in self._dates if d.year == year}


class JapaneseHolidayProvider:
    """일본 공휴일 (대체휴일 포함) - holidays 패키지 사용"""

    def holidays(self, year: int) -> set[date]:
        return set(holiday_calendars.country_holidays("JP", years=year).keys())


class CustomHolidayProvider:
    """
    사용자 정의 휴일 (customholiday 테이블)

    is_recurring=True 인 항목은 매년 같은 월/일에 반복된다.
    2/29 반복 휴일은 윤년에만 적용.
    """

    def __init__(self, db: Session):
        self.db = db

    def holidays(self, year: int) -> set[date]:
        rows = self.db.query(models.CustomHoliday).all()
        result: set[date] = set()
        for row in rows:
            if row.is_recurring:
                if row.date.month == 2 and row.date.day == 29 and not calendar.isleap(year):
                    continue
                result.add(row.date.replace(year=year))
            elif row.date.year == year:
                result.add(row.date)
        return result


class CompositeHolidayProvider:
    def __init__(self, providers: Sequence[HolidayProvider]):
        self.providers = list(providers)

    def holidays(self, year: int) -> set[date]:
        merged: set[date] = set()
        for provider in self.providers:
            merged |= provider.holidays(year)
        return merged


class BusinessDayResolver:
    """
    영업일 판정기

    주말 + (직접 지정 휴일 ∪ provider 휴일) 이 아닌 날을 영업일로 본다.
    인스턴스가 보는 휴일 집합은 불변이며, 연도별 조회 결과만 캐시한다.
    """

    def __init__(
        self,
        holiday_provider: Optional[HolidayProvider] = None,
        holidays: Iterable[date] = (),
    ):
        self.holiday_provider = holiday_provider
        self._direct_holidays = frozenset(holidays)
        self._year_cache: dict[int, frozenset[date]] = {}

    def holidays_for_year(self, year: int) -> frozenset[date]:
        cached = self._year_cache.get(year)
        if cached is None:
            provided = self.holiday_provider.holidays(year) if self.holiday_provider else set()
            cached = frozenset(provided | {d for d in self._direct_holidays if d.year == year})
            self._year_cache[year] = cached
        return cached

    def holidays_between(self, start: date, end: date) -> list[date]:
        """[start, end] 구간의 휴일 (주말 제외), 오름차순"""
        if start > end:
            return []
        found: set[date] = set()
        for year in range(start.year, end.year + 1):
            found |= {d for d in self.holidays_for_year(year) if start <= d <= end}
        return sorted(found)

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays_for_year(day.year)

    def is_business_day(self, day: date) -> bool:
        if day.weekday() >= 5:
            return False
        return not self.is_holiday(day)

    def shift(self, day: date, direction: ShiftDirection | str) -> Optional[date]:
        """Walk day-by-day (excluding `day`) to the nearest business day.

        Returns None when no business day is found within MAX_SHIFT_DAYS.
        """
        step = timedelta(days=-1 if ShiftDirection(direction) == ShiftDirection.PREVIOUS else 1)
        current = day
        for _ in range(MAX_SHIFT_DAYS):
            current = current + step
            if self.is_business_day(current):
                return current
        logger.warning("No business day within %s days %s %s", MAX_SHIFT_DAYS, direction, day)
        return None

    def previous_business_day(self, day: date) -> Optional[date]:
        return self.shift(day, ShiftDirection.PREVIOUS)

    def next_business_day(self, day: date) -> Optional[date]:
        return self.shift(day, ShiftDirection.NEXT)

    # ---- Month helpers ---------------------------------------------------
    def first_business_day(self, year: int, month: int) -> Optional[date]:
        first = date(year, month, 1)
        if self.is_business_day(first):
            return first
        return self.next_business_day(first)

    def last_business_day(self, year: int, month: int) -> Optional[date]:
        last = date(year, month, calendar.monthrange(year, month)[1])
        if self.is_business_day(last):
            return last
        return self.previous_business_day(last)

    def nth_business_day(self, nth: int, year: int, month: int) -> Optional[date]:
        if nth <= 0:
            return None
        count = 0
        for day_num in range(1, calendar.monthrange(year, month)[1] + 1):
            current = date(year, month, day_num)
            if self.is_business_day(current):
                count += 1
                if count == nth:
                    return current
        return None

    def last_business_day_minus(self, days: int, year: int, month: int) -> Optional[date]:
        if days < 0:
            return None
        current = self.last_business_day(year, month)
        for _ in range(days):
            if current is None:
                return None
            current = self.previous_business_day(current)
        return current


def build_holiday_provider(db: Optional[Session] = None, calendar_code: str = "JP") -> HolidayProvider:
    """설정(HOLIDAY_CALENDAR)과 사용자 정의 휴일을 합친 provider 구성"""
    providers: list[HolidayProvider] = []
    code = (calendar_code or "NONE").upper()
    if code == "JP":
        providers.append(JapaneseHolidayProvider())
    elif code != "NONE":
        raise ValueError(f"unsupported holiday calendar: {calendar_code}")
    if db is not None:
        providers.append(CustomHolidayProvider(db))
    return CompositeHolidayProvider(providers)
