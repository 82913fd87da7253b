"""
거래 후보 매칭 서비스 (ReconciliationMatcher)

책임:
- 발생분(occurrence) 예정일 ± window 안의 거래 후보 추출
- 금액/날짜/제목 점수 기반 순위 산정

순수 계산 계층. 거래 목록과 연결 정보는 호출자가 제공한다.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from pydantic import BaseModel, computed_field

logger = logging.getLogger(__name__)

AMOUNT_WEIGHT = 0.5
DATE_WEIGHT = 0.3
TITLE_WEIGHT = 0.2

MIN_SCORE = 0.2
# 통화 단위와 무관한 고정 허용 차액
AMOUNT_DIFFERENCE_THRESHOLD = Decimal("5000")


class CandidateScore(BaseModel):
    amount_score: float
    date_score: float
    title_matched: bool
    amount_difference: Decimal
    day_difference: int

    @computed_field  # type: ignore[misc]
    @property
    def total(self) -> float:
        raw = (
            AMOUNT_WEIGHT * self.amount_score
            + DATE_WEIGHT * self.date_score
            + TITLE_WEIGHT * (1.0 if self.title_matched else 0.0)
        )
        return min(1.0, max(0.0, raw))

    @computed_field  # type: ignore[misc]
    @property
    def confidence_percent(self) -> int:
        return int(round(self.total * 100))

    @property
    def is_within_bounds(self) -> bool:
        return (
            self.total >= MIN_SCORE
            or self.title_matched
            or self.amount_difference <= AMOUNT_DIFFERENCE_THRESHOLD
        )


class TransactionCandidate(BaseModel):
    transaction_id: int
    occurred_at: date
    title: str
    amount: Decimal
    score: CandidateScore
    is_current_link: bool = False


def candidate_window(scheduled_date: date, window_days: int, current_date: date) -> tuple[date, date]:
    """[예정일 - window, min(예정일 + window, 오늘)]"""
    start = scheduled_date - timedelta(days=window_days)
    end = min(scheduled_date + timedelta(days=window_days), current_date)
    return start, end


def _titles_match(definition_name: str, title: str) -> bool:
    name = (definition_name or "").strip().lower()
    other = (title or "").strip().lower()
    if not name or not other:
        return False
    return name in other or other in name


class ReconciliationMatcher:
    def __init__(self, window_days: int = 30, limit: int = 10):
        self.window_days = window_days
        self.limit = limit

    def score(self, occurrence: Any, definition: Any, transaction: Any, window_days: int) -> CandidateScore:
        expected = Decimal(occurrence.expected_amount)
        amount_difference = abs(abs(Decimal(transaction.amount)) - expected)
        if expected == 0:
            amount_score = 1.0
        else:
            amount_score = 1.0 - min(1.0, float(amount_difference / expected))

        day_difference = abs((transaction.occurred_at - occurrence.scheduled_date).days)
        date_score = 1.0 - min(1.0, day_difference / max(window_days, 1))

        return CandidateScore(
            amount_score=amount_score,
            date_score=date_score,
            title_matched=_titles_match(definition.name, transaction.title),
            amount_difference=amount_difference,
            day_difference=day_difference,
        )

    def transaction_candidates(
        self,
        occurrence: Any,
        definition: Any,
        transactions: Sequence[Any],
        linked_lookup: Mapping[int, int],
        *,
        window_days: Optional[int] = None,
        limit: Optional[int] = None,
        current_date: date,
    ) -> list[TransactionCandidate]:
        """
        발생분에 대한 거래 후보 순위

        Args:
            occurrence: 대상 발생분
            definition: 발생분의 정의 (name 사용)
            transactions: 후보 거래 (TransactionStore 제공)
            linked_lookup: transaction_id → 이미 연결된 occurrence_id
            window_days: 예정일 기준 ± 일수
            limit: 최대 후보 수
            current_date: 이 날짜 이후 거래는 제외

        Returns:
            점수 내림차순, 금액 차이/날짜 차이 오름차순 정렬된 후보
        """
        window_days = self.window_days if window_days is None else window_days
        limit = self.limit if limit is None else limit
        start, end = candidate_window(occurrence.scheduled_date, window_days, current_date)

        candidates: list[TransactionCandidate] = []
        for txn in transactions:
            if not (start <= txn.occurred_at <= end):
                continue
            linked_to = linked_lookup.get(txn.id)
            if linked_to is not None and linked_to != occurrence.id:
                continue
            if not (txn.is_expense and txn.is_included_in_calculation):
                continue

            score = self.score(occurrence, definition, txn, window_days)
            if not score.is_within_bounds:
                continue
            candidates.append(
                TransactionCandidate(
                    transaction_id=txn.id,
                    occurred_at=txn.occurred_at,
                    title=txn.title,
                    amount=Decimal(txn.amount),
                    score=score,
                    is_current_link=linked_to == occurrence.id,
                )
            )

        candidates.sort(key=lambda c: (-c.score.total, c.score.amount_difference, c.score.day_difference))
        logger.debug(
            "Occurrence %s: %d candidates in %s..%s",
            getattr(occurrence, "id", None),
            len(candidates),
            start,
            end,
        )
        return candidates[: max(0, limit)]
