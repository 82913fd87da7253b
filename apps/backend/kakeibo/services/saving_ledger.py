"""
적립 전략 / 잔액 원장

책임:
- 정의(definition)의 월 적립액 계산
- 월 적립 기록 (연/월 전진만 허용)
- 지급 기록 및 예정 대비 차액 계산
- 발생 내역 기반 잔액 재계산
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, computed_field

from kakeibo import models
from kakeibo.services.day_patterns import month_index

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
AMOUNT_QUANTUM = Decimal("0.0001")  # Numeric(18, 4)


def monthly_saving_amount(definition: Any) -> Decimal:
    strategy = models.SavingStrategy(definition.saving_strategy)
    if strategy == models.SavingStrategy.DISABLED:
        return ZERO
    if strategy == models.SavingStrategy.CUSTOM_MONTHLY:
        return Decimal(definition.custom_monthly_saving_amount or ZERO)
    interval = int(definition.recurrence_interval_months)
    if interval <= 0:
        # 생성 시점 검증으로 도달하지 않음
        return ZERO
    return (Decimal(definition.amount) / interval).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def months_elapsed(from_year: int, from_month: int, to_year: int, to_month: int) -> int:
    """Inclusive month count, never negative."""
    return max(0, month_index(to_year, to_month) - month_index(from_year, from_month) + 1)


class DifferenceType(str, Enum):
    OVERPAID = "overpaid"
    UNDERPAID = "underpaid"
    EXACT = "exact"


class PaymentDifference(BaseModel):
    expected: Decimal
    actual: Decimal

    @computed_field  # type: ignore[misc]
    @property
    def difference(self) -> Decimal:
        return self.actual - self.expected

    @computed_field  # type: ignore[misc]
    @property
    def type(self) -> DifferenceType:
        if self.actual > self.expected:
            return DifferenceType.OVERPAID
        if self.actual < self.expected:
            return DifferenceType.UNDERPAID
        return DifferenceType.EXACT


def record_monthly_savings(balance: Any, year: int, month: int, amount: Decimal) -> bool:
    """
    월 적립액을 누적한다.

    (year, month) 가 마지막 기록 이하이면 아무 것도 하지 않는다.
    같은 달 중복 호출과 과거 달 호출 모두 no-op.
    기록이 없는 잔액(last_updated 가 None)은 어느 달이든 적용된다.

    Returns:
        적용 여부
    """
    if balance.last_updated_year is not None and month_index(year, month) <= month_index(
        balance.last_updated_year, balance.last_updated_month
    ):
        logger.debug(
            "Skip monthly savings %04d-%02d (last recorded %04d-%02d)",
            year,
            month,
            balance.last_updated_year,
            balance.last_updated_month,
        )
        return False
    balance.total_saved_amount = Decimal(balance.total_saved_amount or ZERO) + Decimal(amount)
    balance.last_updated_year = year
    balance.last_updated_month = month
    return True


def new_saving_balance(definition: models.RecurringPaymentDefinition, year: int, month: int) -> models.RecurringPaymentSavingBalance:
    """첫 적립 기록 - 해당 월 적립액으로 시작"""
    return models.RecurringPaymentSavingBalance(
        definition_id=definition.id,
        total_saved_amount=monthly_saving_amount(definition),
        total_paid_amount=ZERO,
        last_updated_year=year,
        last_updated_month=month,
    )


def empty_saving_balance(definition: models.RecurringPaymentDefinition) -> models.RecurringPaymentSavingBalance:
    """적립 기록 없이 지급만 먼저 들어온 경우의 잔액 (적립 0, 기록 월 없음)"""
    return models.RecurringPaymentSavingBalance(
        definition_id=definition.id,
        total_saved_amount=ZERO,
        total_paid_amount=ZERO,
        last_updated_year=None,
        last_updated_month=None,
    )


def record_payment(balance: Any, occurrence: Any) -> PaymentDifference:
    """완료된 발생분의 실제 금액(없으면 예정 금액)을 누적 지급액에 더한다."""
    paid = occurrence.actual_amount if occurrence.actual_amount is not None else occurrence.expected_amount
    paid = Decimal(paid)
    balance.total_paid_amount = Decimal(balance.total_paid_amount or ZERO) + paid
    return PaymentDifference(expected=Decimal(occurrence.expected_amount), actual=paid)


def completed_paid_total(occurrences: Iterable[Any]) -> Decimal:
    total = ZERO
    for occ in occurrences:
        if models.OccurrenceStatus(occ.status) != models.OccurrenceStatus.COMPLETED:
            continue
        paid = occ.actual_amount if occ.actual_amount is not None else occ.expected_amount
        total += Decimal(paid)
    return total


def recalculate_balance(
    balance: Any,
    definition: Any,
    occurrences: Iterable[Any],
    year: int,
    month: int,
    *,
    start_year: Optional[int] = None,
    start_month: Optional[int] = None,
) -> Any:
    """
    잔액 재계산

    total_saved = 월 적립액 × 경과 개월 (시작 월 포함)
    total_paid  = 완료 발생분 실제 금액 합계
    시작 연/월 미지정 시 정의 생성 월 기준.
    """
    if start_year is None or start_month is None:
        created = definition.created_at
        start_year, start_month = created.year, created.month
    elapsed = months_elapsed(start_year, start_month, year, month)
    balance.total_saved_amount = monthly_saving_amount(definition) * elapsed
    balance.total_paid_amount = completed_paid_total(occurrences)
    balance.last_updated_year = year
    balance.last_updated_month = month
    return balance


# ---- Savings goal variant ------------------------------------------------


def record_withdrawal(balance: Any, amount: Decimal) -> Any:
    if Decimal(amount) <= ZERO:
        raise ValueError("withdrawal amount must be positive")
    balance.total_withdrawn_amount = Decimal(balance.total_withdrawn_amount or ZERO) + Decimal(amount)
    return balance


def recalculate_goal_balance(balance: Any, goal: Any, withdrawals: Iterable[Any], year: int, month: int) -> Any:
    start = goal.start_date
    elapsed = months_elapsed(start.year, start.month, year, month)
    balance.total_saved_amount = Decimal(goal.monthly_saving_amount or ZERO) * elapsed
    balance.total_withdrawn_amount = sum((Decimal(w.amount) for w in withdrawals), ZERO)
    balance.last_updated_year = year
    balance.last_updated_month = month
    return balance
