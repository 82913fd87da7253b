from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .models import DateAdjustmentPolicy, OccurrenceStatus, SavingStrategy, today_local
from .services.day_patterns import DayOfMonthPattern
from .services.gateways import SynchronizationSummary
from .services.saving_ledger import ZERO


def _finite(v: Decimal | None, field: str) -> Decimal | None:
    if v is None:
        return v
    if not v.is_finite():
        raise ValueError(f"{field} must be finite")
    return v


# RecurringPaymentDefinition Schemas
class RecurringPaymentDefinitionCreate(BaseModel):
    name: str
    notes: str = ""
    amount: Decimal
    recurrence_interval_months: int = 1
    first_occurrence_date: date
    end_date: Optional[date] = None
    lead_time_months: int = 0
    category_id: Optional[int] = None
    saving_strategy: SavingStrategy = SavingStrategy.EVENLY_DISTRIBUTED
    custom_monthly_saving_amount: Optional[Decimal] = None
    date_adjustment_policy: DateAdjustmentPolicy = DateAdjustmentPolicy.NONE
    recurrence_day_pattern: Optional[DayOfMonthPattern] = None

    @field_validator("amount")
    def amount_finite(cls, v: Decimal):
        return _finite(v, "amount")

    @field_validator("custom_monthly_saving_amount")
    def custom_amount_finite(cls, v: Decimal | None):
        return _finite(v, "custom_monthly_saving_amount")


class RecurringPaymentDefinitionUpdate(BaseModel):
    name: Optional[str] = None
    notes: Optional[str] = None
    amount: Optional[Decimal] = None
    recurrence_interval_months: Optional[int] = None
    first_occurrence_date: Optional[date] = None
    end_date: Optional[date] = None
    lead_time_months: Optional[int] = None
    category_id: Optional[int] = None
    saving_strategy: Optional[SavingStrategy] = None
    custom_monthly_saving_amount: Optional[Decimal] = None
    date_adjustment_policy: Optional[DateAdjustmentPolicy] = None
    recurrence_day_pattern: Optional[DayOfMonthPattern] = None

    @field_validator("amount")
    def amount_finite(cls, v: Decimal | None):
        return _finite(v, "amount")

    @field_validator("custom_monthly_saving_amount")
    def custom_amount_finite(cls, v: Decimal | None):
        return _finite(v, "custom_monthly_saving_amount")


class RecurringPaymentDefinitionOut(BaseModel):
    id: int
    name: str
    notes: str
    amount: Decimal
    recurrence_interval_months: int
    first_occurrence_date: date
    end_date: Optional[date]
    lead_time_months: int
    category_id: Optional[int]
    saving_strategy: SavingStrategy
    custom_monthly_saving_amount: Optional[Decimal]
    date_adjustment_policy: DateAdjustmentPolicy
    recurrence_day_pattern: Optional[DayOfMonthPattern]
    monthly_saving_amount: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RecurringPaymentDefinitionUpdateOut(BaseModel):
    definition: RecurringPaymentDefinitionOut
    needs_backfill: bool
    synchronization: Optional[SynchronizationSummary] = None


# Occurrence Schemas
class RecurringPaymentOccurrenceOut(BaseModel):
    id: int
    definition_id: int
    scheduled_date: date
    expected_amount: Decimal
    status: OccurrenceStatus
    actual_date: Optional[date]
    actual_amount: Optional[Decimal]
    transaction_id: Optional[int]
    is_scheduling_locked: bool
    remaining_amount: Decimal
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[misc]
    @property
    def difference_amount(self) -> Optional[Decimal]:
        if self.actual_amount is None:
            return None
        return self.actual_amount - self.expected_amount

    @computed_field  # type: ignore[misc]
    @property
    def is_overdue(self) -> bool:
        return OccurrenceStatus(self.status) != OccurrenceStatus.COMPLETED and self.scheduled_date < today_local()


class OccurrenceCompleteRequest(BaseModel):
    actual_date: date
    actual_amount: Decimal
    linked_transaction_id: Optional[int] = None
    horizon_months: Optional[int] = None
    reference_date: Optional[date] = None

    @field_validator("actual_amount")
    def actual_amount_finite(cls, v: Decimal):
        return _finite(v, "actual_amount")


class OccurrenceUpdateRequest(BaseModel):
    status: OccurrenceStatus
    actual_date: Optional[date] = None
    actual_amount: Optional[Decimal] = None
    linked_transaction_id: Optional[int] = None
    horizon_months: Optional[int] = None
    reference_date: Optional[date] = None

    @field_validator("actual_amount")
    def actual_amount_finite(cls, v: Decimal | None):
        return _finite(v, "actual_amount")


# Balance Schemas
class SavingBalanceOut(BaseModel):
    id: int
    definition_id: int
    total_saved_amount: Decimal
    total_paid_amount: Decimal
    last_updated_year: Optional[int] = None
    last_updated_month: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[misc]
    @property
    def balance(self) -> Decimal:
        return self.total_saved_amount - self.total_paid_amount

    @computed_field  # type: ignore[misc]
    @property
    def is_balance_insufficient(self) -> bool:
        return self.balance < ZERO


class MonthlySavingsRequest(BaseModel):
    year: int = Field(ge=1900, le=9999)
    month: int = Field(ge=1, le=12)


class RecalculateBalanceRequest(MonthlySavingsRequest):
    start_year: Optional[int] = Field(default=None, ge=1900, le=9999)
    start_month: Optional[int] = Field(default=None, ge=1, le=12)


# Holiday Schemas
class CustomHolidayCreate(BaseModel):
    date: date
    name: str
    is_recurring: bool = False


class CustomHolidayOut(BaseModel):
    id: int
    date: date
    name: str
    is_recurring: bool

    model_config = ConfigDict(from_attributes=True)


class BusinessDayOut(BaseModel):
    date: date
    is_business_day: bool
    shifted: Optional[date] = None


# SavingsGoal Schemas
class SavingsGoalCreate(BaseModel):
    name: str
    target_amount: Optional[Decimal] = None
    monthly_saving_amount: Decimal = ZERO
    category_id: Optional[int] = None
    notes: Optional[str] = None
    start_date: date
    target_date: Optional[date] = None
    is_active: bool = True


class SavingsGoalUpdate(BaseModel):
    name: Optional[str] = None
    target_amount: Optional[Decimal] = None
    monthly_saving_amount: Optional[Decimal] = None
    category_id: Optional[int] = None
    notes: Optional[str] = None
    start_date: Optional[date] = None
    target_date: Optional[date] = None
    is_active: Optional[bool] = None


class SavingsGoalOut(BaseModel):
    id: int
    name: str
    target_amount: Optional[Decimal]
    monthly_saving_amount: Decimal
    category_id: Optional[int]
    notes: Optional[str]
    start_date: date
    target_date: Optional[date]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class SavingsGoalBalanceOut(BaseModel):
    id: int
    goal_id: int
    total_saved_amount: Decimal
    total_withdrawn_amount: Decimal
    last_updated_year: int
    last_updated_month: int

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[misc]
    @property
    def balance(self) -> Decimal:
        return self.total_saved_amount - self.total_withdrawn_amount

    @computed_field  # type: ignore[misc]
    @property
    def is_balance_insufficient(self) -> bool:
        return self.balance < ZERO


class SavingsGoalWithdrawalCreate(BaseModel):
    amount: Decimal
    withdrawal_date: date
    purpose: Optional[str] = None
    transaction_id: Optional[int] = None


class SavingsGoalWithdrawalOut(BaseModel):
    id: int
    goal_id: int
    amount: Decimal
    withdrawal_date: date
    purpose: Optional[str]
    transaction_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)
