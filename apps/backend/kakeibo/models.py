from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo
from enum import Enum
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
    Boolean,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.config import settings
from .core.database import Base


LOCAL_ZONE = ZoneInfo(settings.TIMEZONE)


def now_local_naive() -> datetime:
    """Return naive datetime normalized to configured local timezone."""
    return datetime.now(LOCAL_ZONE).replace(tzinfo=None)


def today_local() -> date:
    return now_local_naive().date()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, onupdate=now_local_naive, nullable=False)


class SavingStrategy(str, Enum):
    DISABLED = "disabled"
    EVENLY_DISTRIBUTED = "evenly_distributed"
    CUSTOM_MONTHLY = "custom_monthly"


class DateAdjustmentPolicy(str, Enum):
    NONE = "none"
    PREVIOUS = "previous"
    NEXT = "next"


class OccurrenceStatus(str, Enum):
    PLANNED = "planned"
    SAVING = "saving"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_locked(self) -> bool:
        return self in (OccurrenceStatus.COMPLETED, OccurrenceStatus.CANCELLED)


# --- External collaborators (weakly referenced) ---------------------------


class Category(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sort_order: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (UniqueConstraint("name", name="uq_category_name"),)


class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    occurred_at: Mapped[date] = mapped_column(Date, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    # 지출은 음수, 수입은 양수
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    memo: Mapped[str | None] = mapped_column(Text)
    is_included_in_calculation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    __table_args__ = (Index("ix_transaction_occurred_at", "occurred_at"),)


# --- Business day calendar ------------------------------------------------


class CustomHoliday(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    # True면 매년 같은 월/일에 반복
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (UniqueConstraint("date", "name", name="uq_custom_holiday_date_name"),)


# --- Recurring payments ---------------------------------------------------


class RecurringPaymentDefinition(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    recurrence_interval_months: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    first_occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    lead_time_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    saving_strategy: Mapped[SavingStrategy] = mapped_column(
        SAEnum(SavingStrategy, name="saving_strategy"),
        nullable=False,
        default=SavingStrategy.EVENLY_DISTRIBUTED,
    )
    custom_monthly_saving_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    date_adjustment_policy: Mapped[DateAdjustmentPolicy] = mapped_column(
        SAEnum(DateAdjustmentPolicy, name="date_adjustment_policy"),
        nullable=False,
        default=DateAdjustmentPolicy.NONE,
    )
    # {"kind": "nth_weekday", "week": 3, "weekday": 4} 형태 (day_patterns 참조)
    recurrence_day_pattern: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    occurrences: Mapped[list["RecurringPaymentOccurrence"]] = relationship(
        "RecurringPaymentOccurrence",
        back_populates="definition",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RecurringPaymentOccurrence.scheduled_date",
    )
    balance: Mapped["RecurringPaymentSavingBalance | None"] = relationship(
        "RecurringPaymentSavingBalance",
        back_populates="definition",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    @property
    def monthly_saving_amount(self) -> Decimal:
        from .services.saving_ledger import monthly_saving_amount

        return monthly_saving_amount(self)

    __table_args__ = (
        CheckConstraint("recurrence_interval_months >= 1", name="ck_recurring_interval_positive"),
        CheckConstraint("lead_time_months >= 0", name="ck_recurring_lead_time_non_negative"),
        Index("ix_recurring_definition_category", "category_id"),
    )


class RecurringPaymentOccurrence(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    definition_id: Mapped[int] = mapped_column(
        ForeignKey("recurringpaymentdefinition.id", ondelete="CASCADE"), nullable=False
    )
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    status: Mapped[OccurrenceStatus] = mapped_column(
        SAEnum(OccurrenceStatus, name="occurrence_status"),
        nullable=False,
        default=OccurrenceStatus.PLANNED,
    )
    actual_date: Mapped[date | None] = mapped_column(Date)
    actual_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    # 거래는 id로만 약하게 참조 (FK/cascade 없음)
    transaction_id: Mapped[int | None] = mapped_column(Integer)

    definition: Mapped[RecurringPaymentDefinition] = relationship(back_populates="occurrences")

    @property
    def is_scheduling_locked(self) -> bool:
        return OccurrenceStatus(self.status).is_locked

    @property
    def remaining_amount(self) -> Decimal:
        if self.actual_amount is None:
            return self.expected_amount
        return max(Decimal("0"), self.expected_amount - self.actual_amount)

    def is_overdue(self, reference_date: date) -> bool:
        return OccurrenceStatus(self.status) != OccurrenceStatus.COMPLETED and self.scheduled_date < reference_date

    __table_args__ = (
        Index("ix_recurring_occurrence_definition_date", "definition_id", "scheduled_date"),
        Index("ix_recurring_occurrence_transaction", "transaction_id"),
    )


class RecurringPaymentSavingBalance(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    definition_id: Mapped[int] = mapped_column(
        ForeignKey("recurringpaymentdefinition.id", ondelete="CASCADE"), nullable=False
    )
    total_saved_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    total_paid_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    # 월 적립을 한 번도 기록하지 않았으면 None
    last_updated_year: Mapped[int | None] = mapped_column(Integer)
    last_updated_month: Mapped[int | None] = mapped_column(Integer)

    definition: Mapped[RecurringPaymentDefinition] = relationship(back_populates="balance")

    @property
    def balance(self) -> Decimal:
        return self.total_saved_amount - self.total_paid_amount

    __table_args__ = (
        UniqueConstraint("definition_id", name="uq_recurring_balance_definition"),
        CheckConstraint("total_saved_amount >= 0", name="ck_recurring_balance_saved_non_negative"),
        CheckConstraint("total_paid_amount >= 0", name="ck_recurring_balance_paid_non_negative"),
    )


# --- Savings goals --------------------------------------------------------


class SavingsGoal(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4))
    monthly_saving_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    notes: Mapped[str | None] = mapped_column(Text)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    target_date: Mapped[date | None] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    balance: Mapped["SavingsGoalBalance | None"] = relationship(
        "SavingsGoalBalance",
        back_populates="goal",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )
    withdrawals: Mapped[list["SavingsGoalWithdrawal"]] = relationship(
        "SavingsGoalWithdrawal",
        back_populates="goal",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SavingsGoalWithdrawal.withdrawal_date",
    )


class SavingsGoalBalance(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    goal_id: Mapped[int] = mapped_column(ForeignKey("savingsgoal.id", ondelete="CASCADE"), nullable=False)
    total_saved_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    total_withdrawn_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    last_updated_year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated_month: Mapped[int] = mapped_column(Integer, nullable=False)

    goal: Mapped[SavingsGoal] = relationship(back_populates="balance")

    @property
    def balance(self) -> Decimal:
        return self.total_saved_amount - self.total_withdrawn_amount

    __table_args__ = (UniqueConstraint("goal_id", name="uq_savings_goal_balance_goal"),)


class SavingsGoalWithdrawal(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    goal_id: Mapped[int] = mapped_column(ForeignKey("savingsgoal.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    withdrawal_date: Mapped[date] = mapped_column(Date, nullable=False)
    purpose: Mapped[str | None] = mapped_column(Text)
    transaction_id: Mapped[int | None] = mapped_column(Integer)

    goal: Mapped[SavingsGoal] = relationship(back_populates="withdrawals")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_savings_withdrawal_positive"),)
