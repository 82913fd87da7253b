"""
Recurring payments initial schema

Revision ID: 0001_recurring_payments
Revises:
Create Date: 2026-10-18 10:00:00
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_recurring_payments'
down_revision = None
branch_labels = None
depends_on = None


# SAEnum 은 enum 이름(대문자)을 저장한다
saving_strategy = sa.Enum('DISABLED', 'EVENLY_DISTRIBUTED', 'CUSTOM_MONTHLY', name='saving_strategy')
date_adjustment_policy = sa.Enum('NONE', 'PREVIOUS', 'NEXT', name='date_adjustment_policy')
occurrence_status = sa.Enum('PLANNED', 'SAVING', 'COMPLETED', 'CANCELLED', name='occurrence_status')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
    ]


def upgrade() -> None:
    op.create_table(
        'category',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('name', name='uq_category_name'),
    )

    op.create_table(
        'transaction',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('occurred_at', sa.Date(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='SET NULL'), nullable=True),
        sa.Column('memo', sa.Text(), nullable=True),
        sa.Column('is_included_in_calculation', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
    )
    op.create_index('ix_transaction_occurred_at', 'transaction', ['occurred_at'])

    op.create_table(
        'customholiday',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        *_timestamps(),
        sa.UniqueConstraint('date', 'name', name='uq_custom_holiday_date_name'),
    )

    op.create_table(
        'recurringpaymentdefinition',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('recurrence_interval_months', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('first_occurrence_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('lead_time_months', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='SET NULL'), nullable=True),
        sa.Column('saving_strategy', saving_strategy, nullable=False, server_default='EVENLY_DISTRIBUTED'),
        sa.Column('custom_monthly_saving_amount', sa.Numeric(18, 4), nullable=True),
        sa.Column('date_adjustment_policy', date_adjustment_policy, nullable=False, server_default='NONE'),
        sa.Column('recurrence_day_pattern', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('recurrence_interval_months >= 1', name='ck_recurring_interval_positive'),
        sa.CheckConstraint('lead_time_months >= 0', name='ck_recurring_lead_time_non_negative'),
    )
    op.create_index('ix_recurring_definition_category', 'recurringpaymentdefinition', ['category_id'])

    op.create_table(
        'recurringpaymentoccurrence',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            'definition_id',
            sa.Integer(),
            sa.ForeignKey('recurringpaymentdefinition.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('expected_amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('status', occurrence_status, nullable=False, server_default='PLANNED'),
        sa.Column('actual_date', sa.Date(), nullable=True),
        sa.Column('actual_amount', sa.Numeric(18, 4), nullable=True),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        'ix_recurring_occurrence_definition_date',
        'recurringpaymentoccurrence',
        ['definition_id', 'scheduled_date'],
    )
    op.create_index('ix_recurring_occurrence_transaction', 'recurringpaymentoccurrence', ['transaction_id'])

    op.create_table(
        'recurringpaymentsavingbalance',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            'definition_id',
            sa.Integer(),
            sa.ForeignKey('recurringpaymentdefinition.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('total_saved_amount', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('total_paid_amount', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('last_updated_year', sa.Integer(), nullable=True),
        sa.Column('last_updated_month', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('definition_id', name='uq_recurring_balance_definition'),
        sa.CheckConstraint('total_saved_amount >= 0', name='ck_recurring_balance_saved_non_negative'),
        sa.CheckConstraint('total_paid_amount >= 0', name='ck_recurring_balance_paid_non_negative'),
    )

    op.create_table(
        'savingsgoal',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('target_amount', sa.Numeric(18, 4), nullable=True),
        sa.Column('monthly_saving_amount', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('target_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
    )

    op.create_table(
        'savingsgoalbalance',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('goal_id', sa.Integer(), sa.ForeignKey('savingsgoal.id', ondelete='CASCADE'), nullable=False),
        sa.Column('total_saved_amount', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('total_withdrawn_amount', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('last_updated_year', sa.Integer(), nullable=False),
        sa.Column('last_updated_month', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('goal_id', name='uq_savings_goal_balance_goal'),
    )

    op.create_table(
        'savingsgoalwithdrawal',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('goal_id', sa.Integer(), sa.ForeignKey('savingsgoal.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('withdrawal_date', sa.Date(), nullable=False),
        sa.Column('purpose', sa.Text(), nullable=True),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_savings_withdrawal_positive'),
    )


def downgrade() -> None:
    op.drop_table('savingsgoalwithdrawal')
    op.drop_table('savingsgoalbalance')
    op.drop_table('savingsgoal')
    op.drop_table('recurringpaymentsavingbalance')
    op.drop_index('ix_recurring_occurrence_transaction', table_name='recurringpaymentoccurrence')
    op.drop_index('ix_recurring_occurrence_definition_date', table_name='recurringpaymentoccurrence')
    op.drop_table('recurringpaymentoccurrence')
    op.drop_index('ix_recurring_definition_category', table_name='recurringpaymentdefinition')
    op.drop_table('recurringpaymentdefinition')
    op.drop_table('customholiday')
    op.drop_index('ix_transaction_occurred_at', table_name='transaction')
    op.drop_table('transaction')
    op.drop_table('category')
