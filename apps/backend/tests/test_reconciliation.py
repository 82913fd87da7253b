from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from kakeibo.services.reconciliation_service import ReconciliationMatcher, candidate_window


SCHEDULED = date(2025, 2, 27)
TODAY = date(2025, 3, 31)


def _txn(txn_id, occurred_at, amount, title="", included=True):
    amount = Decimal(str(amount))
    return SimpleNamespace(
        id=txn_id,
        occurred_at=occurred_at,
        amount=amount,
        title=title,
        is_included_in_calculation=included,
        is_expense=amount < 0,
    )


@pytest.fixture()
def occurrence():
    return SimpleNamespace(id=10, scheduled_date=SCHEDULED, expected_amount=Decimal("80000"))


@pytest.fixture()
def definition():
    return SimpleNamespace(name="家賃")


def test_candidate_window_is_capped_at_today():
    assert candidate_window(SCHEDULED, 30, TODAY) == (date(2025, 1, 28), date(2025, 3, 29))
    assert candidate_window(SCHEDULED, 30, date(2025, 3, 1)) == (date(2025, 1, 28), date(2025, 3, 1))


def test_score_components(occurrence, definition):
    matcher = ReconciliationMatcher()
    score = matcher.score(occurrence, definition, _txn(1, date(2025, 3, 1), -80000, "振込"), 30)

    assert score.amount_score == pytest.approx(1.0)
    assert score.date_score == pytest.approx(1 - 2 / 30)
    assert not score.title_matched
    assert score.total == pytest.approx(0.78, abs=1e-9)
    assert score.confidence_percent == 78


def test_exact_amount_two_days_off_ranks_first(occurrence, definition):
    transactions = [
        _txn(1, date(2025, 3, 1), -80000, "振込"),
        _txn(2, SCHEDULED, -40000, "コンビニ"),
        _txn(3, date(2025, 2, 20), -120000, "家電"),
    ]

    result = ReconciliationMatcher().transaction_candidates(
        occurrence, definition, transactions, {}, current_date=TODAY
    )

    assert [c.transaction_id for c in result] == [1, 2, 3]
    assert result[0].score.total == pytest.approx(0.78, abs=1e-9)


def test_title_match_adds_weight(occurrence, definition):
    result = ReconciliationMatcher().transaction_candidates(
        occurrence,
        definition,
        [_txn(1, SCHEDULED, -80000, "振込"), _txn(2, SCHEDULED, -80000, "家賃 2月分")],
        {},
        current_date=TODAY,
    )
    assert result[0].transaction_id == 2
    assert result[0].score.total == pytest.approx(1.0)


def test_filters(occurrence, definition):
    transactions = [
        _txn(1, date(2025, 3, 5), -80000, "未来"),  # current_date 이후
        _txn(2, SCHEDULED, 80000, "入金"),  # 수입
        _txn(3, SCHEDULED, -80000, "除外", included=False),
        _txn(4, date(2025, 1, 1), -80000, "範囲外"),
        _txn(5, SCHEDULED, -80000, "他の発生分"),
        _txn(6, SCHEDULED, -80000, "現在のリンク"),
        _txn(7, date(2025, 1, 28), -900000, "無関係"),  # 점수 0, 차액 초과
    ]
    linked = {5: 99, 6: occurrence.id}

    result = ReconciliationMatcher().transaction_candidates(
        occurrence, definition, transactions, linked, current_date=date(2025, 3, 1)
    )

    assert [c.transaction_id for c in result] == [6]
    assert result[0].is_current_link


def test_low_score_kept_when_title_matches(occurrence, definition):
    result = ReconciliationMatcher().transaction_candidates(
        occurrence,
        definition,
        [_txn(1, date(2025, 3, 29), -900000, "家賃")],
        {},
        current_date=TODAY,
    )
    assert len(result) == 1
    assert result[0].score.total == pytest.approx(0.2)


def test_limit_and_tiebreak(occurrence, definition):
    transactions = [
        _txn(1, date(2025, 2, 25), -80000),
        _txn(2, date(2025, 3, 1), -80000),
        _txn(3, SCHEDULED, -80000),
    ]
    result = ReconciliationMatcher(limit=2).transaction_candidates(
        occurrence, definition, transactions, {}, current_date=TODAY
    )
    assert [c.transaction_id for c in result] == [3, 1]

    assert ReconciliationMatcher().transaction_candidates(
        occurrence, definition, transactions, {}, limit=0, current_date=TODAY
    ) == []


def test_zero_expected_amount_scores_full_amount():
    occurrence = SimpleNamespace(id=1, scheduled_date=SCHEDULED, expected_amount=Decimal("0"))
    score = ReconciliationMatcher().score(
        occurrence, SimpleNamespace(name="x"), _txn(1, SCHEDULED, -500), 30
    )
    assert score.amount_score == 1.0
