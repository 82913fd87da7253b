from __future__ import annotations

import os
import tempfile
from datetime import date
from decimal import Decimal
from typing import Generator, Any

import pytest
from sqlalchemy.orm import sessionmaker

from kakeibo.core.database import Base, build_engine, get_db
from kakeibo.main import app
from kakeibo import models


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # 사용자 환경을 건드리지 않도록 임시 파일 SQLite 사용
    fd, path = tempfile.mkstemp(prefix="kakeibo_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = build_engine(test_db_url, wal=False)
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Any, Any, Any]:
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    # 간단 시드: 카테고리 1개 (고정비)
    session.add(models.Category(name="고정비", sort_order=1))
    session.commit()

    try:
        yield session
    finally:
        session.close()
        # 테이블 데이터 정리 (자식 테이블부터, FK 는 켠 채로)
        with engine.begin() as conn:
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())


@pytest.fixture(autouse=True)
def override_dependency(db_session):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def category(db_session) -> models.Category:
    return db_session.query(models.Category).filter_by(name="고정비").one()


@pytest.fixture()
def make_definition(db_session):
    """ORM 정의 직접 생성 (서비스 검증 우회, 스케줄러 테스트용)"""

    def _make(**overrides) -> models.RecurringPaymentDefinition:
        data = dict(
            name="家賃",
            amount=Decimal("80000"),
            recurrence_interval_months=1,
            first_occurrence_date=date(2025, 1, 27),
            saving_strategy=models.SavingStrategy.EVENLY_DISTRIBUTED,
            date_adjustment_policy=models.DateAdjustmentPolicy.NONE,
        )
        data.update(overrides)
        row = models.RecurringPaymentDefinition(**data)
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _make


@pytest.fixture()
def make_transaction(db_session):
    def _make(occurred_at: date, amount, title: str = "", *, included: bool = True) -> models.Transaction:
        row = models.Transaction(
            occurred_at=occurred_at,
            amount=Decimal(str(amount)),
            title=title,
            is_included_in_calculation=included,
        )
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _make
