"""Tests for the release script (alembic upgrade + seed)."""
from datetime import datetime

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import Session

from app.hbm.models import Role, StatusChangeRecord
from app.hbm.modules.inquiries.models import Inquiry
from app.hbm.modules.orders.models import Order
from scripts.release import run_release


def test_release_migrates_and_seeds(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'release.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("ENV", "test")

    run_release()
    run_release()  # idempotent

    engine = create_engine(db_url, future=True)
    try:
        tables = set(inspect(engine).get_table_names())
        assert {"roles", "permissions", "role_permissions", "orders", "inquiries", "status_change_history"} <= tables
        assert "alembic_version" in tables
        with Session(engine) as s:
            roles = {r.key: r for r in s.query(Role).all()}
            assert set(roles) == {"superadmin", "admin", "staff"}
            assert len(roles["superadmin"].permissions) == 24
    finally:
        engine.dispose()


def test_release_refuses_sqlite_in_production(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError, match="must be Postgres in production"):
        run_release()


def test_release_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        run_release()


def test_release_backfills_rows_without_history(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'backfill.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STATUS_HISTORY_BACKEND", "sql")
    run_release()

    engine = create_engine(db_url, future=True)
    try:
        with Session(engine) as s:
            s.add(Order(order_number="SO-OLD", quoted_at=datetime(2024, 1, 2)))
            s.add(Inquiry(customer_name="Ada", customer_email="ada@example.com", message="hi", status=9))
            s.commit()

        run_release()
        run_release()

        with Session(engine) as s:
            rows = s.query(StatusChangeRecord).order_by(StatusChangeRecord.sequence).all()
            assert [(r.entity_type, r.from_status, r.to_status, r.changed_by) for r in rows] == [
                ("order", None, "quoted", "system"),
                ("inquiry", None, "new", "system"),
            ]
            assert {r.reason for r in rows} == {"Initial status"}
    finally:
        engine.dispose()


def test_release_skips_backfill_for_memory_ledger(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'memory.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STATUS_HISTORY_BACKEND", "memory")
    run_release()

    engine = create_engine(db_url, future=True)
    try:
        with Session(engine) as s:
            s.add(Order(order_number="SO-OLD"))
            s.commit()
        run_release()
        with Session(engine) as s:
            assert s.query(StatusChangeRecord).count() == 0
    finally:
        engine.dispose()
