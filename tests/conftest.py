"""Shared fixtures: every test gets its own SQLite file."""

from datetime import date
from decimal import Decimal

import pytest

import db
from models import PlanType, Status, Subscription


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point the database helpers at a fresh file and create the schema."""
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "test.db")
    db.init_db()
    return db.DB_FILE


@pytest.fixture
def make_subscription():
    """Build an in-memory Subscription with sensible defaults."""

    def _make(**overrides):
        fields = {
            "id": 1,
            "client_id": 1,
            "plan_type": PlanType.MONTHLY,
            "price": Decimal("300"),
            "start_date": date(2024, 1, 15),
            "end_date": date(2024, 2, 15),
            "status": Status.ACTIVE,
        }
        fields.update(overrides)
        return Subscription(**fields)

    return _make
