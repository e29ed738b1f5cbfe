"""
utils.py
Validation, dates, exports, sample data.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, timedelta

import pandas as pd

import db
import lifecycle
import subscriptions
from models import INITIAL_STATUSES, PlanType, Status

# Things a user may choose on a form; expired is only ever derived
EDITABLE_STATUSES = [Status.ACTIVE, Status.SUSPENDED, Status.CANCELLED]


def today() -> date:
    return date.today()


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def validate_subscription_inputs(plan_type, price, start_date: str, end_date: str) -> list[str]:
    """Form-level checks, one message per problem, before anything reaches the lifecycle."""
    errors: list[str] = []
    try:
        lifecycle.coerce_plan_type(plan_type)
    except lifecycle.InvalidPlanType as exc:
        errors.append(str(exc))
    try:
        lifecycle.coerce_price(price)
    except lifecycle.InvalidPrice:
        errors.append("Price must be a non-negative number.")
    try:
        sd = parse_iso(start_date)
        ed = parse_iso(end_date)
        if ed < sd:
            errors.append("End date must not be before start date.")
    except (TypeError, ValueError):
        errors.append("Start/end dates must be valid ISO dates (YYYY-MM-DD).")
    return errors


def form_status_choices(existing=None) -> tuple[list, int]:
    """
    Options for the form's status selectbox and the index to pre-select.

    None means "keep the stored status". It is offered, and selected, only for
    legacy rows stored as expired, so saving such a form leaves the status alone.
    """
    if existing is None:
        return list(INITIAL_STATUSES), 0
    if existing.status in EDITABLE_STATUSES:
        return list(EDITABLE_STATUSES), EDITABLE_STATUSES.index(existing.status)
    return [None] + EDITABLE_STATUSES, 0


def form_end_date(existing, plan_type, start_date: date) -> date:
    """End date the form shows when it is not set by hand. Follows the Edit rule."""
    auto_end = lifecycle.compute_end_date(start_date, plan_type)
    if existing is None:
        return auto_end
    if lifecycle.coerce_plan_type(plan_type) != existing.plan_type or start_date != existing.start_date:
        return auto_end
    return existing.end_date


def subscriptions_to_csv_bytes(rows: list[dict]) -> bytes:
    df = pd.DataFrame(rows)
    return df.to_csv(index=False).encode("utf-8")


def payments_to_csv_bytes(payments) -> bytes:
    df = pd.DataFrame([asdict(p) for p in payments])
    if not df.empty:
        df["amount"] = df["amount"].astype(float)
    return df.to_csv(index=False).encode("utf-8")


def revenue_summary_by_month() -> pd.DataFrame:
    """Net revenue (payments minus refunds) per month, most recent first."""
    rows = db.fetch_all(
        """
        SELECT strftime('%Y-%m', date) AS month,
               SUM(CASE WHEN kind = 'payment' THEN amount ELSE 0 END) AS payments,
               SUM(CASE WHEN kind = 'refund' THEN amount ELSE 0 END) AS refunds
        FROM payments
        GROUP BY strftime('%Y-%m', date)
        ORDER BY month DESC
        """
    )
    df = pd.DataFrame([dict(r) for r in rows])
    if df.empty:
        return pd.DataFrame(columns=["month", "payments", "refunds", "revenue"])
    df["revenue"] = (df["payments"] - df["refunds"]).clip(lower=0)
    return df


def insert_sample_data(now: date) -> None:
    """
    Insert 3 clients with one subscription each (safe to run multiple times: adds new rows each time).
    """
    # Client 1: active, expires in ~5 days
    c1 = subscriptions.add_client("Ahmed Hassan", "0600000001", "ahmed@example.com")
    subscriptions.create(
        c1.id, PlanType.MONTHLY, "300", now - timedelta(days=25), now,
        end_date=now + timedelta(days=5),
    )

    # Client 2: active, longer plan
    c2 = subscriptions.add_client("Mona Ali", "0600000002")
    subscriptions.create(c2.id, PlanType.QUARTERLY, "800", now - timedelta(days=10), now)

    # Client 3: lapsed two days ago, stored status still active
    c3 = subscriptions.add_client("Omar Samy", "0600000003")
    subscriptions.create(
        c3.id, PlanType.MONTHLY, "300", now - timedelta(days=60), now - timedelta(days=60),
        end_date=now - timedelta(days=2), status=Status.ACTIVE,
    )
