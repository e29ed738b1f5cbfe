"""
subscriptions.py
Persistence for clients, subscriptions, the payment ledger and the activity log.

Loads records, hands them to the lifecycle engine and writes back what it
returns. Display status is applied at read time and never stored.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import date
from decimal import Decimal
from enum import Enum

import db
import lifecycle
from config import settings
from models import Activity, Client, Payment, PlanType, Status, Subscription

logger = logging.getLogger(__name__)

PAYMENT = "payment"
REFUND = "refund"

SUBSCRIPTION_FIELDS = ("client_id", "plan_type", "price", "start_date", "end_date", "status")
CLIENT_FIELDS = ("name", "phone", "email")


class SubscriptionNotFound(LookupError):
    def __init__(self, subscription_id):
        super().__init__(f"Subscription {subscription_id} not found.")
        self.subscription_id = subscription_id


class ClientNotFound(LookupError):
    def __init__(self, client_id):
        super().__init__(f"Client {client_id} not found.")
        self.client_id = client_id


def _to_decimal(value) -> Decimal:
    return Decimal(str(value))


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row["id"],
        client_id=row["client_id"],
        plan_type=PlanType.parse(row["plan_type"]),
        price=_to_decimal(row["price"]),
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        status=Status.parse(row["status"]),
        employee_id=row["employee_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_client(row) -> Client:
    return Client(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        email=row["email"],
        employee_id=row["employee_id"],
        created_at=row["created_at"],
    )


def _row_to_payment(row) -> Payment:
    return Payment(
        id=row["id"],
        subscription_id=row["subscription_id"],
        client_id=row["client_id"],
        amount=_to_decimal(row["amount"]),
        kind=row["kind"],
        date=row["date"],
        description=row["description"],
    )


def _row_to_activity(row) -> Activity:
    return Activity(
        id=row["id"],
        subject_type=row["subject_type"],
        subject_id=row["subject_id"],
        event=row["event"],
        description=row["description"],
        properties=json.loads(row["properties"]),
        created_at=row["created_at"],
    )


# ---------- Clients ----------

def _clean_email(email: str | None) -> str | None:
    return (email or "").strip() or None


def add_client(name: str, phone: str, email: str | None = None, employee_id: int | None = None) -> Client:
    if not name.strip():
        raise ValueError("Client name is required.")
    if not phone.strip():
        raise ValueError("Phone is required.")
    with db.get_conn() as conn:
        client_id = db.execute(
            "INSERT INTO clients(name, phone, email, employee_id, created_at) VALUES(?,?,?,?,?)",
            (name.strip(), phone.strip(), _clean_email(email), employee_id, db.timestamp()),
            conn,
        )
        client = Client(client_id, name.strip(), phone.strip(), _clean_email(email), employee_id)
        _log_activity("client", client_id, "created", {"attributes": _snapshot(client, CLIENT_FIELDS)}, conn)
    logger.info("Created client %s", client_id)
    return get_client(client_id)


def get_client(client_id: int) -> Client:
    row = db.fetch_one("SELECT * FROM clients WHERE id = ?", (client_id,))
    if not row:
        raise ClientNotFound(client_id)
    return _row_to_client(row)


def list_clients() -> list[Client]:
    return [_row_to_client(r) for r in db.fetch_all("SELECT * FROM clients ORDER BY name ASC")]


def update_client(
    client_id: int,
    name: str | None = None,
    phone: str | None = None,
    email: str | None = None,
) -> Client:
    """
    Change contact details. None leaves a field as it is; an empty email
    clears it. Name and phone cannot be blanked.
    """
    current = get_client(client_id)
    if name is not None and not name.strip():
        raise ValueError("Client name is required.")
    if phone is not None and not phone.strip():
        raise ValueError("Phone is required.")

    updated = replace(
        current,
        name=name.strip() if name is not None else current.name,
        phone=phone.strip() if phone is not None else current.phone,
        email=_clean_email(email) if email is not None else current.email,
    )
    if updated == current:
        return current

    with db.get_conn() as conn:
        db.execute(
            "UPDATE clients SET name=?, phone=?, email=? WHERE id=?",
            (updated.name, updated.phone, updated.email, client_id),
            conn,
        )
        _log_activity("client", client_id, "updated", _dirty(current, updated, CLIENT_FIELDS), conn)
    logger.info("Updated client %s", client_id)
    return updated


def delete_client(client_id: int) -> None:
    # subscriptions are kept; what to do with them is up to the caller
    client = get_client(client_id)
    with db.get_conn() as conn:
        db.execute("DELETE FROM clients WHERE id = ?", (client_id,), conn)
        _log_activity("client", client_id, "deleted", {"old": _snapshot(client, CLIENT_FIELDS)}, conn)
    logger.info("Deleted client %s", client_id)


# ---------- Subscriptions ----------

def load(subscription_id: int) -> Subscription:
    row = db.fetch_one("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
    if not row:
        raise SubscriptionNotFound(subscription_id)
    return _row_to_subscription(row)


def save(subscription: Subscription, conn=None) -> Subscription:
    """Insert (id is None) or update a record. Returns it with id and timestamps set."""
    ts = db.timestamp()
    values = (
        subscription.client_id,
        subscription.employee_id,
        subscription.plan_type.value,
        float(subscription.price),
        subscription.start_date.isoformat(),
        subscription.end_date.isoformat(),
        subscription.status.value,
    )
    if subscription.id is None:
        new_id = db.execute(
            """
            INSERT INTO subscriptions(client_id, employee_id, plan_type, price, start_date, end_date, status,
                created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?)
            """,
            values + (ts, ts),
            conn,
        )
        return replace(subscription, id=new_id, created_at=ts, updated_at=ts)

    db.execute(
        """
        UPDATE subscriptions SET client_id=?, employee_id=?, plan_type=?, price=?, start_date=?, end_date=?,
            status=?, updated_at=?
        WHERE id=?
        """,
        values + (ts, subscription.id),
        conn,
    )
    return replace(subscription, updated_at=ts)


def delete(subscription_id: int, now) -> None:
    """Hard delete. Any outstanding balance is refunded in the same transaction."""
    sub = load(subscription_id)
    outstanding = balance(subscription_id)
    with db.get_conn() as conn:
        if outstanding > 0:
            _record(sub, outstanding, REFUND, now, "Refund on subscription deletion", conn)
        db.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,), conn)
        _log_activity("subscription", subscription_id, "deleted", {"old": _snapshot(sub, SUBSCRIPTION_FIELDS)}, conn)
    logger.info("Deleted subscription %s", subscription_id)


def create(
    client_id: int,
    plan_type,
    price,
    start_date: date,
    now,
    *,
    status=Status.ACTIVE,
    end_date: date | None = None,
    employee_id: int | None = None,
) -> Subscription:
    client = get_client(client_id)
    if employee_id is None:
        employee_id = client.employee_id
    sub = lifecycle.new_subscription(
        client_id, plan_type, price, start_date,
        status=status, end_date=end_date, employee_id=employee_id,
    )
    with db.get_conn() as conn:
        sub = save(sub, conn)
        if sub.price > 0:
            _record(sub, sub.price, PAYMENT, now, f"Initial payment ({sub.plan_type.value})", conn)
        _log_activity("subscription", sub.id, "created", {"attributes": _snapshot(sub, SUBSCRIPTION_FIELDS)}, conn)
    logger.info("Created subscription %s for client %s (%s)", sub.id, client_id, sub.plan_type.value)
    return sub


def apply(subscription_id: int, action, now) -> lifecycle.TransitionResult:
    """
    Load, transition, and save when the engine says so. Price changes and
    renewals are mirrored in the payment ledger, and every saved change
    lands in the activity log.
    """
    current = load(subscription_id)
    result = lifecycle.transition(current, action, now, allow_cancelled_edits=settings.ALLOW_CANCELLED_EDITS)
    if not result.persist:
        return result

    with db.get_conn() as conn:
        updated = save(result.subscription, conn)

        if isinstance(action, lifecycle.Renew):
            if updated.price > 0:
                _record(updated, updated.price, PAYMENT, now, f"Renewal ({updated.plan_type.value})", conn)
        elif updated.price != current.price:
            difference = updated.price - current.price
            if difference > 0:
                _record(updated, difference, PAYMENT, now, "Additional payment after price change", conn)
            else:
                _record(updated, -difference, REFUND, now, "Refund after price reduction", conn)

        _log_activity(
            "subscription", subscription_id, "updated", _dirty(current, updated, SUBSCRIPTION_FIELDS), conn,
            detail=type(action).__name__,
        )

    logger.info(
        "Subscription %s: %s -> %s (%s)",
        subscription_id, current.status.value, updated.status.value, type(action).__name__,
    )
    return lifecycle.TransitionResult(subscription=updated, persist=True)


def list_subscriptions(now, status: Status | None = None, client_id: int | None = None) -> list[Subscription]:
    """
    All subscriptions, newest first. `status` filters on the display status,
    so Status.EXPIRED matches lapsed records whatever their stored status.
    """
    sql = "SELECT * FROM subscriptions WHERE 1=1"
    params = []
    if client_id is not None:
        sql += " AND client_id = ?"
        params.append(client_id)
    sql += " ORDER BY id DESC"

    subs = [_row_to_subscription(r) for r in db.fetch_all(sql, tuple(params))]
    if status is not None:
        subs = [s for s in subs if lifecycle.display_status(s, now) == status]
    return subs


def expiring_soon(now, days: int | None = None) -> list[Subscription]:
    if days is None:
        days = settings.EXPIRING_SOON_DAYS
    subs = [s for s in list_subscriptions(now) if lifecycle.is_expiring_soon(s, now, days)]
    return sorted(subs, key=lambda s: s.end_date)


def status_counts(now) -> dict[Status, int]:
    counts = {s: 0 for s in Status}
    for sub in list_subscriptions(now):
        counts[lifecycle.display_status(sub, now)] += 1
    return counts


def subscription_rows(subs: list[Subscription], now) -> list[dict]:
    """Flat dicts for tables and CSV export, with the display status applied."""
    names = {c.id: c.name for c in list_clients()}
    rows = []
    for s in subs:
        rows.append(
            {
                "id": s.id,
                "client": names.get(s.client_id, ""),
                "client_id": s.client_id,
                "plan_type": s.plan_type.value,
                "price": float(s.price),
                "start_date": s.start_date.isoformat(),
                "end_date": s.end_date.isoformat(),
                "status": lifecycle.display_status(s, now).value,
                "days_left": lifecycle.days_left(s, now),
                "employee_id": s.employee_id,
            }
        )
    return rows


# ---------- Payment ledger ----------

def _record(sub: Subscription, amount: Decimal, kind: str, now, description: str, conn=None) -> int:
    payment_id = db.execute(
        "INSERT INTO payments(subscription_id, client_id, amount, date, kind, description) VALUES(?,?,?,?,?,?)",
        (sub.id, sub.client_id, float(amount), lifecycle.as_date(now).isoformat(), kind, description),
        conn,
    )
    logger.info("Recorded %s of %s for subscription %s", kind, amount, sub.id)
    return payment_id


def list_payments(subscription_id: int | None = None) -> list[Payment]:
    if subscription_id is None:
        rows = db.fetch_all("SELECT * FROM payments ORDER BY date DESC, id DESC")
    else:
        rows = db.fetch_all(
            "SELECT * FROM payments WHERE subscription_id = ? ORDER BY date DESC, id DESC",
            (subscription_id,),
        )
    return [_row_to_payment(r) for r in rows]


def balance(subscription_id: int) -> Decimal:
    """Payments minus refunds for one subscription."""
    total = Decimal("0")
    for p in list_payments(subscription_id):
        total += p.amount if p.kind == PAYMENT else -p.amount
    return total


# ---------- Activity log ----------

def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, date):
        return value.isoformat()
    return value


def _snapshot(record, fields) -> dict:
    return {f: _plain(getattr(record, f)) for f in fields}


def _dirty(before, after, fields) -> dict:
    """Only the fields that changed, as {"old": {...}, "attributes": {...}}."""
    changed = [f for f in fields if getattr(before, f) != getattr(after, f)]
    return {
        "old": {f: _plain(getattr(before, f)) for f in changed},
        "attributes": {f: _plain(getattr(after, f)) for f in changed},
    }


def _log_activity(subject_type: str, subject_id: int, event: str, properties: dict, conn=None, detail: str = "") -> int:
    description = f"{subject_type.capitalize()} {event}"
    if detail:
        description += f" ({detail})"
    return db.execute(
        "INSERT INTO activity(subject_type, subject_id, event, description, properties, created_at) VALUES(?,?,?,?,?,?)",
        (subject_type, subject_id, event, description, json.dumps(properties), db.timestamp()),
        conn,
    )


def list_activity(subject_type: str | None = None, subject_id: int | None = None) -> list[Activity]:
    """Activity entries, newest first."""
    sql = "SELECT * FROM activity WHERE 1=1"
    params = []
    if subject_type is not None:
        sql += " AND subject_type = ?"
        params.append(subject_type)
    if subject_id is not None:
        sql += " AND subject_id = ?"
        params.append(subject_id)
    sql += " ORDER BY id DESC"
    return [_row_to_activity(r) for r in db.fetch_all(sql, tuple(params))]


def activity_rows(entries: list[Activity]) -> list[dict]:
    return [
        {
            "id": a.id,
            "date": a.created_at,
            "subject": f"{a.subject_type} #{a.subject_id}",
            "event": a.event,
            "description": a.description,
            "changes": json.dumps(a.properties.get("attributes", a.properties.get("old", {}))),
        }
        for a in entries
    ]
