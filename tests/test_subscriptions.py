"""
Tests for the SQLite persistence layer, payment ledger and activity log.
"""

from datetime import date
from decimal import Decimal

import pytest

import db
import lifecycle
import subscriptions
from config import settings
from models import PlanType, Status

NOW = date(2024, 6, 15)


@pytest.fixture
def client():
    return subscriptions.add_client("Ahmed Hassan", "0600000001", "ahmed@example.com", employee_id=4)


class TestClients:
    def test_add_and_get(self, client):
        assert client.id is not None
        assert subscriptions.get_client(client.id).name == "Ahmed Hassan"
        assert client.employee_id == 4

    def test_name_is_required(self):
        with pytest.raises(ValueError):
            subscriptions.add_client("  ", "0600000001")

    def test_missing_client(self):
        with pytest.raises(subscriptions.ClientNotFound):
            subscriptions.get_client(999)

    def test_delete_keeps_subscriptions(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        subscriptions.delete_client(client.id)
        assert subscriptions.list_clients() == []
        assert subscriptions.load(sub.id).client_id == client.id

    def test_update_client(self, client):
        updated = subscriptions.update_client(client.id, name=" Ahmed H. ", phone="0611111111")
        assert (updated.name, updated.phone, updated.email) == ("Ahmed H.", "0611111111", "ahmed@example.com")
        assert subscriptions.get_client(client.id) == updated

    def test_update_client_clears_email(self, client):
        assert subscriptions.update_client(client.id, email="").email is None

    def test_update_client_rejects_blank_phone(self, client):
        with pytest.raises(ValueError):
            subscriptions.update_client(client.id, phone=" ")
        assert subscriptions.get_client(client.id).phone == "0600000001"

    def test_update_missing_client(self):
        with pytest.raises(subscriptions.ClientNotFound):
            subscriptions.update_client(999, name="Nobody")


class TestCreate:
    def test_round_trip(self, client):
        sub = subscriptions.create(client.id, "Trimestriel", "800", NOW, NOW)
        loaded = subscriptions.load(sub.id)
        assert loaded.plan_type == PlanType.QUARTERLY
        assert loaded.price == Decimal("800")
        assert loaded.start_date == NOW
        assert loaded.end_date == date(2024, 9, 15)
        assert loaded.status == Status.ACTIVE
        assert loaded.created_at is not None
        assert loaded.employee_id == client.employee_id

    def test_records_initial_payment(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        payments = subscriptions.list_payments(sub.id)
        assert len(payments) == 1
        assert payments[0].kind == subscriptions.PAYMENT
        assert payments[0].amount == Decimal("300")
        assert payments[0].date == NOW.isoformat()

    def test_unknown_client(self):
        with pytest.raises(subscriptions.ClientNotFound):
            subscriptions.create(42, PlanType.MONTHLY, "300", NOW, NOW)

    def test_invalid_plan_writes_nothing(self, client):
        with pytest.raises(lifecycle.InvalidPlanType):
            subscriptions.create(client.id, "weekly", "300", NOW, NOW)
        assert subscriptions.list_subscriptions(NOW) == []

    def test_missing_subscription(self):
        with pytest.raises(subscriptions.SubscriptionNotFound):
            subscriptions.load(123)


class TestApply:
    def test_activate_expired_renews_and_saves(self, client):
        sub = subscriptions.create(
            client.id, PlanType.QUARTERLY, "800", date(2019, 10, 1), date(2019, 10, 1),
            end_date=date(2020, 1, 1), status=Status.SUSPENDED,
        )
        result = subscriptions.apply(sub.id, lifecycle.Activate(), NOW)
        assert result.persist
        loaded = subscriptions.load(sub.id)
        assert (loaded.start_date, loaded.end_date, loaded.status) == (NOW, date(2024, 9, 15), Status.ACTIVE)

    def test_no_op_is_not_saved(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        result = subscriptions.apply(sub.id, lifecycle.Activate(), NOW)
        assert not result.persist
        assert subscriptions.load(sub.id).updated_at == sub.updated_at

    def test_price_changes_hit_the_ledger(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        subscriptions.apply(sub.id, lifecycle.Edit(price="450"), NOW)
        subscriptions.apply(sub.id, lifecycle.Edit(price="400"), NOW)

        kinds = sorted((p.kind, p.amount) for p in subscriptions.list_payments(sub.id))
        assert kinds == [("payment", Decimal("150")), ("payment", Decimal("300")), ("refund", Decimal("50"))]
        assert subscriptions.balance(sub.id) == Decimal("400")

    def test_renew_records_a_payment(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", date(2024, 5, 1), date(2024, 5, 1))
        subscriptions.apply(sub.id, lifecycle.Renew(price="320"), NOW)
        loaded = subscriptions.load(sub.id)
        assert loaded.start_date == NOW
        assert loaded.price == Decimal("320")
        assert subscriptions.balance(sub.id) == Decimal("620")

    def test_rejected_action_leaves_row_alone(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        subscriptions.apply(sub.id, lifecycle.Cancel(), NOW)
        with pytest.raises(lifecycle.IllegalTransition):
            subscriptions.apply(sub.id, lifecycle.Activate(), NOW)
        assert subscriptions.load(sub.id).status == Status.CANCELLED

    def test_cancelled_edits_follow_settings(self, client, monkeypatch):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        subscriptions.apply(sub.id, lifecycle.Cancel(), NOW)
        monkeypatch.setattr(settings, "ALLOW_CANCELLED_EDITS", False)
        with pytest.raises(lifecycle.IllegalTransition):
            subscriptions.apply(sub.id, lifecycle.Edit(status=Status.ACTIVE), NOW)


class TestListing:
    def test_expired_is_derived_not_stored(self, client):
        lapsed = subscriptions.create(
            client.id, PlanType.MONTHLY, "300", date(2024, 1, 1), date(2024, 1, 1), end_date=date(2024, 2, 1)
        )
        running = subscriptions.create(client.id, PlanType.ANNUAL, "3000", NOW, NOW)

        expired = subscriptions.list_subscriptions(NOW, status=Status.EXPIRED)
        assert [s.id for s in expired] == [lapsed.id]
        assert [s.id for s in subscriptions.list_subscriptions(NOW, status=Status.ACTIVE)] == [running.id]

        row = db.fetch_one("SELECT status FROM subscriptions WHERE id = ?", (lapsed.id,))
        assert row["status"] == "active"

    def test_filter_by_client(self, client):
        other = subscriptions.add_client("Mona Ali", "0600000002")
        subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        mine = subscriptions.create(other.id, PlanType.MONTHLY, "300", NOW, NOW)
        assert [s.id for s in subscriptions.list_subscriptions(NOW, client_id=other.id)] == [mine.id]

    def test_status_counts(self, client):
        subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        suspended = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW, status=Status.SUSPENDED)
        subscriptions.create(client.id, PlanType.MONTHLY, "300", date(2024, 1, 1), date(2024, 1, 1))
        subscriptions.apply(suspended.id, lifecycle.Cancel(), NOW)

        counts = subscriptions.status_counts(NOW)
        assert counts == {Status.ACTIVE: 1, Status.SUSPENDED: 0, Status.EXPIRED: 1, Status.CANCELLED: 1}

    def test_expiring_soon_sorted_by_end_date(self, client):
        later = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW, end_date=date(2024, 6, 30))
        sooner = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW, end_date=date(2024, 6, 18))
        subscriptions.create(client.id, PlanType.ANNUAL, "3000", NOW, NOW)

        assert [s.id for s in subscriptions.expiring_soon(NOW, 30)] == [sooner.id, later.id]
        assert [s.id for s in subscriptions.expiring_soon(NOW, 7)] == [sooner.id]

    def test_rows_carry_display_status(self, client):
        subscriptions.create(client.id, PlanType.MONTHLY, "300", date(2024, 1, 1), date(2024, 1, 1))
        rows = subscriptions.subscription_rows(subscriptions.list_subscriptions(NOW), NOW)
        assert rows[0]["status"] == "expired"
        assert rows[0]["client"] == "Ahmed Hassan"
        assert rows[0]["days_left"] < 0


class TestDelete:
    def test_refunds_outstanding_balance(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "500", NOW, NOW)
        subscriptions.delete(sub.id, NOW)

        with pytest.raises(subscriptions.SubscriptionNotFound):
            subscriptions.load(sub.id)
        refunds = [p for p in subscriptions.list_payments(sub.id) if p.kind == subscriptions.REFUND]
        assert len(refunds) == 1
        assert refunds[0].amount == Decimal("500")
        assert subscriptions.balance(sub.id) == Decimal("0")

    def test_free_subscription_has_nothing_to_refund(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "0", NOW, NOW)
        subscriptions.delete(sub.id, NOW)
        assert subscriptions.list_payments(sub.id) == []

    def test_failed_delete_rolls_back_the_refund(self, client, monkeypatch):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "500", NOW, NOW)

        def fail(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(subscriptions, "_log_activity", fail)
        with pytest.raises(RuntimeError):
            subscriptions.delete(sub.id, NOW)

        assert subscriptions.load(sub.id) == sub
        assert [p.kind for p in subscriptions.list_payments(sub.id)] == [subscriptions.PAYMENT]
        assert subscriptions.balance(sub.id) == Decimal("500")


class TestActivity:
    """Every write to a client or subscription leaves an activity entry."""

    def test_create_is_logged_with_attributes(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        (entry,) = subscriptions.list_activity("subscription", sub.id)
        assert entry.event == "created"
        assert entry.description == "Subscription created"
        assert entry.properties["attributes"]["status"] == "active"
        assert entry.properties["attributes"]["end_date"] == "2024-07-15"

    def test_update_logs_only_changed_fields(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        subscriptions.apply(sub.id, lifecycle.Suspend(), NOW)

        entry = subscriptions.list_activity("subscription", sub.id)[0]
        assert entry.event == "updated"
        assert entry.description == "Subscription updated (Suspend)"
        assert entry.properties == {"old": {"status": "active"}, "attributes": {"status": "suspended"}}

    def test_no_op_is_not_logged(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        subscriptions.apply(sub.id, lifecycle.Activate(), NOW)
        assert [a.event for a in subscriptions.list_activity("subscription", sub.id)] == ["created"]

    def test_rejected_action_is_not_logged(self, client):
        sub = subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        with pytest.raises(lifecycle.InvalidStatus):
            subscriptions.apply(sub.id, lifecycle.SetStatus("pending"), NOW)
        assert len(subscriptions.list_activity("subscription", sub.id)) == 1

    def test_delete_keeps_a_snapshot(self, client):
        sub = subscriptions.create(client.id, PlanType.ANNUAL, "3000", NOW, NOW)
        subscriptions.delete(sub.id, NOW)
        entry = subscriptions.list_activity("subscription", sub.id)[0]
        assert entry.event == "deleted"
        assert entry.properties["old"]["plan_type"] == "annual"
        assert entry.properties["old"]["price"] == "3000.00"

    def test_client_events(self, client):
        subscriptions.update_client(client.id, name="Ahmed H.")
        subscriptions.update_client(client.id, name="Ahmed H.")
        subscriptions.delete_client(client.id)

        events = [a.event for a in subscriptions.list_activity("client", client.id)]
        assert events == ["deleted", "updated", "created"]
        updated = subscriptions.list_activity("client", client.id)[1]
        assert updated.properties == {"old": {"name": "Ahmed Hassan"}, "attributes": {"name": "Ahmed H."}}

    def test_rows_for_reports(self, client):
        subscriptions.create(client.id, PlanType.MONTHLY, "300", NOW, NOW)
        rows = subscriptions.activity_rows(subscriptions.list_activity())
        assert [r["subject"] for r in rows] == ["subscription #1", f"client #{client.id}"]
        assert '"status": "active"' in rows[0]["changes"]
