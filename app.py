"""
app.py
Streamlit subscription administration (clients + abonnements).
Run: streamlit run app.py
"""

from __future__ import annotations

import logging
from datetime import date

import pandas as pd
import streamlit as st

import db
import lifecycle
import subscriptions
import utils
from config import settings
from models import PlanType, Status

st.set_page_config(page_title="Subscriptions Admin", layout="wide")

logger = logging.getLogger(__name__)

STATUS_BADGES = {
    Status.ACTIVE: "🟢 Active",
    Status.SUSPENDED: "🟠 Suspended",
    Status.EXPIRED: "⚪ Expired",
    Status.CANCELLED: "🔴 Cancelled",
}


ACTION_ERRORS = (lifecycle.LifecycleError, LookupError, ValueError)


def init_once():
    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    db.init_db()


def money(amount) -> str:
    return f"{float(amount):.2f} {settings.CURRENCY}"


def subscriptions_frame(subs, now: date) -> pd.DataFrame:
    rows = subscriptions.subscription_rows(subs, now)
    if not rows:
        return pd.DataFrame(columns=["id", "client", "plan_type", "price", "start_date", "end_date", "status", "days_left"])
    df = pd.DataFrame(rows)
    df["status"] = df["status"].map(lambda s: STATUS_BADGES[Status(s)])
    return df


def client_label(client) -> str:
    return f"{client.name} ({client.phone}) - ID {client.id}"


def run_action(subscription_id: int, action, now: date, message: str) -> None:
    try:
        result = subscriptions.apply(subscription_id, action, now)
    except ACTION_ERRORS as exc:
        st.error(str(exc))
        return
    if result.persist:
        st.success(message)
        st.rerun()
    else:
        st.info("Nothing to change.")


def dashboard_page(now: date):
    st.header("📊 Dashboard")

    counts = subscriptions.status_counts(now)
    cols = st.columns(len(STATUS_BADGES))
    for col, (status, label) in zip(cols, STATUS_BADGES.items()):
        col.metric(label, counts[status])

    st.divider()

    days = settings.EXPIRING_SOON_DAYS
    st.subheader(f"Expiring soon (next {days} days)")
    soon = subscriptions.expiring_soon(now, days)
    if soon:
        st.dataframe(subscriptions_frame(soon, now), use_container_width=True, hide_index=True)
    else:
        st.caption(f"No subscriptions expiring in the next {days} days.")


def clients_page(now: date):
    st.header("👥 Clients")

    clients = subscriptions.list_clients()
    if clients:
        df = pd.DataFrame([{"id": c.id, "name": c.name, "phone": c.phone, "email": c.email} for c in clients])
        st.dataframe(df, use_container_width=True, hide_index=True)
    else:
        st.caption("No clients yet.")

    st.divider()

    st.subheader("➕ Add client")
    c1, c2, c3 = st.columns(3)
    with c1:
        name = st.text_input("Name")
    with c2:
        phone = st.text_input("Phone")
    with c3:
        email = st.text_input("Email (optional)")
    if st.button("Save client", type="primary"):
        try:
            subscriptions.add_client(name, phone, email)
        except ValueError as exc:
            st.error(str(exc))
        else:
            st.success("Client added.")
            st.rerun()

    if clients:
        st.divider()
        st.subheader("✏️ Edit client")
        by_label = {client_label(c): c for c in clients}
        editing = by_label[st.selectbox("Client", list(by_label.keys()), key="edit_client")]
        e1, e2, e3 = st.columns(3)
        with e1:
            new_name = st.text_input("Name", value=editing.name, key=f"edit_name_{editing.id}")
        with e2:
            new_phone = st.text_input("Phone", value=editing.phone, key=f"edit_phone_{editing.id}")
        with e3:
            new_email = st.text_input("Email (optional)", value=editing.email or "", key=f"edit_email_{editing.id}")
        if st.button("Update client"):
            try:
                subscriptions.update_client(editing.id, name=new_name, phone=new_phone, email=new_email)
            except ACTION_ERRORS as exc:
                st.error(str(exc))
            else:
                st.success("Client updated.")
                st.rerun()

        st.divider()
        st.subheader("Delete client")
        options = {client_label(c): c.id for c in clients}
        chosen = st.selectbox("Client", list(options.keys()), key="delete_client")
        st.caption("The client's subscriptions are kept.")
        confirm = st.checkbox("Confirm delete", value=False, key="del_client_confirm")
        if st.button("Delete client", disabled=not confirm):
            subscriptions.delete_client(options[chosen])
            st.success("Client deleted.")
            st.rerun()


def subscription_form(now: date, existing=None):
    if existing:
        st.subheader(f"✏️ Edit Subscription (ID: {existing.id})")
    else:
        st.subheader("➕ Add Subscription")

    clients = subscriptions.list_clients()
    if not existing and not clients:
        st.info("No clients yet. Add a client first.")
        return

    plans = list(PlanType)
    col1, col2, col3 = st.columns(3)
    with col1:
        if existing:
            st.text_input("Client", value=subscriptions.get_client(existing.client_id).name, disabled=True)
            client_id = existing.client_id
        else:
            options = {client_label(c): c.id for c in clients}
            client_id = options[st.selectbox("Client", list(options.keys()), key="form_client")]
        plan_type = st.selectbox(
            "Plan type",
            options=plans,
            index=(plans.index(existing.plan_type) if existing else 0),
            format_func=lambda p: p.value.capitalize(),
        )
        price = st.text_input("Price", value=(str(existing.price) if existing else "300"))

    with col2:
        start_date = st.date_input("Start date", value=(existing.start_date if existing else now))
        default_end = utils.form_end_date(existing, plan_type, start_date)
        override_end = st.checkbox("Set end date manually", value=False)
        end_date = st.date_input("End date", value=default_end, disabled=not override_end)

    with col3:
        statuses, current = utils.form_status_choices(existing)
        status = st.selectbox(
            "Status",
            options=statuses,
            index=current,
            format_func=lambda s: s.label if s else f"Keep current ({existing.status.label})",
            key=f"form_status_{existing.id if existing else 'new'}",
        )

    shown_end = end_date if override_end else default_end
    errors = utils.validate_subscription_inputs(plan_type, price, start_date.isoformat(), shown_end.isoformat())
    for e in errors:
        st.error(e)

    if not st.button("Save", type="primary", disabled=bool(errors)):
        return

    if existing:
        action = lifecycle.Edit(
            price=price,
            plan_type=plan_type,
            start_date=start_date,
            end_date=(end_date if override_end else None),
            status=status,
        )
        run_action(existing.id, action, now, "Subscription updated.")
    else:
        try:
            subscriptions.create(
                client_id, plan_type, price, start_date, now,
                status=status, end_date=(end_date if override_end else None),
            )
        except ACTION_ERRORS as exc:
            st.error(str(exc))
            return
        st.success("Subscription added.")
        st.rerun()


def subscriptions_page(now: date):
    st.header("🧾 Subscriptions")

    with st.sidebar:
        st.subheader("Filters")
        status_filter = st.selectbox(
            "Status", ["All"] + list(Status), format_func=lambda s: s if s == "All" else s.label, key="status_filter"
        )
        clients = subscriptions.list_clients()
        client_options = {"All": None}
        client_options.update({client_label(c): c.id for c in clients})
        client_filter = st.selectbox("Client", list(client_options.keys()), key="client_filter")

    subs = subscriptions.list_subscriptions(
        now,
        status=(None if status_filter == "All" else status_filter),
        client_id=client_options[client_filter],
    )
    st.dataframe(subscriptions_frame(subs, now), use_container_width=True, hide_index=True)

    st.divider()

    colA, colB = st.columns([1, 2])
    with colA:
        st.subheader("Select subscription")
        selected_id = st.selectbox("Subscription ID", options=["(none)"] + [str(s.id) for s in subs])

    with colB:
        if selected_id != "(none)":
            sub = subscriptions.load(int(selected_id))
            shown = lifecycle.display_status(sub, now)
            st.write(
                f"Plan: **{sub.plan_type.value}** | Price: **{money(sub.price)}** | "
                f"End: **{sub.end_date.isoformat()}** | Status: **{STATUS_BADGES[shown]}**"
            )
            if shown != Status.CANCELLED and lifecycle.days_left(sub, now) <= settings.RENEWABLE_WITHIN_DAYS:
                st.info("Due for renewal. Use the Renewals page.")

            c1, c2, c3, c4, c5 = st.columns(5)
            with c1:
                if st.button("Activate"):
                    run_action(sub.id, lifecycle.Activate(), now, "Subscription activated.")
            with c2:
                if st.button("Suspend"):
                    run_action(sub.id, lifecycle.Suspend(), now, "Subscription suspended.")
            with c3:
                if st.button("Cancel subscription"):
                    run_action(sub.id, lifecycle.Cancel(), now, "Subscription cancelled.")
            with c4:
                if st.button("Edit"):
                    st.session_state.edit_subscription_id = sub.id
                    st.rerun()
            with c5:
                delete_confirm = st.checkbox("Confirm delete", value=False, key="del_confirm")
                if st.button("Delete", type="secondary", disabled=not delete_confirm):
                    subscriptions.delete(sub.id, now)
                    st.success("Subscription deleted.")
                    st.rerun()

    st.divider()

    if st.session_state.get("edit_subscription_id"):
        try:
            existing = subscriptions.load(st.session_state.edit_subscription_id)
        except subscriptions.SubscriptionNotFound:
            existing = None
        if existing:
            if existing.status == Status.CANCELLED:
                st.warning("This subscription is cancelled. Changing its status reopens it.")
            subscription_form(now, existing=existing)
        if st.button("Cancel edit"):
            st.session_state.edit_subscription_id = None
            st.rerun()
    else:
        subscription_form(now)


def renewals_page(now: date):
    st.header("🔁 Renewals (One-click)")

    subs = [s for s in subscriptions.list_subscriptions(now) if s.status != Status.CANCELLED]
    if not subs:
        st.info("No renewable subscriptions.")
        return

    names = {c.id: c.name for c in subscriptions.list_clients()}
    options = {f"#{s.id} {names.get(s.client_id, '?')} - ends {s.end_date.isoformat()}": s.id for s in subs}
    chosen_label = st.selectbox("Subscription", list(options.keys()))
    sub = subscriptions.load(options[chosen_label])

    st.write(
        f"Current plan: **{sub.plan_type.value}** | Price: **{money(sub.price)}** | "
        f"End: **{sub.end_date.isoformat()}** | Status: **{STATUS_BADGES[lifecycle.display_status(sub, now)]}**"
    )

    plans = list(PlanType)
    col1, col2 = st.columns(2)
    with col1:
        plan_type = st.selectbox(
            "New plan type", options=plans, index=plans.index(sub.plan_type), format_func=lambda p: p.value.capitalize()
        )
    with col2:
        plan_price = st.text_input("New plan price", value=str(sub.price))

    action = lifecycle.Renew(plan_type=plan_type, price=plan_price)
    try:
        preview = lifecycle.transition(sub, action, now).subscription
    except ACTION_ERRORS as exc:
        st.error(str(exc))
        return
    st.info(f"New period: **{preview.start_date.isoformat()}** to **{preview.end_date.isoformat()}**")

    if st.button("Renew", type="primary"):
        run_action(sub.id, action, now, "Renewal completed.")


def reports_page(now: date):
    st.header("📑 Reports")

    st.subheader("Export subscriptions to CSV")
    rows = subscriptions.subscription_rows(subscriptions.list_subscriptions(now), now)
    if rows:
        st.download_button(
            "Download subscriptions.csv",
            data=utils.subscriptions_to_csv_bytes(rows),
            file_name="subscriptions.csv",
            mime="text/csv",
        )
    else:
        st.caption("No subscriptions to export.")

    st.divider()

    st.subheader("Export payments to CSV")
    payments = subscriptions.list_payments()
    if payments:
        st.download_button(
            "Download payments.csv",
            data=utils.payments_to_csv_bytes(payments),
            file_name="payments.csv",
            mime="text/csv",
        )
    else:
        st.caption("No payments to export.")

    st.divider()

    st.subheader("Net revenue by month")
    st.dataframe(utils.revenue_summary_by_month(), use_container_width=True, hide_index=True)

    st.divider()

    st.subheader("Activity log")
    subject = st.selectbox("Show", ["All", "subscription", "client"], key="activity_subject")
    entries = subscriptions.list_activity(None if subject == "All" else subject)
    if entries:
        st.dataframe(pd.DataFrame(subscriptions.activity_rows(entries)), use_container_width=True, hide_index=True)
    else:
        st.caption("No activity yet.")


def settings_page(now: date):
    st.header("⚙️ Settings")

    st.write(f"Database: `{db.DB_FILE}`")
    st.write(f"Expiring-soon window: **{settings.EXPIRING_SOON_DAYS} days**")

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert 3 sample clients with subscriptions for testing (adds new rows each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data(now)
        st.success("Sample data inserted.")
        st.rerun()


PAGES = {
    "Dashboard": dashboard_page,
    "Clients": clients_page,
    "Subscriptions": subscriptions_page,
    "Renewals": renewals_page,
    "Reports": reports_page,
    "Settings": settings_page,
}


def main_app(now: date):
    st.sidebar.title("🗂️ Abonnements")
    st.sidebar.caption(f"Today: {now.isoformat()}")

    pages = list(PAGES)
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    PAGES[st.session_state.page](now)


# --------- App entry ---------

def run():
    init_once()
    main_app(utils.today())


if __name__ == "__main__":
    run()
