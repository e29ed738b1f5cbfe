"""
lifecycle.py
Subscription lifecycle: plan durations, expiration and status transitions.

Everything here is a pure function of its arguments. The current date is
always passed in as `now`; nothing reads the clock, the database or settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation

from models import INITIAL_STATUSES, PlanType, Status, Subscription

logger = logging.getLogger(__name__)


class LifecycleError(Exception):
    """Base class for rejected lifecycle operations. The record is left unchanged."""


class InvalidPlanType(LifecycleError, ValueError):
    def __init__(self, value):
        super().__init__(f"Unknown plan type: {value!r}")
        self.value = value


class InvalidDateRange(LifecycleError, ValueError):
    def __init__(self, start_date: date, end_date: date):
        super().__init__(f"End date {end_date.isoformat()} is before start date {start_date.isoformat()}.")
        self.start_date = start_date
        self.end_date = end_date


class InvalidPrice(LifecycleError, ValueError):
    def __init__(self, value):
        super().__init__(f"Price must be a non-negative amount, got {value!r}.")
        self.value = value


class InvalidStatus(LifecycleError, ValueError):
    def __init__(self, value):
        super().__init__(f"Unknown subscription status: {value!r}")
        self.value = value


class IllegalTransition(LifecycleError):
    def __init__(self, status: Status, action, reason: str):
        name = action if isinstance(action, str) else type(action).__name__
        super().__init__(f"Cannot {name} a {status.value} subscription: {reason}")
        self.status = status
        self.action = action


# ---------- Actions ----------

@dataclass(frozen=True)
class Activate:
    pass


@dataclass(frozen=True)
class Suspend:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class SetStatus:
    status: Status


@dataclass(frozen=True)
class Edit:
    # None means "not supplied by the form"
    price: Decimal | None = None
    plan_type: PlanType | str | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: Status | str | None = None


@dataclass(frozen=True)
class Renew:
    plan_type: PlanType | str | None = None
    price: Decimal | None = None
    start_date: date | None = None


@dataclass(frozen=True)
class TransitionResult:
    subscription: Subscription
    persist: bool


# ---------- Duration math ----------

def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    # last day of target month
    if m == 12:
        next_month = date(y + 1, 1, 1)
    else:
        next_month = date(y, m + 1, 1)
    last_day = next_month - timedelta(days=1)
    day = min(start.day, last_day.day)
    return date(y, m, day)


def coerce_plan_type(value) -> PlanType:
    try:
        return PlanType.parse(value)
    except ValueError:
        raise InvalidPlanType(value) from None


def coerce_status(value) -> Status:
    try:
        return Status.parse(value)
    except ValueError:
        raise InvalidStatus(value) from None


def coerce_price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise InvalidPrice(value) from None
    if not price.is_finite() or price < 0:
        raise InvalidPrice(value)
    return price


def compute_end_date(start_date: date, plan_type) -> date:
    return add_months(as_date(start_date), coerce_plan_type(plan_type).months)


# ---------- Expiration ----------

def as_date(value) -> date:
    # datetime is a date subclass but does not compare with one
    if isinstance(value, datetime):
        return value.date()
    return value


def is_expired(subscription: Subscription, now) -> bool:
    """
    True when the end date has passed. Cancelled subscriptions never expire.
    A subscription is still valid on its end date.
    """
    if subscription.status == Status.CANCELLED:
        return False
    return subscription.end_date < as_date(now)


def display_status(subscription: Subscription, now) -> Status:
    if is_expired(subscription, now):
        return Status.EXPIRED
    return subscription.status


def days_left(subscription: Subscription, now) -> int:
    return (subscription.end_date - as_date(now)).days


def is_expiring_soon(subscription: Subscription, now, days: int) -> bool:
    if display_status(subscription, now) != Status.ACTIVE:
        return False
    return 0 <= days_left(subscription, now) <= days


# ---------- Creation ----------

def new_subscription(
    client_id: int,
    plan_type,
    price,
    start_date: date,
    *,
    status=Status.ACTIVE,
    end_date: date | None = None,
    employee_id: int | None = None,
) -> Subscription:
    plan = coerce_plan_type(plan_type)
    amount = coerce_price(price)
    initial = coerce_status(status)
    if initial not in INITIAL_STATUSES:
        raise IllegalTransition(initial, "create", "new subscriptions start active or suspended")
    start = as_date(start_date)
    end = as_date(end_date) if end_date is not None else compute_end_date(start, plan)
    if end < start:
        raise InvalidDateRange(start, end)
    return Subscription(
        id=None,
        client_id=client_id,
        plan_type=plan,
        price=amount,
        start_date=start,
        end_date=end,
        status=initial,
        employee_id=employee_id,
    )


# ---------- Transitions ----------

def _renewed(subscription: Subscription, start: date, plan: PlanType, price: Decimal) -> Subscription:
    end = compute_end_date(start, plan)
    logger.info(
        "Renewing subscription %s (%s) from %s to %s",
        subscription.id, plan.value, start.isoformat(), end.isoformat(),
    )
    return replace(
        subscription,
        plan_type=plan,
        price=price,
        start_date=start,
        end_date=end,
        status=Status.ACTIVE,
    )


def _activate(subscription: Subscription, action, today: date) -> Subscription:
    if subscription.status == Status.CANCELLED:
        raise IllegalTransition(subscription.status, action, "cancelled subscriptions can only be changed by an edit")
    if is_expired(subscription, today):
        return _renewed(subscription, today, subscription.plan_type, subscription.price)
    return replace(subscription, status=Status.ACTIVE)


def _suspend(subscription: Subscription, action) -> Subscription:
    if subscription.status == Status.CANCELLED:
        raise IllegalTransition(subscription.status, action, "cancelled subscriptions can only be changed by an edit")
    return replace(subscription, status=Status.SUSPENDED)


def _renew(subscription: Subscription, action: Renew, today: date) -> Subscription:
    if subscription.status == Status.CANCELLED:
        raise IllegalTransition(subscription.status, action, "cancelled subscriptions cannot be renewed")
    plan = coerce_plan_type(action.plan_type) if action.plan_type is not None else subscription.plan_type
    price = coerce_price(action.price) if action.price is not None else subscription.price
    if action.start_date is not None:
        start = as_date(action.start_date)
    elif is_expired(subscription, today):
        start = today
    else:
        # back-to-back: the new period starts the day after the current one ends
        start = subscription.end_date + timedelta(days=1)
    return _renewed(subscription, start, plan, price)


def _edit(subscription: Subscription, action: Edit, allow_cancelled_edits: bool) -> Subscription:
    if subscription.status == Status.CANCELLED:
        if not allow_cancelled_edits:
            raise IllegalTransition(subscription.status, action, "edits on cancelled subscriptions are disabled")
        logger.warning("Editing cancelled subscription %s", subscription.id)

    # validate everything before touching dates
    plan = coerce_plan_type(action.plan_type) if action.plan_type is not None else subscription.plan_type
    price = coerce_price(action.price) if action.price is not None else subscription.price
    status = coerce_status(action.status) if action.status is not None else subscription.status
    if action.status is not None and status == Status.EXPIRED:
        raise IllegalTransition(subscription.status, action, "expired is derived from the end date")

    start = as_date(action.start_date) if action.start_date is not None else subscription.start_date
    if action.end_date is not None:
        end = as_date(action.end_date)
    elif plan != subscription.plan_type or start != subscription.start_date:
        end = compute_end_date(start, plan)
    else:
        end = subscription.end_date
    if end < start:
        raise InvalidDateRange(start, end)

    return replace(
        subscription,
        plan_type=plan,
        price=price,
        start_date=start,
        end_date=end,
        status=status,
    )


def transition(subscription: Subscription, action, now, *, allow_cancelled_edits: bool = True) -> TransitionResult:
    """
    Apply a user action to a subscription.

    Returns the new record and whether it differs from the input (the caller
    persists it when `persist` is true). Raises a LifecycleError subclass when
    the action is rejected; the input record is never modified.

    - Activate: status -> active. An expired record is renewed from `now`.
    - Suspend: status -> suspended, dates untouched.
    - Cancel: status -> cancelled, dates untouched. Idempotent.
    - SetStatus: dispatches to Activate/Suspend/Cancel.
    - Edit: field updates; end date follows plan/start changes unless given.
    - Renew: explicit renewal, optionally with a new plan and price.
    """
    today = as_date(now)

    if isinstance(action, SetStatus):
        target = coerce_status(action.status)
        if target == Status.EXPIRED:
            raise IllegalTransition(subscription.status, action, "expired is derived from the end date")
        action = {Status.ACTIVE: Activate(), Status.SUSPENDED: Suspend(), Status.CANCELLED: Cancel()}[target]

    if isinstance(action, Activate):
        updated = _activate(subscription, action, today)
    elif isinstance(action, Suspend):
        updated = _suspend(subscription, action)
    elif isinstance(action, Cancel):
        updated = replace(subscription, status=Status.CANCELLED)
    elif isinstance(action, Edit):
        updated = _edit(subscription, action, allow_cancelled_edits)
    elif isinstance(action, Renew):
        updated = _renew(subscription, action, today)
    else:
        raise TypeError(f"Unsupported action: {action!r}")

    return TransitionResult(subscription=updated, persist=updated != subscription)
