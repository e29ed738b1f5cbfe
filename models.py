"""
models.py
Domain types: plan types, statuses and the record dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum


class PlanType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"

    @property
    def months(self) -> int:
        return PLAN_MONTHS[self]

    @classmethod
    def parse(cls, value) -> "PlanType":
        """
        Accept a member, its value, its name or one of the labels written by
        the older screens ("Mensuel", "Trimestriel", ...). Case-insensitive.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        if key not in _PLAN_ALIASES:
            raise ValueError(f"Unknown plan type: {value!r}")
        return _PLAN_ALIASES[key]


class Status(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value) -> "Status":
        """Same rules as PlanType.parse ("Suspendu", "Expiré", "Annulé", ...)."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        if key not in _STATUS_ALIASES:
            raise ValueError(f"Unknown subscription status: {value!r}")
        return _STATUS_ALIASES[key]


# Plan durations in months (used for end_date auto-calculation)
PLAN_MONTHS = {
    PlanType.MONTHLY: 1,
    PlanType.QUARTERLY: 3,
    PlanType.SEMIANNUAL: 6,
    PlanType.ANNUAL: 12,
}

_PLAN_ALIASES = {
    "monthly": PlanType.MONTHLY,
    "mensuel": PlanType.MONTHLY,
    "quarterly": PlanType.QUARTERLY,
    "trimestriel": PlanType.QUARTERLY,
    "semiannual": PlanType.SEMIANNUAL,
    "semestriel": PlanType.SEMIANNUAL,
    "annual": PlanType.ANNUAL,
    "annuel": PlanType.ANNUAL,
}

_STATUS_ALIASES = {
    "active": Status.ACTIVE,
    "actif": Status.ACTIVE,
    "suspended": Status.SUSPENDED,
    "suspendu": Status.SUSPENDED,
    "expired": Status.EXPIRED,
    "expiré": Status.EXPIRED,
    "expire": Status.EXPIRED,
    "cancelled": Status.CANCELLED,
    "canceled": Status.CANCELLED,
    "annulé": Status.CANCELLED,
    "annule": Status.CANCELLED,
}

# Statuses a subscription may be created with
INITIAL_STATUSES = (Status.ACTIVE, Status.SUSPENDED)


@dataclass(frozen=True)
class Subscription:
    id: int | None
    client_id: int
    plan_type: PlanType
    price: Decimal
    start_date: date
    end_date: date
    status: Status
    employee_id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Client:
    id: int | None
    name: str
    phone: str
    email: str | None
    employee_id: int | None
    created_at: str | None = None


@dataclass(frozen=True)
class Payment:
    id: int | None
    subscription_id: int | None
    client_id: int
    amount: Decimal
    kind: str  # 'payment' or 'refund'
    date: str
    description: str | None


@dataclass(frozen=True)
class Activity:
    id: int | None
    subject_type: str  # 'subscription' or 'client'
    subject_id: int
    event: str  # 'created', 'updated' or 'deleted'
    description: str
    properties: dict
    created_at: str
