"""Package payment, expiry and client state helpers."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

AT_RISK_DAYS_AHEAD = 14
PAYMENT_TOLERANCE = Decimal("0.01")

PACKAGE_ACTIVE = "active"
PACKAGE_COMPLETED = "completed"
PACKAGE_EXPIRED = "expired"
PACKAGE_EXPIRING_SOON = "expiring_soon"

CLIENT_ACTIVE = "active"
CLIENT_NOT_STARTED = "not_started"
CLIENT_AT_RISK = "at_risk"
CLIENT_LOST = "lost"
CLIENT_NEW = "new"
CLIENT_STATES = (CLIENT_ACTIVE, CLIENT_NOT_STARTED, CLIENT_AT_RISK, CLIENT_LOST, CLIENT_NEW)


@dataclass
class PaymentSummary:
    total_value: Decimal
    paid_amount: Decimal
    remaining_balance: Decimal
    total_sessions: int
    unlocked_sessions: int
    used_sessions: int
    available_sessions: int
    is_fully_paid: bool
    payment_progress: Decimal

    def as_dict(self) -> dict[str, object]:
        return {
            "total_value": float(self.total_value),
            "paid_amount": float(self.paid_amount),
            "remaining_balance": float(self.remaining_balance),
            "total_sessions": self.total_sessions,
            "unlocked_sessions": self.unlocked_sessions,
            "used_sessions": self.used_sessions,
            "available_sessions": self.available_sessions,
            "is_fully_paid": self.is_fully_paid,
            "payment_progress": float(self.payment_progress),
        }


@dataclass
class PackageSnapshot:
    """The fields status checks need, detached from the ORM row."""

    remaining_sessions: int
    expires_at: Optional[datetime]
    session_count: int = 0


def calculate_unlocked_sessions(paid_amount: Decimal, total_value: Decimal, total_sessions: int) -> int:
    """Sessions unlocked so far: floor(paid / total_value * total_sessions)."""

    if total_value <= 0 or paid_amount >= total_value:
        return total_sessions
    return math.floor(Decimal(paid_amount) * total_sessions / Decimal(total_value))


def sessions_unlocked_by_payment(
    current_paid: Decimal,
    payment_amount: Decimal,
    total_value: Decimal,
    total_sessions: int,
) -> int:
    before = calculate_unlocked_sessions(current_paid, total_value, total_sessions)
    after = calculate_unlocked_sessions(current_paid + payment_amount, total_value, total_sessions)
    return after - before


def build_payment_summary(
    total_value: Decimal,
    total_sessions: int,
    payment_amounts: Iterable[Decimal],
    used_sessions: int,
) -> PaymentSummary:
    total_value = Decimal(total_value)
    paid = sum((Decimal(amount) for amount in payment_amounts), Decimal("0"))
    unlocked = calculate_unlocked_sessions(paid, total_value, total_sessions)
    if total_value > 0:
        progress = min(Decimal("100"), paid / total_value * Decimal("100"))
    else:
        progress = Decimal("100")
    return PaymentSummary(
        total_value=total_value,
        paid_amount=paid,
        remaining_balance=max(Decimal("0"), total_value - paid),
        total_sessions=total_sessions,
        unlocked_sessions=unlocked,
        used_sessions=used_sessions,
        available_sessions=max(0, unlocked - used_sessions),
        is_fully_paid=paid >= total_value,
        payment_progress=progress.quantize(Decimal("0.01")),
    )


def can_log_session(summary: PaymentSummary) -> tuple[bool, str | None]:
    """Return (allowed, reason) for logging one more session against a package."""

    if summary.available_sessions > 0:
        return True, None
    if summary.is_fully_paid:
        return False, "All sessions have been used"
    return False, (
        "Payment required to unlock more sessions. "
        f"Current: {summary.unlocked_sessions}/{summary.total_sessions} unlocked "
        f"({summary.used_sessions} used). Payment of ${summary.remaining_balance:.2f} "
        "needed to unlock remaining sessions."
    )


def calculate_expiry_date(start: date | datetime, duration_value: int, duration_unit: str) -> datetime:
    """Add a duration to ``start``; month steps clamp to the last day of the month."""

    if not isinstance(start, datetime):
        start = datetime.combine(start, datetime.min.time())
    unit = duration_unit.upper()
    if unit == "DAYS":
        return start + timedelta(days=duration_value)
    if unit == "WEEKS":
        return start + timedelta(weeks=duration_value)
    if unit == "MONTHS":
        return start + relativedelta(months=duration_value)
    raise ValueError(f"Unsupported duration unit: {duration_unit}")


def format_duration(value: int, unit: str) -> str:
    labels = {"DAYS": ("day", "days"), "WEEKS": ("week", "weeks"), "MONTHS": ("month", "months")}
    singular, plural = labels[unit.upper()]
    return f"{value} {singular if value == 1 else plural}"


def is_package_expired(package: PackageSnapshot, now: datetime | None = None) -> bool:
    now = now or datetime.now()
    return package.expires_at is not None and package.expires_at < now


def is_package_active(package: PackageSnapshot, now: datetime | None = None) -> bool:
    now = now or datetime.now()
    not_expired = package.expires_at is None or package.expires_at > now
    return package.remaining_sessions > 0 and not_expired


def is_package_expiring_soon(
    package: PackageSnapshot,
    days_ahead: int = AT_RISK_DAYS_AHEAD,
    now: datetime | None = None,
) -> bool:
    now = now or datetime.now()
    if package.expires_at is None or package.remaining_sessions == 0:
        return False
    return now < package.expires_at <= now + timedelta(days=days_ahead)


def package_status(package: PackageSnapshot, now: datetime | None = None) -> str:
    if is_package_expired(package, now):
        return PACKAGE_EXPIRED
    if package.remaining_sessions == 0:
        return PACKAGE_COMPLETED
    if is_package_expiring_soon(package, now=now):
        return PACKAGE_EXPIRING_SOON
    if is_package_active(package, now):
        return PACKAGE_ACTIVE
    return PACKAGE_COMPLETED


def client_state(packages: Iterable[PackageSnapshot], now: datetime | None = None) -> str:
    """Derive a client's state from their packages.

    Priority: at_risk, not_started, active. Clients without any active
    package are lost; clients without packages are new.
    """
    packages = list(packages)
    if not packages:
        return CLIENT_NEW

    active = [package for package in packages if is_package_active(package, now)]
    if not active:
        return CLIENT_LOST
    if any(is_package_expiring_soon(package, now=now) for package in active):
        return CLIENT_AT_RISK
    if not any(package.session_count > 0 for package in active):
        return CLIENT_NOT_STARTED
    return CLIENT_ACTIVE
