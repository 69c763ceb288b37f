"""Organization-wide session tier schedule used by the monthly commission report."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from ptdesk.core.commission import (
    HUNDRED,
    METHOD_FLAT,
    METHOD_GRADUATED,
    METHOD_PROGRESSIVE,
    CommissionError,
    quantize_money,
)


@dataclass(frozen=True)
class SessionTier:
    min_sessions: int
    max_sessions: Optional[int]
    percentage: Decimal

    @property
    def label(self) -> str:
        upper = self.max_sessions if self.max_sessions is not None else "+"
        return f"{self.min_sessions}-{upper} sessions ({self.percentage}%)"


DEFAULT_SESSION_TIERS: tuple[SessionTier, ...] = (
    SessionTier(0, 30, Decimal("25")),
    SessionTier(31, 60, Decimal("30")),
    SessionTier(61, None, Decimal("35")),
)


@dataclass
class AppliedTier:
    tier: SessionTier
    sessions: int
    value: Decimal
    commission: Decimal


@dataclass
class ScheduleOutcome:
    method: str
    session_count: int
    total_value: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    tier_achieved: Optional[SessionTier] = None
    tiers_applied: List[AppliedTier] = field(default_factory=list)


def _sorted(tiers: Sequence[SessionTier]) -> List[SessionTier]:
    if not tiers:
        return list(DEFAULT_SESSION_TIERS)
    return sorted(tiers, key=lambda tier: tier.min_sessions)


def progressive(values: Sequence[Decimal], tiers: Sequence[SessionTier]) -> ScheduleOutcome:
    """The tier reached by the session count applies to the whole month's value."""

    ordered = _sorted(tiers)
    count = len(values)
    total = sum(values, Decimal("0"))
    achieved = ordered[0]
    for tier in ordered:
        if count >= tier.min_sessions:
            achieved = tier
    amount = quantize_money(total * achieved.percentage / HUNDRED)
    return ScheduleOutcome(
        method=METHOD_PROGRESSIVE,
        session_count=count,
        total_value=total,
        commission_rate=achieved.percentage,
        commission_amount=amount,
        tier_achieved=achieved,
    )


def graduated(values: Sequence[Decimal], tiers: Sequence[SessionTier]) -> ScheduleOutcome:
    """Session number k (1-based, in date order) is priced by the tier covering k."""

    ordered = _sorted(tiers)
    count = len(values)
    applied: List[AppliedTier] = []
    total_value = Decimal("0")
    total_commission = Decimal("0")

    for tier in ordered:
        lower = max(tier.min_sessions, 1)
        upper = count if tier.max_sessions is None else min(tier.max_sessions, count)
        if upper < lower:
            continue
        bracket = values[lower - 1:upper]
        value = sum(bracket, Decimal("0"))
        commission = value * tier.percentage / HUNDRED
        applied.append(AppliedTier(tier=tier, sessions=len(bracket), value=value, commission=quantize_money(commission)))
        total_value += value
        total_commission += commission

    rate = (total_commission / total_value * HUNDRED) if total_value > 0 else Decimal("0")
    return ScheduleOutcome(
        method=METHOD_GRADUATED,
        session_count=count,
        total_value=sum(values, Decimal("0")),
        commission_rate=rate.quantize(Decimal("0.01")),
        commission_amount=quantize_money(total_commission),
        tiers_applied=applied,
    )


def flat(values: Sequence[Decimal], rate: Optional[Decimal]) -> ScheduleOutcome:
    total = sum(values, Decimal("0"))
    percentage = Decimal(rate) if rate is not None else Decimal("0")
    return ScheduleOutcome(
        method=METHOD_FLAT,
        session_count=len(values),
        total_value=total,
        commission_rate=percentage,
        commission_amount=quantize_money(total * percentage / HUNDRED),
    )


def evaluate(
    method: str,
    values: Sequence[Decimal],
    tiers: Sequence[SessionTier],
    flat_rate: Optional[Decimal] = None,
) -> ScheduleOutcome:
    """Price a month of session values under the organization's method."""

    values = [Decimal(value) for value in values]
    if not values:
        return ScheduleOutcome(
            method=method,
            session_count=0,
            total_value=Decimal("0"),
            commission_rate=Decimal("0"),
            commission_amount=Decimal("0.00"),
        )
    if method == METHOD_PROGRESSIVE:
        return progressive(values, tiers)
    if method == METHOD_GRADUATED:
        return graduated(values, tiers)
    if method == METHOD_FLAT:
        return flat(values, flat_rate)
    raise CommissionError(f"Unknown calculation method: {method}")


__all__ = [
    "DEFAULT_SESSION_TIERS",
    "AppliedTier",
    "ScheduleOutcome",
    "SessionTier",
    "evaluate",
    "flat",
    "graduated",
    "progressive",
]
