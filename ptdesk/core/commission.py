"""Tiered commission rules shared by the web app, the service layer and the CLI.

Everything here works on plain rows that have already been loaded from the
database, so the functions can be exercised without a session.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional, Sequence

MONEY_QUANT = Decimal("0.01")
HUNDRED = Decimal("100")

METHOD_PROGRESSIVE = "PROGRESSIVE"
METHOD_GRADUATED = "GRADUATED"
METHOD_FLAT = "FLAT"

TRIGGER_NONE = "NONE"
TRIGGER_SESSION_COUNT = "SESSION_COUNT"
TRIGGER_SALES_VOLUME = "SALES_VOLUME"
TRIGGER_EITHER_OR = "EITHER_OR"
TRIGGER_BOTH_AND = "BOTH_AND"


class CommissionError(ValueError):
    """Raised when a commission profile cannot be evaluated."""


@dataclass
class TierRule:
    """Thresholds and rewards for one tier of a commission profile."""

    tier_level: int
    name: str = ""
    session_threshold: Optional[int] = None
    sales_threshold: Optional[Decimal] = None
    session_commission_percent: Optional[Decimal] = None
    session_flat_fee: Optional[Decimal] = None
    sales_commission_percent: Optional[Decimal] = None
    sales_flat_fee: Optional[Decimal] = None
    tier_bonus: Optional[Decimal] = None

    @property
    def label(self) -> str:
        return self.name or f"Tier {self.tier_level}"


@dataclass
class ProfileRules:
    calculation_method: str
    trigger_type: str
    tiers: List[TierRule] = field(default_factory=list)

    def sorted_tiers(self) -> List[TierRule]:
        return sorted(self.tiers, key=lambda tier: tier.tier_level)


@dataclass
class SessionRow:
    session_date: datetime
    session_value: Decimal


@dataclass
class SaleRow:
    """Payment amount credited to the trainer for sales commission."""

    payment_id: int
    payment_date: datetime
    amount: Decimal


@dataclass
class CommissionResult:
    session_commission: Decimal
    sales_commission: Decimal
    tier_bonus: Decimal
    total_commission: Decimal
    tier_reached: int
    session_count: int
    sales_count: int
    sales_volume: Decimal
    snapshot: dict[str, Any] = field(default_factory=dict)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _is_set(value: Optional[Decimal | int]) -> bool:
    """Unset and zero thresholds/rates count as absent."""
    return value is not None and value != 0


def _number(value: Optional[Decimal | int]) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def total_session_value(sessions: Iterable[SessionRow]) -> Decimal:
    return sum((Decimal(row.session_value) for row in sessions), Decimal("0"))


def total_sales_value(sales: Iterable[SaleRow]) -> Decimal:
    return sum((Decimal(row.amount) for row in sales), Decimal("0"))


def tier_triggered(
    trigger_type: str,
    tier: TierRule,
    session_count: int,
    sales_volume: Decimal,
) -> bool:
    """Return True when ``tier`` is reached under ``trigger_type``."""

    if trigger_type == TRIGGER_NONE:
        return True
    if trigger_type == TRIGGER_SESSION_COUNT:
        return session_count >= (tier.session_threshold or 0)
    if trigger_type == TRIGGER_SALES_VOLUME:
        return sales_volume >= (tier.sales_threshold or Decimal("0"))
    if trigger_type == TRIGGER_EITHER_OR:
        meets_session = _is_set(tier.session_threshold) and session_count >= tier.session_threshold
        meets_sales = _is_set(tier.sales_threshold) and sales_volume >= tier.sales_threshold
        return meets_session or meets_sales
    if trigger_type == TRIGGER_BOTH_AND:
        needs_session = not _is_set(tier.session_threshold) or session_count >= tier.session_threshold
        needs_sales = not _is_set(tier.sales_threshold) or sales_volume >= tier.sales_threshold
        return needs_session and needs_sales
    return False


def base_tier(rules: ProfileRules) -> TierRule:
    """Tier level 1, or the lowest tier present."""

    if not rules.tiers:
        raise CommissionError("Commission profile has no tiers configured.")
    for tier in rules.tiers:
        if tier.tier_level == 1:
            return tier
    return rules.sorted_tiers()[0]


def determine_current_tier(rules: ProfileRules, session_count: int, sales_volume: Decimal) -> TierRule:
    """Return the highest tier whose trigger is met, falling back to the base tier."""

    fallback = base_tier(rules)
    for tier in reversed(rules.sorted_tiers()):
        if tier_triggered(rules.trigger_type, tier, session_count, sales_volume):
            return tier
    return fallback


def session_commission_for(tier: TierRule, sessions: Sequence[SessionRow]) -> Decimal:
    """Flat fee per session takes precedence over a percentage of session value."""

    if _is_set(tier.session_flat_fee):
        return Decimal(len(sessions)) * Decimal(tier.session_flat_fee)
    if _is_set(tier.session_commission_percent):
        return total_session_value(sessions) * Decimal(tier.session_commission_percent) / HUNDRED
    return Decimal("0")


def sales_commission_for(tier: TierRule, sales: Sequence[SaleRow]) -> Decimal:
    if _is_set(tier.sales_flat_fee):
        return Decimal(len(sales)) * Decimal(tier.sales_flat_fee)
    if _is_set(tier.sales_commission_percent):
        return total_sales_value(sales) * Decimal(tier.sales_commission_percent) / HUNDRED
    return Decimal("0")


def _rates(tier: TierRule, include_sales: bool = True, include_bonus: bool = True) -> dict[str, Optional[float]]:
    rates = {
        "session_flat_fee": _number(tier.session_flat_fee),
        "session_commission_percent": _number(tier.session_commission_percent),
    }
    if include_sales:
        rates["sales_flat_fee"] = _number(tier.sales_flat_fee)
        rates["sales_commission_percent"] = _number(tier.sales_commission_percent)
    if include_bonus:
        rates["tier_bonus"] = _number(tier.tier_bonus)
    return rates


def _result(
    session_commission: Decimal,
    sales_commission: Decimal,
    tier_bonus: Decimal,
    tier_reached: int,
    sessions: Sequence[SessionRow],
    sales: Sequence[SaleRow],
    snapshot: dict[str, Any],
) -> CommissionResult:
    session_commission = quantize_money(session_commission)
    sales_commission = quantize_money(sales_commission)
    tier_bonus = quantize_money(tier_bonus)
    return CommissionResult(
        session_commission=session_commission,
        sales_commission=sales_commission,
        tier_bonus=tier_bonus,
        total_commission=session_commission + sales_commission + tier_bonus,
        tier_reached=tier_reached,
        session_count=len(sessions),
        sales_count=len(sales),
        sales_volume=quantize_money(total_sales_value(sales)),
        snapshot=snapshot,
    )


def calculate_progressive(
    rules: ProfileRules,
    sessions: Sequence[SessionRow],
    sales: Sequence[SaleRow],
) -> CommissionResult:
    """The highest tier reached prices every session and sale of the period."""

    tier = determine_current_tier(rules, len(sessions), total_sales_value(sales))
    bonus = Decimal(tier.tier_bonus) if tier.tier_bonus else Decimal("0")
    snapshot = {
        "method": METHOD_PROGRESSIVE,
        "trigger_type": rules.trigger_type,
        "tier_used": tier.label,
        "tier_level": tier.tier_level,
        "session_count": len(sessions),
        "sales_count": len(sales),
        "sales_volume": float(total_sales_value(sales)),
        "rates": _rates(tier),
    }
    return _result(
        session_commission_for(tier, sessions),
        sales_commission_for(tier, sales),
        bonus,
        tier.tier_level,
        sessions,
        sales,
        snapshot,
    )


def graduated_brackets(rules: ProfileRules, session_count: int) -> List[tuple[TierRule, int, int]]:
    """Split ``session_count`` sessions into ``(tier, offset, count)`` brackets.

    A tier covers the sessions from its threshold up to the next tier's
    threshold (open-ended when that is unset or 0). Brackets are consumed in
    date order from a running offset, so each session is priced exactly once.
    """

    tiers = rules.sorted_tiers()
    brackets: List[tuple[TierRule, int, int]] = []
    offset = 0
    for index, tier in enumerate(tiers):
        remaining = session_count - offset
        if remaining <= 0:
            break
        start = tier.session_threshold or 0
        next_tier = tiers[index + 1] if index + 1 < len(tiers) else None
        end = next_tier.session_threshold if next_tier is not None and next_tier.session_threshold else None
        count = max(0, session_count - start)
        if end is not None:
            count = min(count, max(0, end - start))
        count = min(count, remaining)
        brackets.append((tier, offset, count))
        offset += count
    return brackets


def calculate_graduated(
    rules: ProfileRules,
    sessions: Sequence[SessionRow],
    sales: Sequence[SaleRow],
) -> CommissionResult:
    """Each session is priced by the tier whose bracket contains it.

    Sales commission and the tier bonus still follow the highest tier reached.
    """

    if not rules.tiers:
        raise CommissionError("Commission profile has no tiers configured.")

    session_commission = Decimal("0")
    breakdown = []
    for tier, offset, count in graduated_brackets(rules, len(sessions)):
        bracket_sessions = sessions[offset:offset + count]
        bracket_commission = session_commission_for(tier, bracket_sessions) if count else Decimal("0")
        session_commission += bracket_commission
        breakdown.append(
            {
                "tier_level": tier.tier_level,
                "tier_name": tier.label,
                "session_threshold": tier.session_threshold,
                "sessions": count,
                "value": float(total_session_value(bracket_sessions)),
                "commission": float(quantize_money(bracket_commission)),
                "rates": _rates(tier, include_sales=False, include_bonus=False),
            }
        )

    tier = determine_current_tier(rules, len(sessions), total_sales_value(sales))
    bonus = Decimal(tier.tier_bonus) if tier.tier_bonus else Decimal("0")
    snapshot = {
        "method": METHOD_GRADUATED,
        "trigger_type": rules.trigger_type,
        "tier_reached": tier.label,
        "tier_level": tier.tier_level,
        "session_count": len(sessions),
        "sales_count": len(sales),
        "sales_volume": float(total_sales_value(sales)),
        "sales_rates": {
            "sales_flat_fee": _number(tier.sales_flat_fee),
            "sales_commission_percent": _number(tier.sales_commission_percent),
            "tier_bonus": _number(tier.tier_bonus),
        },
        "tier_breakdown": breakdown,
    }
    return _result(
        session_commission,
        sales_commission_for(tier, sales),
        bonus,
        tier.tier_level,
        sessions,
        sales,
        snapshot,
    )


def calculate_flat(
    rules: ProfileRules,
    sessions: Sequence[SessionRow],
    sales: Sequence[SaleRow],
) -> CommissionResult:
    """Tier 1 rates for everything, without tier bonuses."""

    tier = base_tier(rules)
    snapshot = {
        "method": METHOD_FLAT,
        "tier_used": tier.label,
        "session_count": len(sessions),
        "sales_count": len(sales),
        "sales_volume": float(total_sales_value(sales)),
        "rates": _rates(tier, include_bonus=False),
    }
    return _result(
        session_commission_for(tier, sessions),
        sales_commission_for(tier, sales),
        Decimal("0"),
        1,
        sessions,
        sales,
        snapshot,
    )


_CALCULATORS = {
    METHOD_PROGRESSIVE: calculate_progressive,
    METHOD_GRADUATED: calculate_graduated,
    METHOD_FLAT: calculate_flat,
}


def calculate_commission(
    rules: ProfileRules,
    sessions: Sequence[SessionRow],
    sales: Sequence[SaleRow],
) -> CommissionResult:
    """Dispatch to the calculator matching the profile's method."""

    calculator = _CALCULATORS.get(rules.calculation_method)
    if calculator is None:
        raise CommissionError(f"Unknown calculation method: {rules.calculation_method}")
    ordered = sorted(sessions, key=lambda row: row.session_date)
    return calculator(rules, ordered, list(sales))


__all__ = [
    "CommissionError",
    "CommissionResult",
    "ProfileRules",
    "SaleRow",
    "SessionRow",
    "TierRule",
    "calculate_commission",
    "calculate_flat",
    "calculate_graduated",
    "calculate_progressive",
    "determine_current_tier",
    "graduated_brackets",
    "quantize_money",
    "tier_triggered",
]
