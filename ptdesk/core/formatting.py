"""Display helpers for report periods, package dates and money."""
from __future__ import annotations

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

DISPLAY_DATE_FORMAT = "%m/%d/%Y"
_CENTS = Decimal("0.01")


def format_display_date(value: date | None) -> str:
    """Render a date or datetime as mm/dd/yyyy; blank when unset."""
    if value is None:
        return ""
    return value.strftime(DISPLAY_DATE_FORMAT)


def format_money(value: Any) -> str:
    """Format numeric values as $1,234.50."""

    try:
        amount = Decimal(str(value if value is not None else 0))
    except InvalidOperation:
        return str(value)
    return f"${amount.quantize(_CENTS, rounding=ROUND_HALF_UP):,.2f}"


def parse_month(value: str | None, today: date | None = None) -> tuple[date, date]:
    """Parse YYYY-MM into the first and last day of that month.

    A missing value means the current month.
    """
    today = today or date.today()
    if not value:
        year, month = today.year, today.month
    else:
        try:
            year, month = map(int, value.split("-"))
            date(year, month, 1)
        except ValueError as exc:
            raise ValueError("Month must be provided in YYYY-MM format.") from exc
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


__all__ = [
    "format_display_date",
    "format_money",
    "parse_month",
]
