from datetime import date, datetime
from decimal import Decimal

import pytest

from ptdesk.core.formatting import format_display_date, format_money, parse_month


def test_display_date_handles_dates_datetimes_and_blanks():
    assert format_display_date(date(2025, 3, 4)) == "03/04/2025"
    assert format_display_date(datetime(2025, 12, 31, 23, 59)) == "12/31/2025"
    assert format_display_date(None) == ""


def test_money_formatting():
    assert format_money(Decimal("1234.5")) == "$1,234.50"
    assert format_money(12.345) == "$12.35"
    assert format_money(None) == "$0.00"
    assert format_money("n/a") == "n/a"


def test_parse_month():
    assert parse_month("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
    assert parse_month(None, today=date(2025, 6, 15)) == (date(2025, 6, 1), date(2025, 6, 30))
    with pytest.raises(ValueError):
        parse_month("March")
