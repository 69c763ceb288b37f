"""Shared FastAPI dependencies."""
from __future__ import annotations

from pathlib import Path

from fastapi import HTTPException
from fastapi.templating import Jinja2Templates

from ptdesk.core.formatting import format_display_date, format_money

TEMPLATES_PATH = Path(__file__).parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_PATH))

templates.env.filters["money"] = format_money
templates.env.filters["display_date"] = format_display_date


def http_error(exc: Exception) -> HTTPException:
    """Translate a domain exception into the matching HTTP error."""

    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
