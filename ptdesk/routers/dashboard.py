"""Dashboard routes."""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import ROLE_TRAINER, User
from ptdesk.core.formatting import parse_month
from ptdesk.database import get_session
from ptdesk.dependencies import http_error, templates
from ptdesk.routers.auth import get_current_user
from ptdesk.services import CommissionService

router = APIRouter(tags=["Dashboard"])


def build_summary(db: Session, user: User, month: Optional[str] = None, today: Optional[date] = None) -> dict:
    """Month numbers for the trainer or manager dashboard."""

    period_start, period_end = parse_month(month, today=today)
    summary: dict = {
        "month": f"{period_start:%Y-%m}",
        "month_label": period_start.strftime("%B %Y"),
        "view": "trainer" if user.role == ROLE_TRAINER else "manager",
    }

    if user.role == ROLE_TRAINER:
        totals = crud.session_totals(db, user.organization_id, period_start, period_end, trainer_id=user.id)
        estimate = CommissionService(db).estimate_for_trainer(user, period_start, period_end)
        summary.update(
            {
                "sessions": totals["sessions"],
                "validated_sessions": totals["validated_sessions"],
                "session_value": float(totals["session_value"]),
                "estimated_commission": float(estimate.total_commission) if estimate else None,
                "tier_reached": estimate.tier_reached if estimate else None,
                "client_states": crud.client_state_counts(db, user.organization_id, trainer_id=user.id),
            }
        )
        return summary

    totals = crud.session_totals(db, user.organization_id, period_start, period_end)
    payments = crud.payment_totals(db, user.organization_id, period_start, period_end)
    summary.update(
        {
            "sessions": totals["sessions"],
            "validated_sessions": totals["validated_sessions"],
            "session_value": float(totals["session_value"]),
            "payments": payments["payments"],
            "payment_amount": float(payments["payment_amount"]),
            "active_trainers": len(crud.list_trainers(db, user.organization_id)),
            "client_states": crud.client_state_counts(db, user.organization_id),
        }
    )
    return summary


@router.get("/dashboard")
def dashboard(
    request: Request,
    month: Optional[str] = None,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    try:
        summary = build_summary(db, user, month)
    except ValueError:
        summary = build_summary(db, user)
    return templates.TemplateResponse(
        request,
        "dashboard/index.html",
        {"user": user, "summary": summary},
    )


@router.get("/dashboard/summary")
def dashboard_summary(
    month: Optional[str] = None,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    try:
        return build_summary(db, user, month)
    except ValueError as exc:
        raise http_error(exc) from exc
