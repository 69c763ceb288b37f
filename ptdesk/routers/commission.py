"""Commission calculation, reporting and configuration routes."""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import ROLE_CLUB_MANAGER, ROLE_TRAINER, User
from ptdesk.core.formatting import parse_month
from ptdesk.database import get_session
from ptdesk.dependencies import http_error, templates
from ptdesk.exporting.commission import method_label
from ptdesk.routers.auth import get_commission_manager_user, get_current_user, get_manager_user
from ptdesk.schemas import (
    CommissionCalculateRequest,
    CommissionCalculationRead,
    CommissionMethodUpdate,
    TierScheduleUpdate,
)
from ptdesk.services import CommissionService, MonthlyReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/commission", tags=["Commission"])


def _report_payload(report: MonthlyReport) -> dict:
    return {
        "month": f"{report.period_start:%Y-%m}",
        "method": report.method,
        "method_label": method_label(report.method),
        "location_id": report.location_id,
        "commissions": [
            {
                "trainer_id": row.trainer_id,
                "trainer_name": row.trainer_name,
                "trainer_email": row.trainer_email,
                "location_name": row.location_name,
                "total_sessions": row.total_sessions,
                "validated_sessions": row.validated_sessions,
                "total_value": float(row.total_value),
                "commission_rate": float(row.commission_rate),
                "commission_amount": float(row.commission_amount),
                "method": row.method,
                "tier_achieved": row.tier_achieved.label if row.tier_achieved else None,
            }
            for row in report.rows
        ],
        "summary": {
            "trainer_count": len(report.rows),
            "total_sessions": report.total_sessions,
            "total_value": float(report.total_value),
            "total_commission": float(report.total_commission),
        },
    }


def _scope_report_filters(user: User, location_id: Optional[int], trainer_id: Optional[int]):
    """Trainers see only themselves; club managers only their own location."""

    if user.role == ROLE_TRAINER:
        return location_id, user.id
    if user.role == ROLE_CLUB_MANAGER:
        if location_id is not None and location_id != user.location_id:
            raise HTTPException(status_code=403, detail="You do not have access to this location")
        return user.location_id, trainer_id
    return location_id, trainer_id


def _build_report(
    db: Session,
    user: User,
    month: Optional[str],
    method: Optional[str],
    location_id: Optional[int],
    trainer_id: Optional[int],
) -> MonthlyReport:
    location_id, trainer_id = _scope_report_filters(user, location_id, trainer_id)
    try:
        period_start, period_end = parse_month(month)
        return CommissionService(db).monthly_report(
            user.organization_id,
            period_start,
            period_end,
            method=method,
            location_id=location_id,
            trainer_id=trainer_id,
        )
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc


@router.post("/calculate", response_model=CommissionCalculationRead)
def calculate(
    payload: CommissionCalculateRequest,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    """Calculate commission for one trainer and optionally save it."""
    target_id = payload.user_id or user.id
    if target_id != user.id:
        if not user.can_manage_commission():
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        if crud.get_user_in_org(db, user.organization_id, target_id) is None:
            raise HTTPException(status_code=404, detail="User not found")

    try:
        calculation = CommissionService(db).calculate_for_trainer(
            target_id,
            payload.period_start,
            payload.period_end,
            save=payload.save_calculation,
            location_id=payload.location_id,
        )
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return calculation


@router.post("/calculate/organization", response_model=List[CommissionCalculationRead])
def calculate_organization(
    payload: CommissionCalculateRequest,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    """Calculate commission for every active trainer of the organization."""
    results = CommissionService(db).calculate_for_organization(
        user.organization_id,
        payload.period_start,
        payload.period_end,
        save=payload.save_calculation,
    )
    logger.info("Calculated commission for %s trainers in organization %s", len(results), user.organization_id)
    return results


@router.get("/calculate", response_model=List[CommissionCalculationRead])
def calculation_history(
    user_id: Optional[int] = None,
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    """Saved calculations for a trainer, newest period first."""
    target_id = user_id or user.id
    if target_id != user.id:
        if not user.can_manage_commission():
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        if crud.get_user_in_org(db, user.organization_id, target_id) is None:
            raise HTTPException(status_code=404, detail="User not found")
    return CommissionService(db).history(target_id, limit=limit)


@router.get("")
def monthly_report(
    month: Optional[str] = None,
    method: Optional[str] = None,
    location_id: Optional[int] = None,
    trainer_id: Optional[int] = None,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    """Monthly commission report on the organization tier schedule."""
    report = _build_report(db, user, month, method, location_id, trainer_id)
    return _report_payload(report)


@router.get("/report")
def report_page(
    request: Request,
    month: Optional[str] = None,
    method: Optional[str] = None,
    location_id: Optional[int] = None,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    report = _build_report(db, user, month, method, location_id, None)
    return templates.TemplateResponse(
        request,
        "commission/report.html",
        {
            "user": user,
            "report": report,
            "method_label": method_label(report.method),
            "month": f"{report.period_start:%Y-%m}",
        },
    )


@router.get("/export")
def export_report(
    month: Optional[str] = None,
    method: Optional[str] = None,
    location_id: Optional[int] = None,
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    db: Session = Depends(get_session),
    user: User = Depends(get_manager_user),
):
    """Download the monthly report as CSV or XLSX."""
    report = _build_report(db, user, month, method, location_id, None)
    if not report.rows:
        raise HTTPException(status_code=404, detail="No data to export")

    content, media_type, filename = CommissionService(db).export_monthly_report(report, format)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/method")
def get_method(db: Session = Depends(get_session), user: User = Depends(get_current_user)):
    organization = crud.get_organization(db, user.organization_id)
    if organization is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    method = CommissionService(db).resolve_report_method(organization.id)
    rate = organization.default_commission_rate
    return {"method": method, "default_rate": float(rate) if rate is not None else None}


@router.put("/method")
def update_method(
    payload: CommissionMethodUpdate,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    organization = crud.get_organization(db, user.organization_id)
    if organization is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    if payload.method == "FLAT" and payload.default_rate is None and organization.default_commission_rate is None:
        raise HTTPException(status_code=400, detail="A default rate is required for the flat method")

    organization = crud.set_commission_method(db, organization, payload.method, payload.default_rate, actor_id=user.id)
    rate = organization.default_commission_rate
    return {
        "success": True,
        "method": organization.commission_method,
        "default_rate": float(rate) if rate is not None else None,
    }


def _tiers_payload(tiers) -> list[dict]:
    return [
        {
            "id": tier.id,
            "min_sessions": tier.min_sessions,
            "max_sessions": tier.max_sessions,
            "percentage": float(tier.percentage),
        }
        for tier in tiers
    ]


@router.get("/tiers")
def get_tiers(db: Session = Depends(get_session), user: User = Depends(get_current_user)):
    tiers = crud.list_commission_tiers(db, user.organization_id)
    if not tiers:
        crud.ensure_commission_tiers(db, user.organization_id)
        db.commit()
        tiers = crud.list_commission_tiers(db, user.organization_id)
    return {"tiers": _tiers_payload(tiers)}


@router.put("/tiers")
def update_tiers(
    payload: TierScheduleUpdate,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    tiers = crud.replace_commission_tiers(db, user.organization_id, payload, actor_id=user.id)
    return {"success": True, "tiers": _tiers_payload(tiers)}
