"""Package payment routes."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import ROLE_CLUB_MANAGER, User
from ptdesk.database import get_session
from ptdesk.dependencies import http_error
from ptdesk.models import Payment
from ptdesk.routers.auth import get_current_user, get_manager_user
from ptdesk.schemas import PaymentCreate, PaymentRead, PaymentUpdate

router = APIRouter(prefix="/payments", tags=["Payments"])


def _payment_row(payment: Payment) -> dict:
    data = PaymentRead.model_validate(payment).model_dump()
    package = payment.package
    client = package.client if package else None
    data["package_name"] = package.name if package else None
    data["client_name"] = client.name if client else None
    data["trainer_name"] = client.primary_trainer.name if client and client.primary_trainer else None
    data["sales_attributed_to"] = payment.sales_attributed_to.name if payment.sales_attributed_to else None
    data["sales_attributed_to2"] = payment.sales_attributed_to2.name if payment.sales_attributed_to2 else None
    return data


def _load_payment(db: Session, user: User, payment_id: int) -> Payment:
    payment = crud.get_payment(db, user.organization_id, payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


@router.get("")
def list_payments(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    trainer_id: Optional[int] = None,
    client_id: Optional[int] = None,
    db: Session = Depends(get_session),
    user: User = Depends(get_manager_user),
):
    """Payments with filters and totals. Club managers see their location only."""
    location_id = user.location_id if user.role == ROLE_CLUB_MANAGER else None
    payments = crud.list_payments(
        db,
        user.organization_id,
        start_date=start_date,
        end_date=end_date,
        trainer_id=trainer_id,
        client_id=client_id,
        location_id=location_id,
    )
    total = sum((payment.amount for payment in payments), Decimal("0"))
    return {
        "payments": [_payment_row(payment) for payment in payments],
        "totals": {"count": len(payments), "amount": float(total)},
    }


@router.post("", status_code=201, response_model=PaymentRead)
def record_payment(
    payload: PaymentCreate,
    db: Session = Depends(get_session),
    user: User = Depends(get_manager_user),
):
    try:
        return crud.create_payment(db, user.organization_id, payload, actor_id=user.id)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc


@router.put("/{payment_id}", response_model=PaymentRead)
def edit_payment(
    payment_id: int,
    payload: PaymentUpdate,
    db: Session = Depends(get_session),
    user: User = Depends(get_manager_user),
):
    payment = _load_payment(db, user, payment_id)
    try:
        return crud.update_payment(db, payment, payload)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc


@router.delete("/{payment_id}")
def delete_payment(
    payment_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_manager_user),
):
    payment = _load_payment(db, user, payment_id)
    try:
        crud.delete_payment(db, payment)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"success": True}


@router.get("/packages/{package_id}/summary")
def package_summary(
    package_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    package = crud.get_package(db, user.organization_id, package_id)
    if package is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return crud.package_payment_summary(db, package).as_dict()
