"""Package type catalogue routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import User
from ptdesk.database import get_session
from ptdesk.dependencies import http_error
from ptdesk.models import PackageType
from ptdesk.routers.auth import get_admin_user, get_commission_manager_user, get_current_user
from ptdesk.schemas import PackageTypeCreate, PackageTypeRead, PackageTypeUpdate

router = APIRouter(prefix="/package-types", tags=["Package Types"])


def _get_package_type_or_404(db: Session, user: User, package_type_id: int) -> PackageType:
    package_type = crud.get_package_type(db, user.organization_id, package_type_id)
    if package_type is None:
        raise HTTPException(status_code=404, detail="Package type not found")
    return package_type


@router.get("", response_model=list[PackageTypeRead])
def list_package_types(
    include_inactive: bool = False,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return crud.list_package_types(db, user.organization_id, include_inactive=include_inactive)


@router.get("/{package_type_id}", response_model=PackageTypeRead)
def get_package_type(
    package_type_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return _get_package_type_or_404(db, user, package_type_id)


@router.post("", response_model=PackageTypeRead, status_code=201)
def create_package_type(
    payload: PackageTypeCreate,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    try:
        return crud.create_package_type(db, user.organization_id, payload, actor_id=user.id)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.put("/{package_type_id}", response_model=PackageTypeRead)
def update_package_type(
    package_type_id: int,
    payload: PackageTypeUpdate,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    package_type = _get_package_type_or_404(db, user, package_type_id)
    try:
        return crud.update_package_type(db, package_type, payload, actor_id=user.id)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.delete("/{package_type_id}")
def delete_package_type(
    package_type_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_admin_user),
):
    package_type = _get_package_type_or_404(db, user, package_type_id)
    try:
        crud.delete_package_type(db, package_type, actor_id=user.id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"success": True}
