"""Client and package routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import ROLE_CLUB_MANAGER, ROLE_TRAINER, User
from ptdesk.core.packages import package_status
from ptdesk.database import get_session
from ptdesk.dependencies import http_error
from ptdesk.models import Client, Package
from ptdesk.routers.auth import get_current_user, get_manager_user
from ptdesk.schemas import ClientCreate, ClientRead, PackageCreate, PackageRead

router = APIRouter(prefix="/clients", tags=["Clients"])


def _package_payload(db: Session, package: Package) -> dict:
    data = PackageRead.model_validate(package).model_dump()
    data["status"] = package_status(crud.package_snapshot(db, package))
    data["payment_summary"] = crud.package_payment_summary(db, package).as_dict()
    return data


def _client_payload(db: Session, client: Client, include_packages: bool = False) -> dict:
    data = ClientRead.model_validate(client).model_dump()
    data["state"] = crud.get_client_state(db, client)
    if include_packages:
        data["packages"] = [_package_payload(db, package) for package in client.packages]
    return data


def _load_client(db: Session, user: User, client_id: int) -> Client:
    client = crud.get_client(db, user.organization_id, client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    if user.role == ROLE_CLUB_MANAGER and client.location_id != user.location_id:
        raise HTTPException(status_code=403, detail="You do not have access to this client")
    return client


@router.get("")
def list_clients(
    include_inactive: bool = False,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    trainer_id = user.id if user.role == ROLE_TRAINER else None
    location_id = user.location_id if user.role == ROLE_CLUB_MANAGER else None
    clients = crud.list_clients(
        db,
        user.organization_id,
        trainer_id=trainer_id,
        location_id=location_id,
        active_only=not include_inactive,
    )
    return [_client_payload(db, client) for client in clients]


@router.post("", status_code=201)
def create_client(
    payload: ClientCreate,
    db: Session = Depends(get_session),
    user: User = Depends(get_manager_user),
):
    try:
        client = crud.create_client(db, user.organization_id, payload)
    except LookupError as exc:
        raise http_error(exc) from exc
    return _client_payload(db, client)


@router.get("/{client_id}")
def get_client(
    client_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    client = _load_client(db, user, client_id)
    return _client_payload(db, client, include_packages=True)


@router.post("/{client_id}/packages", status_code=201)
def create_package(
    client_id: int,
    payload: PackageCreate,
    db: Session = Depends(get_session),
    user: User = Depends(get_manager_user),
):
    client = _load_client(db, user, client_id)
    if payload.client_id != client.id:
        raise HTTPException(status_code=400, detail="Package client does not match the URL")
    try:
        package = crud.create_package(db, user.organization_id, payload)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return _package_payload(db, package)
