"""Location routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import ROLE_CLUB_MANAGER, ROLE_TRAINER, User
from ptdesk.database import get_session
from ptdesk.dependencies import http_error
from ptdesk.models import Location
from ptdesk.routers.auth import get_commission_manager_user, get_current_user
from ptdesk.schemas import LocationCreate, LocationRead, LocationUpdate

router = APIRouter(prefix="/locations", tags=["Locations"])

# Staff tied to a single location only see that one.
_LOCATION_SCOPED_ROLES = (ROLE_TRAINER, ROLE_CLUB_MANAGER)


def _get_location_or_404(db: Session, user: User, location_id: int) -> Location:
    location = crud.get_location(db, user.organization_id, location_id)
    if location is None:
        raise HTTPException(status_code=404, detail="Location not found")
    if user.role in _LOCATION_SCOPED_ROLES and location.id != user.location_id:
        raise HTTPException(status_code=403, detail="You do not have access to this location")
    return location


@router.get("", response_model=list[LocationRead])
def list_locations(
    include_inactive: bool = False,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    locations = crud.list_locations(db, user.organization_id, include_inactive=include_inactive)
    if user.role in _LOCATION_SCOPED_ROLES:
        return [location for location in locations if location.id == user.location_id]
    return locations


@router.get("/{location_id}", response_model=LocationRead)
def get_location(
    location_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return _get_location_or_404(db, user, location_id)


@router.post("", response_model=LocationRead, status_code=201)
def create_location(
    payload: LocationCreate,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    try:
        return crud.create_location(db, user.organization_id, payload, actor_id=user.id)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.put("/{location_id}", response_model=LocationRead)
def update_location(
    location_id: int,
    payload: LocationUpdate,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    location = _get_location_or_404(db, user, location_id)
    try:
        return crud.update_location(db, location, payload, actor_id=user.id)
    except ValueError as exc:
        raise http_error(exc) from exc
