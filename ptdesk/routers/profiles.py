"""Commission profile administration routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import ROLE_TRAINER, User
from ptdesk.database import get_session
from ptdesk.dependencies import http_error
from ptdesk.models import CommissionProfile
from ptdesk.routers.auth import get_admin_user, get_commission_manager_user
from ptdesk.schemas import (
    CommissionProfileCreate,
    CommissionProfileRead,
    CommissionProfileUpdate,
    ProfileAssignment,
)

router = APIRouter(prefix="/commission/profiles", tags=["Commission profiles"])


def _profile_payload(profile: CommissionProfile, user_count: int) -> dict:
    data = CommissionProfileRead.model_validate(profile).model_dump()
    data["user_count"] = user_count
    return data


def _load_profile(db: Session, user: User, profile_id: int) -> CommissionProfile:
    profile = crud.get_commission_profile(db, user.organization_id, profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.get("")
def list_profiles(
    include_inactive: bool = False,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    profiles = crud.list_commission_profiles(db, user.organization_id, include_inactive=include_inactive)
    counts = crud.profile_user_counts(db, [profile.id for profile in profiles])
    return [_profile_payload(profile, counts.get(profile.id, 0)) for profile in profiles]


@router.get("/{profile_id}")
def get_profile(
    profile_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_commission_manager_user),
):
    profile = _load_profile(db, user, profile_id)
    count = crud.profile_user_counts(db, [profile.id]).get(profile.id, 0)
    return _profile_payload(profile, count)


@router.post("", status_code=201)
def create_profile(
    payload: CommissionProfileCreate,
    db: Session = Depends(get_session),
    user: User = Depends(get_admin_user),
):
    try:
        profile = crud.create_commission_profile(db, user.organization_id, payload, actor_id=user.id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return _profile_payload(profile, 0)


@router.put("/{profile_id}")
def update_profile(
    profile_id: int,
    payload: CommissionProfileUpdate,
    db: Session = Depends(get_session),
    user: User = Depends(get_admin_user),
):
    profile = _load_profile(db, user, profile_id)
    try:
        profile = crud.update_commission_profile(db, profile, payload, actor_id=user.id)
    except ValueError as exc:
        raise http_error(exc) from exc
    count = crud.profile_user_counts(db, [profile.id]).get(profile.id, 0)
    return _profile_payload(profile, count)


@router.delete("/{profile_id}")
def delete_profile(
    profile_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_admin_user),
):
    profile = _load_profile(db, user, profile_id)
    try:
        crud.delete_commission_profile(db, profile, actor_id=user.id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"success": True}


@router.post("/{profile_id}/assign")
def assign_profile(
    profile_id: int,
    payload: ProfileAssignment,
    db: Session = Depends(get_session),
    user: User = Depends(get_admin_user),
):
    """Assign the profile to one or more trainers."""
    profile = _load_profile(db, user, profile_id)
    assigned = []
    for user_id in payload.user_ids:
        trainer = crud.get_user_in_org(db, user.organization_id, user_id)
        if trainer is None or trainer.role != ROLE_TRAINER:
            raise HTTPException(status_code=404, detail=f"Trainer {user_id} not found")
        try:
            crud.assign_commission_profile(db, trainer, profile, actor_id=user.id)
        except ValueError as exc:
            raise http_error(exc) from exc
        assigned.append(trainer.id)
    return {"success": True, "profile_id": profile.id, "user_ids": assigned}
