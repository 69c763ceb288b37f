"""Training session routes."""
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import ROLE_CLUB_MANAGER, ROLE_TRAINER, User
from ptdesk.database import get_session
from ptdesk.dependencies import http_error
from ptdesk.routers.auth import get_current_user
from ptdesk.schemas import SessionCreate, SessionRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.post("", status_code=201)
def log_session(
    payload: SessionCreate,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    try:
        session_row = crud.log_session(db, user, payload)
    except (ValueError, LookupError, PermissionError) as exc:
        raise http_error(exc) from exc

    logger.info("Session %s logged by user %s", session_row.id, user.id)
    data = SessionRead.model_validate(session_row).model_dump()
    data["validation_token"] = session_row.validation_token
    return data


@router.get("", response_model=List[SessionRead])
def list_sessions(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    trainer_id: Optional[int] = None,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    """Trainers see their own sessions; club managers their location's."""
    location_id = None
    if user.role == ROLE_TRAINER:
        trainer_id = user.id
    elif user.role == ROLE_CLUB_MANAGER:
        location_id = user.location_id
    return crud.list_sessions(
        db,
        user.organization_id,
        trainer_id=trainer_id,
        start_date=start_date,
        end_date=end_date,
        location_id=location_id,
    )


@router.get("/validate/{token}", response_model=SessionRead)
def validate_session(token: str, db: Session = Depends(get_session)):
    """Client-facing confirmation link; no login required."""
    try:
        return crud.validate_session(db, token)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc


@router.post("/{session_id}/cancel", response_model=SessionRead)
def cancel_session(
    session_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    session_row = crud.get_session_row(db, user.organization_id, session_id)
    if session_row is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if user.role == ROLE_TRAINER and session_row.trainer_id != user.id:
        raise HTTPException(status_code=403, detail="You can only cancel your own sessions")
    return crud.cancel_session(db, session_row)
