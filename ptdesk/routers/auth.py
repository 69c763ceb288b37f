"""Authentication routes and session management."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ptdesk.auth import COMMISSION_MANAGER_ROLES, MANAGER_ROLES, User
from ptdesk.database import DATABASE_URL, get_session
from ptdesk.dependencies import templates

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])

SESSION_COOKIE = "user_id"


@router.get("/login")
def login_page(request: Request):
    """Render login page, optionally preserving a next destination."""
    next_param = request.query_params.get("next")
    return templates.TemplateResponse(request, "auth/login.html", {"next": next_param})


@router.post("/login")
def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str | None = Form(default=None),
    db: Session = Depends(get_session),
):
    """Handle login form submission."""
    user = db.query(User).filter(User.email == email.strip().lower()).first()

    if not user or not user.active or not user.verify_password(password):
        logger.info("Failed login for %s", email)
        return templates.TemplateResponse(
            request,
            "auth/login.html",
            {"error": "Invalid email or password", "next": next},
            status_code=401,
        )

    redirect_to = next or request.query_params.get("next") or "/dashboard"
    # Only same-site paths are allowed as redirect targets
    if "://" in redirect_to or not redirect_to.startswith("/"):
        redirect_to = "/dashboard"

    response = RedirectResponse(url=redirect_to, status_code=303)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=str(user.id),
        httponly=True,
        path="/",
        secure=DATABASE_URL.startswith("postgresql"),
        samesite="lax",
        max_age=86400,
    )
    return response


@router.get("/logout")
def logout():
    """Handle logout and clear the session cookie."""
    response = RedirectResponse(url="/login", status_code=303)
    response.delete_cookie(SESSION_COOKIE)
    return response


def get_current_user(request: Request, db: Session = Depends(get_session)) -> User:
    """Dependency to get current authenticated user."""
    user_id = request.cookies.get(SESSION_COOKIE)

    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        user_id = int(user_id)
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid session")

    user = db.query(User).filter(User.id == user_id).first()

    if not user or not user.active:
        raise HTTPException(status_code=401, detail="User not found")
    if user.organization_id is None:
        raise HTTPException(status_code=400, detail="No organization context")

    return user


def get_manager_user(user: User = Depends(get_current_user)) -> User:
    """Dependency to ensure user is a club manager, PT manager or admin."""
    if user.role not in MANAGER_ROLES:
        raise HTTPException(status_code=403, detail="Manager access required")
    return user


def get_commission_manager_user(user: User = Depends(get_current_user)) -> User:
    """Dependency to ensure user is a PT manager or admin."""
    if user.role not in COMMISSION_MANAGER_ROLES:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return user


def get_admin_user(user: User = Depends(get_current_user)) -> User:
    """Dependency to ensure user is admin."""
    if not user.is_admin():
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
