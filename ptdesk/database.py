"""Database configuration for the training business web application."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_PATH = Path("data/ptdesk.db")
DEFAULT_SQLITE_PATH.parent.mkdir(parents=True, exist_ok=True)

DATABASE_URL = os.getenv("PTDESK_DATABASE_URL", f"sqlite:///{DEFAULT_SQLITE_PATH}")


def _create_engine(url: str):
    """Create a SQLAlchemy engine for the given URL, handling sqlite connect args."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, future=True)


# On local development environments an unreachable database (commonly
# PostgreSQL) falls back to the SQLite file. Other environments fail loudly.
try:
    engine = _create_engine(DATABASE_URL)
    with engine.connect() as _conn:  # type: ignore[var-annotated]
        pass
except Exception as e:  # pragma: no cover - environment dependent
    env = os.getenv("ENVIRONMENT", "development").lower()
    logger.warning("Could not connect to database at %r: %s", DATABASE_URL, e)
    if env == "development":
        fallback = f"sqlite:///{DEFAULT_SQLITE_PATH}"
        logger.warning("Falling back to SQLite for local development at %s", fallback)
        DATABASE_URL = fallback
        engine = _create_engine(DATABASE_URL)
    else:
        raise

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a database session."""

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db() -> None:
    """Ensure database tables exist and seed the default organization if needed."""

    from ptdesk import models  # noqa: F401  (import ensures model metadata is registered)

    Base.metadata.create_all(bind=engine, checkfirst=True)

    session = SessionLocal()
    try:
        seed_defaults(session)
    except Exception:
        logger.exception("Error seeding default organization")
        session.rollback()
        raise
    finally:
        session.close()


def seed_defaults(session: Session) -> None:
    """Create a default organization, admin account and commission setup.

    Runs only when the database holds no organizations, so restarting the
    application never duplicates data.
    """
    from ptdesk import crud
    from ptdesk.auth import ROLE_ADMIN, User
    from ptdesk.models import Organization

    if session.query(Organization).count() > 0:
        logger.info("Organizations already exist, skipping default seed")
        return

    organization = Organization(name="Default Gym", email="admin@example.com")
    session.add(organization)
    session.flush()

    admin = User.create_user(
        email="admin@example.com",
        password="admin",
        name="Administrator",
        role=ROLE_ADMIN,
        organization_id=organization.id,
    )
    session.add(admin)
    session.flush()

    crud.ensure_commission_tiers(session, organization.id)
    crud.ensure_default_profile(session, organization.id)
    session.commit()
    logger.info("Created default organization and admin user (admin@example.com / admin)")
