import os
import shutil
import tempfile
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Create a temporary SQLite database file for the whole test session
_TEMP_DIR = tempfile.mkdtemp(prefix="ptdesk_tests_")
_DB_FILE = os.path.join(_TEMP_DIR, "test_ptdesk.db")
os.environ["PTDESK_DATABASE_URL"] = f"sqlite:///{_DB_FILE}"


def _enable_sqlite_foreign_keys(engine):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize a fresh temporary SQLite database for tests and clean it up after."""
    # Import after setting env var so the app uses the temp DB
    from ptdesk.database import engine, init_db

    _enable_sqlite_foreign_keys(engine)
    init_db()

    yield

    engine.dispose()
    shutil.rmtree(_TEMP_DIR, ignore_errors=True)


@pytest.fixture()
def db_session():
    from ptdesk.database import Base
    from ptdesk import models  # noqa: F401

    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


def make_user(session, organization, email, role, location=None, name=None):
    """Add a staff account without paying for a bcrypt hash."""
    from ptdesk.auth import User

    user = User(
        email=email,
        name=name or email.split("@")[0].title(),
        password_hash="unused",
        role=role,
        organization_id=organization.id,
        location_id=location.id if location else None,
    )
    session.add(user)
    session.flush()
    return user


@pytest.fixture()
def seeded(db_session):
    """One organization with two locations, staff in every role and a paid-up client."""
    from ptdesk import crud
    from ptdesk.auth import ROLE_ADMIN, ROLE_CLUB_MANAGER, ROLE_PT_MANAGER, ROLE_TRAINER
    from ptdesk.models import Client, Location, Organization, Package, Payment

    org = Organization(name="Test Gym", email="owner@testgym.example")
    db_session.add(org)
    db_session.flush()
    downtown = Location(organization_id=org.id, name="Downtown")
    uptown = Location(organization_id=org.id, name="Uptown")
    db_session.add_all([downtown, uptown])
    db_session.flush()

    admin = make_user(db_session, org, "admin@testgym.example", ROLE_ADMIN)
    pt_manager = make_user(db_session, org, "ptm@testgym.example", ROLE_PT_MANAGER)
    club_manager = make_user(db_session, org, "club@testgym.example", ROLE_CLUB_MANAGER, location=downtown)
    trainer = make_user(db_session, org, "tara@testgym.example", ROLE_TRAINER, location=downtown, name="Tara")
    trainer2 = make_user(db_session, org, "uma@testgym.example", ROLE_TRAINER, location=uptown, name="Uma")

    crud.ensure_commission_tiers(db_session, org.id)
    default_profile = crud.ensure_default_profile(db_session, org.id)

    client = Client(
        organization_id=org.id,
        location_id=downtown.id,
        primary_trainer_id=trainer.id,
        name="Casey Client",
    )
    db_session.add(client)
    db_session.flush()
    package = Package(
        organization_id=org.id,
        client_id=client.id,
        name="10 Pack",
        total_value=Decimal("500.00"),
        total_sessions=10,
        remaining_sessions=10,
        session_value=Decimal("50.00"),
    )
    db_session.add(package)
    db_session.flush()
    payment = Payment(
        package_id=package.id,
        amount=Decimal("500.00"),
        payment_date=datetime(2025, 3, 3, 9, 0),
        payment_method="CARD",
    )
    db_session.add(payment)
    db_session.commit()

    return SimpleNamespace(
        org=org,
        downtown=downtown,
        uptown=uptown,
        admin=admin,
        pt_manager=pt_manager,
        club_manager=club_manager,
        trainer=trainer,
        trainer2=trainer2,
        default_profile=default_profile,
        client=client,
        package=package,
        payment=payment,
    )


@pytest.fixture()
def api(db_session):
    """Return ``as_user(user) -> TestClient`` bound to the in-memory session."""
    from ptdesk.database import get_session
    from ptdesk.main import app
    from ptdesk.routers.auth import get_current_user

    current = {}

    def override_session():
        try:
            yield db_session
        finally:
            db_session.rollback()

    def override_user():
        return current["user"]

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_current_user] = override_user
    test_client = TestClient(app)

    def as_user(user):
        current["user"] = user
        return test_client

    yield as_user

    app.dependency_overrides.pop(get_session, None)
    app.dependency_overrides.pop(get_current_user, None)
