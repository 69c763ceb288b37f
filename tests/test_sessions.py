from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from ptdesk import crud
from ptdesk.models import PackageType
from ptdesk.schemas import ClientCreate, PackageCreate, PaymentCreate, SessionCreate

SESSION_DATE = datetime(2025, 3, 4, 7, 30)


def _log(db, actor, seeded, **overrides):
    data = {"client_id": seeded.client.id, "package_id": seeded.package.id, "session_date": SESSION_DATE}
    data.update(overrides)
    return crud.log_session(db, actor, SessionCreate(**data))


def test_trainer_logs_session_for_own_client(db_session, seeded):
    session_row = _log(db_session, seeded.trainer, seeded)

    assert session_row.trainer_id == seeded.trainer.id
    assert session_row.session_value == Decimal("50.00")
    assert session_row.location_id == seeded.downtown.id
    assert session_row.validated is False
    assert len(session_row.validation_token) == 64
    assert session_row.validation_expiry > datetime.now() + timedelta(days=29)
    db_session.refresh(seeded.package)
    assert seeded.package.remaining_sessions == 9


def test_no_show_is_cancelled_without_token(db_session, seeded):
    session_row = _log(db_session, seeded.trainer, seeded, is_no_show=True, notes="Client overslept")

    assert session_row.cancelled is True
    assert session_row.validation_token is None
    assert session_row.notes == "Client overslept\n\nNo-Show"


def test_unpaid_package_blocks_logging(db_session, seeded):
    package = crud.create_package(
        db_session,
        seeded.org.id,
        PackageCreate(client_id=seeded.client.id, name="Unpaid", total_value=Decimal("300"), total_sessions=3),
    )

    with pytest.raises(ValueError, match="Payment required"):
        _log(db_session, seeded.trainer, seeded, package_id=package.id)

    crud.create_payment(db_session, seeded.org.id, PaymentCreate(package_id=package.id, amount=Decimal("100")))
    assert _log(db_session, seeded.trainer, seeded, package_id=package.id).id is not None


def test_trainer_cannot_log_at_other_location(db_session, seeded):
    with pytest.raises(PermissionError):
        _log(db_session, seeded.trainer2, seeded)


def test_only_managers_log_for_other_trainers(db_session, seeded):
    with pytest.raises(PermissionError):
        _log(db_session, seeded.trainer2, seeded, trainer_id=seeded.trainer.id)

    session_row = _log(db_session, seeded.club_manager, seeded, trainer_id=seeded.trainer.id)
    assert session_row.trainer_id == seeded.trainer.id

    with pytest.raises(ValueError, match="Invalid trainer"):
        _log(db_session, seeded.admin, seeded, trainer_id=seeded.pt_manager.id)


def test_package_must_belong_to_client_and_be_current(db_session, seeded):
    other_client = crud.create_client(
        db_session, seeded.org.id, ClientCreate(name="Other", location_id=seeded.downtown.id)
    )
    with pytest.raises(ValueError, match="does not belong"):
        _log(db_session, seeded.trainer, seeded, client_id=other_client.id)

    seeded.package.expires_at = datetime.now() - timedelta(days=1)
    db_session.commit()
    with pytest.raises(ValueError, match="expired"):
        _log(db_session, seeded.trainer, seeded)

    seeded.package.expires_at = None
    seeded.package.active = False
    db_session.commit()
    with pytest.raises(ValueError, match="inactive"):
        _log(db_session, seeded.trainer, seeded)


def test_missing_rows_raise_lookup_error(db_session, seeded):
    with pytest.raises(LookupError):
        _log(db_session, seeded.trainer, seeded, client_id=9999)
    with pytest.raises(LookupError):
        _log(db_session, seeded.trainer, seeded, package_id=9999)


def test_first_session_starts_the_expiry_clock(db_session, seeded):
    package_type = PackageType(
        organization_id=seeded.org.id,
        name="Starter",
        start_trigger="FIRST_SESSION",
        expiry_duration_value=1,
        expiry_duration_unit="MONTHS",
    )
    db_session.add(package_type)
    db_session.commit()
    package = crud.create_package(
        db_session,
        seeded.org.id,
        PackageCreate(
            client_id=seeded.client.id,
            name="Starter",
            total_value=Decimal("0"),
            total_sessions=2,
            package_type_id=package_type.id,
            start_date=date(2025, 1, 15),
        ),
    )
    assert package.effective_start_date is None
    assert package.expires_at is None

    _log(db_session, seeded.trainer, seeded, package_id=package.id, session_date=datetime.now())

    db_session.refresh(package)
    assert package.effective_start_date == date.today()
    assert package.expires_at is not None


def test_purchase_date_packages_expire_from_start(db_session, seeded):
    package_type = PackageType(
        organization_id=seeded.org.id,
        name="Quarterly",
        expiry_duration_value=3,
        expiry_duration_unit="MONTHS",
    )
    db_session.add(package_type)
    db_session.commit()

    package = crud.create_package(
        db_session,
        seeded.org.id,
        PackageCreate(
            client_id=seeded.client.id,
            name="Quarterly",
            total_value=Decimal("900"),
            total_sessions=12,
            package_type_id=package_type.id,
            start_date=date(2025, 11, 30),
        ),
    )

    assert package.session_value == Decimal("75.00")
    assert package.expires_at == datetime(2026, 2, 28)


def test_validate_and_cancel(db_session, seeded):
    session_row = _log(db_session, seeded.trainer, seeded)

    validated = crud.validate_session(db_session, session_row.validation_token)
    assert validated.validated is True
    assert validated.validated_at is not None

    with pytest.raises(LookupError):
        crud.validate_session(db_session, "not-a-token")

    crud.cancel_session(db_session, session_row)
    db_session.refresh(seeded.package)
    assert session_row.cancelled is True
    assert seeded.package.remaining_sessions == 10

    with pytest.raises(ValueError, match="cancelled"):
        crud.validate_session(db_session, session_row.validation_token)


def test_expired_validation_link_is_rejected(db_session, seeded):
    session_row = _log(db_session, seeded.trainer, seeded)
    session_row.validation_expiry = datetime.now() - timedelta(minutes=1)
    db_session.commit()

    with pytest.raises(ValueError, match="expired"):
        crud.validate_session(db_session, session_row.validation_token)


def test_sessions_api(api, seeded):
    trainer = api(seeded.trainer)
    created = trainer.post(
        "/sessions",
        json={
            "client_id": seeded.client.id,
            "package_id": seeded.package.id,
            "session_date": SESSION_DATE.isoformat(),
        },
    )
    assert created.status_code == 201
    token = created.json()["validation_token"]

    assert len(trainer.get("/sessions").json()) == 1
    assert trainer.get(f"/sessions/validate/{token}").json()["validated"] is True

    other = api(seeded.trainer2)
    assert other.get("/sessions").json() == []
    denied = other.post(
        "/sessions",
        json={
            "client_id": seeded.client.id,
            "package_id": seeded.package.id,
            "session_date": SESSION_DATE.isoformat(),
        },
    )
    assert denied.status_code == 403
    assert other.post(f"/sessions/{created.json()['id']}/cancel").status_code == 403


def test_package_rows_are_org_scoped(db_session, seeded):
    assert crud.get_package(db_session, seeded.org.id, seeded.package.id) is not None
    assert crud.get_package(db_session, seeded.org.id + 1, seeded.package.id) is None
