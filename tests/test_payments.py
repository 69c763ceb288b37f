from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from ptdesk import crud
from ptdesk.auth import ROLE_TRAINER
from ptdesk.models import Client, Organization, Package, TrainingSession
from ptdesk.schemas import PaymentCreate, PaymentUpdate

from conftest import make_user


def _open_package(db, seeded, total_value="1000.00", total_sessions=10):
    package = Package(
        organization_id=seeded.org.id,
        client_id=seeded.client.id,
        name="Open balance",
        total_value=Decimal(total_value),
        total_sessions=total_sessions,
        remaining_sessions=total_sessions,
        session_value=Decimal(total_value) / total_sessions,
    )
    db.add(package)
    db.commit()
    return package


def _use_sessions(db, seeded, package, count):
    for index in range(count):
        db.add(
            TrainingSession(
                organization_id=seeded.org.id,
                trainer_id=seeded.trainer.id,
                client_id=seeded.client.id,
                package_id=package.id,
                session_date=datetime(2025, 3, 1 + index, 9, 0),
                session_value=package.session_value,
            )
        )
    db.commit()


def test_record_payment_within_balance(db_session, seeded):
    package = _open_package(db_session, seeded)

    payment = crud.create_payment(
        db_session,
        seeded.org.id,
        PaymentCreate(
            package_id=package.id,
            amount=Decimal("400"),
            payment_method="bank_transfer",
            sales_attributed_to_id=seeded.trainer.id,
        ),
        actor_id=seeded.admin.id,
    )

    assert payment.amount == Decimal("400.00")
    assert payment.payment_method == "BANK_TRANSFER"
    assert payment.created_by_id == seeded.admin.id
    summary = crud.package_payment_summary(db_session, package)
    assert summary.unlocked_sessions == 4


def test_overpayment_is_rejected_beyond_tolerance(db_session, seeded):
    package = _open_package(db_session, seeded)

    with pytest.raises(ValueError, match="remaining balance of \\$1000.00"):
        crud.create_payment(db_session, seeded.org.id, PaymentCreate(package_id=package.id, amount=Decimal("1000.02")))

    payment = crud.create_payment(
        db_session, seeded.org.id, PaymentCreate(package_id=package.id, amount=Decimal("1000.01"))
    )
    assert payment.id is not None


def test_payment_validation_rules():
    with pytest.raises(ValidationError):
        PaymentCreate(package_id=1, amount=Decimal("0"))
    with pytest.raises(ValidationError):
        PaymentCreate(package_id=1, amount=Decimal("10"), payment_method="CASH")
    with pytest.raises(ValidationError, match="same person twice"):
        PaymentCreate(package_id=1, amount=Decimal("10"), sales_attributed_to_id=3, sales_attributed_to2_id=3)


def test_attributee_must_belong_to_organization(db_session, seeded):
    package = _open_package(db_session, seeded)
    other = Organization(name="Rival Gym", email="rival@example.com")
    db_session.add(other)
    db_session.flush()
    outsider = make_user(db_session, other, "outsider@example.com", ROLE_TRAINER)
    db_session.commit()

    with pytest.raises(LookupError):
        crud.create_payment(
            db_session,
            seeded.org.id,
            PaymentCreate(package_id=package.id, amount=Decimal("100"), sales_attributed_to_id=outsider.id),
        )


def test_package_from_other_organization_is_not_found(db_session, seeded):
    other = Organization(name="Rival Gym", email="rival@example.com")
    db_session.add(other)
    db_session.commit()

    with pytest.raises(LookupError):
        crud.create_payment(db_session, other.id, PaymentCreate(package_id=seeded.package.id, amount=Decimal("1")))


def test_delete_payment_cannot_strand_used_sessions(db_session, seeded):
    package = _open_package(db_session, seeded)
    first = crud.create_payment(db_session, seeded.org.id, PaymentCreate(package_id=package.id, amount=Decimal("300")))
    second = crud.create_payment(db_session, seeded.org.id, PaymentCreate(package_id=package.id, amount=Decimal("200")))
    _use_sessions(db_session, seeded, package, 3)

    with pytest.raises(ValueError, match="3 sessions have been used"):
        crud.delete_payment(db_session, first)

    crud.delete_payment(db_session, second)
    db_session.refresh(package)
    assert [payment.id for payment in package.payments] == [first.id]


def test_reducing_payment_checks_unlocked_sessions(db_session, seeded):
    package = _open_package(db_session, seeded)
    payment = crud.create_payment(db_session, seeded.org.id, PaymentCreate(package_id=package.id, amount=Decimal("500")))
    _use_sessions(db_session, seeded, package, 3)

    with pytest.raises(ValueError, match="Cannot reduce payment"):
        crud.update_payment(db_session, payment, PaymentUpdate(amount=Decimal("250")))

    updated = crud.update_payment(db_session, payment, PaymentUpdate(amount=Decimal("300"), notes="Partial refund"))
    assert updated.amount == Decimal("300.00")
    assert updated.notes == "Partial refund"


def test_update_rejects_duplicate_attribution(db_session, seeded):
    payment = crud.get_payment(db_session, seeded.org.id, seeded.payment.id)
    crud.update_payment(db_session, payment, PaymentUpdate(sales_attributed_to_id=seeded.trainer.id))

    with pytest.raises(ValueError, match="same person twice"):
        crud.update_payment(db_session, payment, PaymentUpdate(sales_attributed_to2_id=seeded.trainer.id))


def test_list_payments_filters(db_session, seeded):
    uptown_client = Client(
        organization_id=seeded.org.id,
        location_id=seeded.uptown.id,
        primary_trainer_id=seeded.trainer2.id,
        name="Uptown Client",
    )
    db_session.add(uptown_client)
    db_session.flush()
    package = Package(
        organization_id=seeded.org.id,
        client_id=uptown_client.id,
        name="5 Pack",
        total_value=Decimal("250.00"),
        total_sessions=5,
        remaining_sessions=5,
        session_value=Decimal("50.00"),
    )
    db_session.add(package)
    db_session.commit()
    crud.create_payment(
        db_session,
        seeded.org.id,
        PaymentCreate(package_id=package.id, amount=Decimal("250"), payment_date=datetime(2025, 4, 2)),
    )

    assert len(crud.list_payments(db_session, seeded.org.id)) == 2
    assert len(crud.list_payments(db_session, seeded.org.id, trainer_id=seeded.trainer2.id)) == 1
    assert len(crud.list_payments(db_session, seeded.org.id, location_id=seeded.downtown.id)) == 1
    march = crud.list_payments(
        db_session, seeded.org.id, start_date=datetime(2025, 3, 1).date(), end_date=datetime(2025, 3, 31).date()
    )
    assert [payment.id for payment in march] == [seeded.payment.id]


def test_payments_api(api, seeded):
    manager = api(seeded.pt_manager)
    package_id = seeded.package.id

    listing = manager.get("/payments")
    assert listing.status_code == 200
    assert listing.json()["totals"] == {"count": 1, "amount": 500.0}
    assert listing.json()["payments"][0]["client_name"] == "Casey Client"

    over = manager.post("/payments", json={"package_id": package_id, "amount": "10.00"})
    assert over.status_code == 400

    trainer = api(seeded.trainer)
    assert trainer.get("/payments").status_code == 403
    summary = trainer.get(f"/payments/packages/{package_id}/summary")
    assert summary.status_code == 200
    assert summary.json()["is_fully_paid"] is True
