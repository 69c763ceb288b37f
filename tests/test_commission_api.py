from datetime import datetime
from decimal import Decimal

from ptdesk.models import AuditLog, TrainingSession

MARCH = {"period_start": "2025-03-01", "period_end": "2025-03-31"}


def _validated_session(db, seeded, trainer, day):
    db.add(
        TrainingSession(
            organization_id=seeded.org.id,
            trainer_id=trainer.id,
            client_id=seeded.client.id,
            package_id=seeded.package.id,
            location_id=trainer.location_id,
            session_date=datetime(2025, 3, day, 10, 0),
            session_value=Decimal("50.00"),
            validated=True,
        )
    )
    db.commit()


def test_trainer_calculates_own_commission(api, seeded, db_session):
    _validated_session(db_session, seeded, seeded.trainer, 3)

    response = api(seeded.trainer).post("/commission/calculate", json=MARCH)

    assert response.status_code == 200
    body = response.json()
    assert body["id"] is None
    assert body["user_id"] == seeded.trainer.id
    assert body["calculation_method"] == "FLAT"
    assert body["total_sessions"] == 1
    assert body["total_commission"] == 12.5
    assert body["calculation_snapshot"]["profile_name"] == "Standard"


def test_calculating_for_someone_else_needs_commission_rights(api, seeded):
    payload = {**MARCH, "user_id": seeded.trainer2.id}

    assert api(seeded.trainer).post("/commission/calculate", json=payload).status_code == 403
    assert api(seeded.club_manager).post("/commission/calculate", json=payload).status_code == 403
    assert api(seeded.pt_manager).post("/commission/calculate", json=payload).status_code == 200
    assert api(seeded.pt_manager).post("/commission/calculate", json={**MARCH, "user_id": 9999}).status_code == 404


def test_period_must_be_ordered(api, seeded):
    payload = {"period_start": "2025-03-31", "period_end": "2025-03-01"}
    assert api(seeded.trainer).post("/commission/calculate", json=payload).status_code == 422


def test_saved_calculations_show_in_history(api, seeded):
    manager = api(seeded.pt_manager)
    saved = manager.post(
        "/commission/calculate",
        json={**MARCH, "user_id": seeded.trainer.id, "save_calculation": True},
    )
    assert saved.status_code == 200
    assert saved.json()["id"] is not None

    history = manager.get(f"/commission/calculate?user_id={seeded.trainer.id}")
    assert [item["id"] for item in history.json()] == [saved.json()["id"]]
    assert api(seeded.trainer).get("/commission/calculate").json()[0]["id"] == saved.json()["id"]


def test_organization_calculation(api, seeded):
    assert api(seeded.trainer).post("/commission/calculate/organization", json=MARCH).status_code == 403

    response = api(seeded.admin).post("/commission/calculate/organization", json=MARCH)
    assert response.status_code == 200
    assert sorted(item["user_id"] for item in response.json()) == sorted([seeded.trainer.id, seeded.trainer2.id])


def test_report_is_scoped_to_the_viewer(api, seeded, db_session):
    _validated_session(db_session, seeded, seeded.trainer, 3)
    _validated_session(db_session, seeded, seeded.trainer2, 4)

    mine = api(seeded.trainer).get("/commission?month=2025-03").json()
    assert [row["trainer_id"] for row in mine["commissions"]] == [seeded.trainer.id]

    everyone = api(seeded.pt_manager).get("/commission?month=2025-03").json()
    assert everyone["summary"]["trainer_count"] == 2
    assert everyone["summary"]["total_commission"] == 25.0
    assert everyone["method_label"] == "Progressive Tier"

    club = api(seeded.club_manager)
    downtown = club.get("/commission?month=2025-03").json()
    assert [row["trainer_id"] for row in downtown["commissions"]] == [seeded.trainer.id]
    assert club.get(f"/commission?month=2025-03&location_id={seeded.uptown.id}").status_code == 403


def test_bad_month_is_rejected(api, seeded):
    assert api(seeded.admin).get("/commission?month=March").status_code == 400


def test_export_csv(api, seeded, db_session):
    _validated_session(db_session, seeded, seeded.trainer, 3)

    response = api(seeded.pt_manager).get("/commission/export?month=2025-03&format=csv")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="commission-report-2025-03.csv"' in response.headers["content-disposition"]
    assert response.text.splitlines()[0].startswith("Trainer Name")

    assert api(seeded.trainer).get("/commission/export?month=2025-03").status_code == 403
    assert api(seeded.pt_manager).get("/commission/export?month=2025-03&format=pdf").status_code == 422


def test_export_xlsx_media_type(api, seeded):
    response = api(seeded.admin).get("/commission/export?month=2025-03&format=xlsx")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )


def test_commission_method_settings(api, seeded, db_session):
    assert api(seeded.trainer).put("/commission/method", json={"method": "FLAT", "default_rate": "30"}).status_code == 403
    assert api(seeded.admin).put("/commission/method", json={"method": "FLAT"}).status_code == 400

    response = api(seeded.admin).put("/commission/method", json={"method": "flat", "default_rate": "30"})
    assert response.json() == {"success": True, "method": "FLAT", "default_rate": 30.0}
    assert api(seeded.trainer).get("/commission/method").json()["method"] == "FLAT"
    assert db_session.query(AuditLog).filter(AuditLog.action == "UPDATE_COMMISSION_METHOD").count() == 1


def test_tier_schedule_settings(api, seeded):
    current = api(seeded.trainer).get("/commission/tiers").json()["tiers"]
    assert [tier["min_sessions"] for tier in current] == [0, 31, 61]

    new_tiers = {
        "tiers": [
            {"min_sessions": 21, "max_sessions": None, "percentage": "40"},
            {"min_sessions": 0, "max_sessions": 20, "percentage": "20"},
        ]
    }
    assert api(seeded.club_manager).put("/commission/tiers", json=new_tiers).status_code == 403

    response = api(seeded.pt_manager).put("/commission/tiers", json=new_tiers)
    assert response.status_code == 200
    assert [tier["percentage"] for tier in response.json()["tiers"]] == [20.0, 40.0]
