from ptdesk.models import AuditLog, Package

STARTER = {
    "name": "Starter",
    "description": "Two free intro sessions",
    "default_sessions": 2,
    "default_price": "0",
    "start_trigger": "first_session",
    "expiry_duration_value": 1,
    "expiry_duration_unit": "months",
}


def test_managers_create_package_types(api, seeded, db_session):
    response = api(seeded.pt_manager).post("/package-types", json=STARTER)

    assert response.status_code == 201
    body = response.json()
    assert body["start_trigger"] == "FIRST_SESSION"
    assert body["expiry_duration_unit"] == "MONTHS"
    assert body["default_price"] == 0.0
    assert body["is_active"] is True

    entry = db_session.query(AuditLog).filter(AuditLog.action == "CREATE_PACKAGE_TYPE").one()
    assert entry.user_id == seeded.pt_manager.id


def test_package_type_role_checks(api, seeded):
    assert api(seeded.trainer).post("/package-types", json=STARTER).status_code == 403
    assert api(seeded.club_manager).post("/package-types", json=STARTER).status_code == 403

    created = api(seeded.admin).post("/package-types", json=STARTER).json()
    assert api(seeded.club_manager).put(f"/package-types/{created['id']}", json={"name": "X"}).status_code == 403
    assert api(seeded.pt_manager).delete(f"/package-types/{created['id']}").status_code == 403
    assert [item["name"] for item in api(seeded.trainer).get("/package-types").json()] == ["Starter"]


def test_package_type_validation(api, seeded):
    admin = api(seeded.admin)

    assert admin.post("/package-types", json={**STARTER, "start_trigger": "NEXT_MONDAY"}).status_code == 422
    assert admin.post("/package-types", json={**STARTER, "expiry_duration_unit": "YEARS"}).status_code == 422
    assert admin.post("/package-types", json={**STARTER, "expiry_duration_unit": None}).status_code == 422

    assert admin.post("/package-types", json=STARTER).status_code == 201
    duplicate = admin.post("/package-types", json={**STARTER, "name": "starter"})
    assert duplicate.status_code == 400
    assert "already exists" in duplicate.json()["detail"]


def test_update_package_type(api, seeded):
    manager = api(seeded.pt_manager)
    created = manager.post("/package-types", json=STARTER).json()

    response = manager.put(
        f"/package-types/{created['id']}",
        json={"start_trigger": "DATE_OF_PURCHASE", "expiry_duration_value": 6, "expiry_duration_unit": "WEEKS"},
    )
    assert response.status_code == 200
    assert response.json()["start_trigger"] == "DATE_OF_PURCHASE"
    assert response.json()["expiry_duration_value"] == 6

    half_cleared = manager.put(f"/package-types/{created['id']}", json={"expiry_duration_unit": None})
    assert half_cleared.status_code == 400

    retired = manager.put(f"/package-types/{created['id']}", json={"is_active": False})
    assert retired.json()["is_active"] is False
    assert manager.get("/package-types").json() == []
    assert len(manager.get("/package-types?include_inactive=true").json()) == 1


def test_first_session_package_sold_from_type(api, seeded, db_session):
    package_type = api(seeded.pt_manager).post("/package-types", json=STARTER).json()

    sold = api(seeded.club_manager).post(
        f"/clients/{seeded.client.id}/packages",
        json={"client_id": seeded.client.id, "package_type_id": package_type["id"]},
    )
    assert sold.status_code == 201
    body = sold.json()
    assert body["name"] == "Starter"
    assert body["total_sessions"] == 2
    assert body["total_value"] == 0.0
    assert body["effective_start_date"] is None
    assert body["expires_at"] is None

    logged = api(seeded.trainer).post(
        "/sessions",
        json={"client_id": seeded.client.id, "package_id": body["id"], "session_date": "2025-03-04T07:30:00"},
    )
    assert logged.status_code == 201

    package = db_session.get(Package, body["id"])
    db_session.refresh(package)
    assert package.effective_start_date.isoformat() == "2025-03-04"
    assert package.expires_at.isoformat() == "2025-04-04T00:00:00"


def test_purchase_date_package_type_sets_expiry_at_sale(api, seeded):
    package_type = api(seeded.admin).post(
        "/package-types",
        json={**STARTER, "name": "Ten Pack", "start_trigger": "DATE_OF_PURCHASE", "default_price": "450"},
    ).json()

    sold = api(seeded.admin).post(
        f"/clients/{seeded.client.id}/packages",
        json={
            "client_id": seeded.client.id,
            "package_type_id": package_type["id"],
            "total_sessions": 10,
            "start_date": "2025-01-31",
        },
    )

    assert sold.status_code == 201
    body = sold.json()
    assert body["total_value"] == 450.0
    assert body["session_value"] == 45.0
    assert body["effective_start_date"] == "2025-01-31"
    assert body["expires_at"] == "2025-02-28T00:00:00"


def test_package_without_type_needs_explicit_terms(api, seeded):
    response = api(seeded.admin).post(
        f"/clients/{seeded.client.id}/packages",
        json={"client_id": seeded.client.id, "name": "Custom"},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Name, total value and total sessions are required"


def test_inactive_package_type_cannot_be_sold(api, seeded):
    admin = api(seeded.admin)
    package_type = admin.post("/package-types", json=STARTER).json()
    admin.put(f"/package-types/{package_type['id']}", json={"is_active": False})

    response = admin.post(
        f"/clients/{seeded.client.id}/packages",
        json={"client_id": seeded.client.id, "package_type_id": package_type["id"]},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Package type is inactive"


def test_delete_package_type_rules(api, seeded):
    admin = api(seeded.admin)
    used = admin.post("/package-types", json=STARTER).json()
    admin.post(
        f"/clients/{seeded.client.id}/packages",
        json={"client_id": seeded.client.id, "package_type_id": used["id"]},
    )

    blocked = admin.delete(f"/package-types/{used['id']}")
    assert blocked.status_code == 400
    assert blocked.json()["detail"] == "Cannot delete package type with 1 associated packages"

    unused = admin.post("/package-types", json={**STARTER, "name": "Unused"}).json()
    assert admin.delete(f"/package-types/{unused['id']}").json() == {"success": True}
    assert admin.get(f"/package-types/{unused['id']}").status_code == 404


def test_location_management(api, seeded, db_session):
    manager = api(seeded.pt_manager)

    created = manager.post("/locations", json={"name": "  Riverside ", "address": "1 Quay St"})
    assert created.status_code == 201
    assert created.json()["name"] == "Riverside"
    assert manager.post("/locations", json={"name": "Downtown"}).status_code == 400

    renamed = manager.put(f"/locations/{created.json()['id']}", json={"name": "Uptown"})
    assert renamed.status_code == 400
    closed = manager.put(f"/locations/{created.json()['id']}", json={"active": False})
    assert closed.json()["active"] is False

    assert [item["name"] for item in manager.get("/locations").json()] == ["Downtown", "Uptown"]
    assert db_session.query(AuditLog).filter(AuditLog.action == "UPDATE_LOCATION").count() == 1


def test_location_role_checks_and_scoping(api, seeded):
    assert api(seeded.club_manager).post("/locations", json={"name": "Annex"}).status_code == 403
    assert api(seeded.trainer).put(f"/locations/{seeded.downtown.id}", json={"name": "Annex"}).status_code == 403

    assert [item["name"] for item in api(seeded.club_manager).get("/locations").json()] == ["Downtown"]
    assert [item["name"] for item in api(seeded.trainer2).get("/locations").json()] == ["Uptown"]
    assert api(seeded.trainer).get(f"/locations/{seeded.uptown.id}").status_code == 403
    assert api(seeded.trainer).get(f"/locations/{seeded.downtown.id}").status_code == 200
    assert api(seeded.admin).get("/locations/9999").status_code == 404
