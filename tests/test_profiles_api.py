import json

from ptdesk.models import AuditLog, CommissionProfile

PROFILE = {
    "name": "Senior Trainers",
    "description": "Graduated rates for senior staff",
    "calculation_method": "graduated",
    "trigger_type": "session_count",
    "tiers": [
        {"tier_level": 2, "session_threshold": 20, "session_commission_percent": "30"},
        {"tier_level": 1, "session_threshold": 0, "session_commission_percent": "20"},
    ],
}


def test_admin_creates_profile(api, seeded, db_session):
    response = api(seeded.admin).post("/commission/profiles", json=PROFILE)

    assert response.status_code == 201
    body = response.json()
    assert body["calculation_method"] == "GRADUATED"
    assert body["trigger_type"] == "SESSION_COUNT"
    assert [tier["tier_level"] for tier in body["tiers"]] == [1, 2]
    assert body["tiers"][0]["name"] == "Tier 1"
    assert body["user_count"] == 0

    entry = db_session.query(AuditLog).filter(AuditLog.action == "CREATE_COMMISSION_PROFILE").one()
    assert entry.user_id == seeded.admin.id
    assert json.loads(entry.details)["tiers_count"] == 2


def test_only_admins_change_profiles(api, seeded):
    assert api(seeded.pt_manager).post("/commission/profiles", json=PROFILE).status_code == 403
    assert api(seeded.pt_manager).get("/commission/profiles").status_code == 200
    assert api(seeded.club_manager).get("/commission/profiles").status_code == 403
    assert api(seeded.trainer).get("/commission/profiles").status_code == 403


def test_profile_payload_validation(api, seeded):
    admin = api(seeded.admin)

    assert admin.post("/commission/profiles", json={**PROFILE, "tiers": []}).status_code == 422
    assert admin.post("/commission/profiles", json={**PROFILE, "calculation_method": "WEEKLY"}).status_code == 422
    duplicate_levels = {**PROFILE, "tiers": [{"tier_level": 1}, {"tier_level": 1}]}
    assert admin.post("/commission/profiles", json=duplicate_levels).status_code == 422


def test_duplicate_name_is_rejected(api, seeded):
    admin = api(seeded.admin)
    assert admin.post("/commission/profiles", json=PROFILE).status_code == 201

    response = admin.post("/commission/profiles", json=PROFILE)
    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]


def test_new_default_replaces_old_default(api, seeded, db_session):
    admin = api(seeded.admin)
    created = admin.post("/commission/profiles", json={**PROFILE, "is_default": True}).json()

    defaults = db_session.query(CommissionProfile).filter(CommissionProfile.is_default.is_(True)).all()
    assert [profile.id for profile in defaults] == [created["id"]]


def test_update_replaces_tiers(api, seeded):
    admin = api(seeded.admin)
    created = admin.post("/commission/profiles", json=PROFILE).json()

    response = admin.put(
        f"/commission/profiles/{created['id']}",
        json={
            "description": "Flat for now",
            "calculation_method": "FLAT",
            "tiers": [{"tier_level": 1, "session_flat_fee": "12.50"}],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Senior Trainers"
    assert body["calculation_method"] == "FLAT"
    assert len(body["tiers"]) == 1
    assert body["tiers"][0]["session_flat_fee"] == 12.5


def test_delete_rules(api, seeded):
    admin = api(seeded.admin)

    default_delete = admin.delete(f"/commission/profiles/{seeded.default_profile.id}")
    assert default_delete.status_code == 400
    assert default_delete.json()["detail"] == "Cannot delete default profile"

    created = admin.post("/commission/profiles", json=PROFILE).json()
    assigned = admin.post(f"/commission/profiles/{created['id']}/assign", json={"user_ids": [seeded.trainer.id]})
    assert assigned.status_code == 200
    in_use = admin.delete(f"/commission/profiles/{created['id']}")
    assert in_use.status_code == 400
    assert "assigned users (1)" in in_use.json()["detail"]

    spare = admin.post("/commission/profiles", json={**PROFILE, "name": "Spare"}).json()
    assert admin.delete(f"/commission/profiles/{spare['id']}").json() == {"success": True}

    names = [profile["name"] for profile in admin.get("/commission/profiles").json()]
    assert "Spare" not in names
    all_names = [profile["name"] for profile in admin.get("/commission/profiles?include_inactive=true").json()]
    assert "Spare" in all_names


def test_update_cannot_retire_default_or_assigned_profiles(api, seeded):
    admin = api(seeded.admin)
    default_url = f"/commission/profiles/{seeded.default_profile.id}"

    deactivate_default = admin.put(default_url, json={"is_active": False})
    assert deactivate_default.status_code == 400
    assert deactivate_default.json()["detail"] == "Cannot deactivate default profile"
    unset_default = admin.put(default_url, json={"is_default": False})
    assert unset_default.status_code == 400
    assert "Cannot unset the default profile" in unset_default.json()["detail"]

    created = admin.post("/commission/profiles", json=PROFILE).json()
    admin.post(f"/commission/profiles/{created['id']}/assign", json={"user_ids": [seeded.trainer.id]})
    in_use = admin.put(f"/commission/profiles/{created['id']}", json={"is_active": False})
    assert in_use.status_code == 400
    assert "assigned users (1)" in in_use.json()["detail"]

    assert admin.get(default_url).json()["is_default"] is True
    assert admin.get(f"/commission/profiles/{created['id']}").json()["is_active"] is True

    spare = admin.post("/commission/profiles", json={**PROFILE, "name": "Spare"}).json()
    retired = admin.put(f"/commission/profiles/{spare['id']}", json={"is_active": False})
    assert retired.status_code == 200
    assert retired.json()["is_active"] is False


def test_profiles_from_other_organizations_are_hidden(api, seeded):
    response = api(seeded.admin).get("/commission/profiles/9999")
    assert response.status_code == 404


def test_assign_rejects_non_trainers(api, seeded):
    admin = api(seeded.admin)
    created = admin.post("/commission/profiles", json=PROFILE).json()

    response = admin.post(f"/commission/profiles/{created['id']}/assign", json={"user_ids": [seeded.club_manager.id]})
    assert response.status_code == 404
