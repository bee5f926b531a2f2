# tests/test_service.py
# Service endpoints, accounts, BHW roster and dashboards.

import pytest
from fastapi.testclient import TestClient

import database
import main
from conftest import years_ago


def test_root(client):
    assert client.get("/").json() == {"message": "Barangay Health API running"}


def test_database_status(client, bhw_headers):
    body = client.get("/test").json()
    assert body["connection_status"] == "Connected"
    assert "accounts" in body["collections"]


def test_schema_lists_every_collection(client):
    body = client.get("/schema").json()
    assert {"household", "resident", "medicine", "medicine_released", "announcement",
            "message", "report", "monthly_report"} <= set(body)


def test_database_unavailable_is_503(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    no_db = TestClient(main.app)
    resp = no_db.get("/households", headers={"X-Account-Id": "65f000000000000000000000"})
    assert resp.status_code == 503
    assert no_db.get("/test").json()["connection_status"] == "Not Connected"


def test_unknown_account_is_401(client):
    assert client.get("/accounts/me", headers={"X-Account-Id": "65f000000000000000000000"}).status_code == 401
    assert client.get("/accounts/me", headers={"X-Account-Id": "nope"}).status_code == 401


# --- Accounts ---

def test_sign_up_creates_household_account(client):
    resp = client.post("/sign-up", json={"email": "new@mail.ph", "first_name": "Rosa", "last_name": "Luna"})
    assert resp.status_code == 201
    me = client.get("/accounts/me", headers={"X-Account-Id": resp.json()["id"]}).json()
    assert me["role"] == "household"
    assert me["name"] == "Rosa Luna"


def test_sign_up_cannot_claim_staff_role(client):
    assert client.post("/sign-up", json={"email": "x@mail.ph", "role": "admin"}).status_code == 403


def test_sign_up_duplicate_email(client, household_headers):
    assert client.post("/sign-up", json={"email": "juan@mail.ph"}).status_code == 409


def test_update_own_account(client, household_headers):
    resp = client.patch("/accounts/me", json={"contact_number": "09991234567"}, headers=household_headers)
    assert resp.json()["contact_number"] == "09991234567"
    assert client.patch("/accounts/me", json={}, headers=household_headers).json() == {"updated": False}


def test_admin_creates_accounts(client, admin_headers, bhw_headers):
    resp = client.post("/accounts", json={"email": "admin2@brgy.ph", "role": "admin"}, headers=admin_headers)
    assert resp.status_code == 201
    assert client.post("/accounts", json={"email": "z@brgy.ph"}, headers=bhw_headers).status_code == 403


# --- BHW roster ---

@pytest.fixture
def bhw_payload():
    return {
        "email": "pedro@brgy.ph",
        "name": "Pedro Reyes",
        "contact_number": "09181234567",
        "birth_date": years_ago(35),
        "gender": "male",
        "barangay": "Barangay 7",
    }


def test_bhw_roster_crud(client, admin_headers, bhw_payload):
    resp = client.post("/bhws", json=bhw_payload, headers=admin_headers)
    assert resp.status_code == 201
    bhw_id = resp.json()["id"]

    assert client.post("/bhws", json=bhw_payload, headers=admin_headers).status_code == 409

    found = client.get("/bhws", params={"search": "pedro"}, headers=admin_headers).json()
    assert [b["id"] for b in found] == [bhw_id]

    resp = client.patch(f"/bhws/{bhw_id}", json={"status": "married"}, headers=admin_headers)
    assert resp.json()["status"] == "married"

    assert client.delete(f"/bhws/{bhw_id}", headers=admin_headers).json() == {"deleted": True}
    assert client.get(f"/bhws/{bhw_id}", headers=admin_headers).status_code == 404


def test_bhw_routes_do_not_touch_other_roles(client, admin_headers, household_headers):
    household_id = household_headers["X-Account-Id"]
    assert client.get(f"/bhws/{household_id}", headers=admin_headers).status_code == 404


def test_bhw_roster_is_admin_only(client, bhw_headers, bhw_payload):
    assert client.post("/bhws", json=bhw_payload, headers=bhw_headers).status_code == 403


# --- Dashboards ---

def test_admin_dashboard(client, admin_headers, bhw_headers, household_headers,
                         household_payload, resident_payload):
    client.post("/households", json=household_payload, headers=bhw_headers)
    client.post("/residents", json=resident_payload, headers=bhw_headers)
    client.post("/residents", json={**resident_payload, "first_name": "Lolo", "birth_date": years_ago(70)},
                headers=bhw_headers)
    client.post("/messages", json={"receiver_id": bhw_headers["X-Account-Id"], "message": "Ubo at sipon",
                                   "message_type": "consultation"}, headers=household_headers)

    body = client.get("/dashboard/admin", headers=admin_headers).json()
    assert body["total_population"] == 2
    assert body["age_categories"]["adult"] == 1
    assert body["age_categories"]["senior"] == 1
    assert body["patients_served"] == 1
    assert len(body["recent_residents"]) == 2


def test_resident_dashboard(client, bhw_headers, household_headers, household_payload, resident_payload):
    client.post("/households", json=household_payload, headers=bhw_headers)
    client.post("/residents", json=resident_payload, headers=bhw_headers)
    client.post("/messages", json={"receiver_id": household_headers["X-Account-Id"], "message": "Checkup bukas"},
                headers=bhw_headers)

    body = client.get("/dashboard/resident", headers=household_headers).json()
    assert len(body["recent_messages"]) == 1
    assert body["resident"]["first_name"] == "Ana"
    assert body["health"]["bmi"] == 17.58
    assert body["health"]["bmi_category"] == "underweight"
    assert body["health"]["health_status"] == "Monitor"
    assert body["health"]["age"] == 30
