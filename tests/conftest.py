# tests/conftest.py
# Shared fixtures: an in-memory MongoDB (mongomock, with GridFS) swapped into
# the database module, a TestClient, and one account per role.

from datetime import date, timedelta

import mongomock
import mongomock.gridfs
import pytest
from fastapi.testclient import TestClient

import database
import main

mongomock.gridfs.enable_gridfs_integration()


@pytest.fixture
def mongo_db(monkeypatch):
    mock_client = mongomock.MongoClient()
    mock_db = mock_client["barangay_health_test"]
    monkeypatch.setattr(database, "client", mock_client)
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(mongo_db):
    return TestClient(main.app)


def _account_headers(**fields):
    account_id = database.create_document("accounts", fields)
    return {"X-Account-Id": account_id}


@pytest.fixture
def admin_headers(mongo_db):
    return _account_headers(email="admin@brgy.ph", role="admin", name="Admin User")


@pytest.fixture
def bhw_headers(mongo_db):
    return _account_headers(email="bhw@brgy.ph", role="bhw", name="Maria Santos",
                            contact_number="09171234567", barangay="Barangay 7")


@pytest.fixture
def other_bhw_headers(mongo_db):
    return _account_headers(email="bhw2@brgy.ph", role="bhw", name="Jose Cruz", barangay="Barangay 8")


@pytest.fixture
def household_headers(mongo_db):
    return _account_headers(email="juan@mail.ph", role="household", name="Juan Dela Cruz",
                            household_number="BRGY7-1")


# --- Sample payloads ---

def years_ago(years, days=0):
    today = date.today()
    try:
        birth = today.replace(year=today.year - years)
    except ValueError:
        birth = today.replace(year=today.year - years, day=28)
    return (birth - timedelta(days=days)).isoformat()


@pytest.fixture
def household_payload():
    return {
        "household_number": "BRGY7-1",
        "address": "Purok 3, Barangay 7",
        "head_of_household": "Juan Dela Cruz",
        "head_of_household_contact_number": "09171234567",
        "total_family": 4,
    }


@pytest.fixture
def resident_payload():
    return {
        "household_id": "BRGY7-1",
        "first_name": "Ana",
        "middle_name": "Reyes",
        "last_name": "Dela Cruz",
        "birth_date": years_ago(30, days=10),
        "birth_place": "Quezon City",
        "gender": "female",
        "email": "juan@mail.ph",
        "height": 160,
        "weight": 45,
        "marginalized_group": ["4ps"],
    }


@pytest.fixture
def medicine_payload():
    return {
        "med_code": "PARA500",
        "name": "Paracetamol",
        "description": "500mg tablet",
        "med_type": "tablet",
        "category": "analgesic",
        "supplier": "DOH",
        "quantity": 100,
        "exp_date": (date.today() + timedelta(days=365)).isoformat(),
    }
