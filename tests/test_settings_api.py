"""API tests for the profile, company and notification settings routes."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.main import app
from cpa_hub.logs import fetch_activity_entries
from cpa_hub.permissions import load_api_user
from cpa_hub.preferences import DEFAULT_COMPANY_NAME


client = TestClient(app)
STAFF_HEADERS = {"X-User-Email": "staff@example.com"}
ADMIN_HEADERS = {"X-User-Email": "admin@example.com"}


@pytest.fixture(autouse=True)
def roles(isolated_store, save_profile_as):
    save_profile_as("admin@example.com", "admin")


class TestProfile:
    """/api/settings/profile"""

    def test_defaults(self):
        body = client.get("/api/settings/profile", headers=STAFF_HEADERS).json()
        assert body["email"] == "staff@example.com"
        assert body["fullName"] == ""
        assert body["jobTitle"] == ""

    def test_update(self):
        resp = client.put(
            "/api/settings/profile",
            json={"fullName": "Sam Staff", "jobTitle": "Senior Associate"},
            headers=STAFF_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["profile"]["fullName"] == "Sam Staff"

        body = client.get("/api/settings/profile", headers=STAFF_HEADERS).json()
        assert body["jobTitle"] == "Senior Associate"
        assert load_api_user("staff@example.com").role == "staff"

    def test_update_keeps_role(self):
        client.put("/api/settings/profile", json={"phone": "555-0100"}, headers=ADMIN_HEADERS)
        assert load_api_user("admin@example.com").role == "admin"

    def test_role_is_not_a_profile_field(self):
        resp = client.put("/api/settings/profile", json={"role": "owner"}, headers=STAFF_HEADERS)
        assert resp.status_code == 400
        assert "role" in resp.json()["detail"]
        assert load_api_user("staff@example.com").role == "staff"

    def test_non_string_rejected(self):
        resp = client.put("/api/settings/profile", json={"fullName": 42}, headers=STAFF_HEADERS)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "fullName must be a string"


class TestCompany:
    """/api/settings/company"""

    def test_defaults(self):
        body = client.get("/api/settings/company", headers=STAFF_HEADERS).json()
        assert body["companyName"] == DEFAULT_COMPANY_NAME
        assert body["timezone"] == "cst"
        assert body["taxId"] == ""

    def test_staff_cannot_update(self):
        resp = client.put("/api/settings/company", json={"companyName": "Mine"}, headers=STAFF_HEADERS)
        assert resp.status_code == 403
        assert client.get("/api/settings/company", headers=STAFF_HEADERS).json()["companyName"] == DEFAULT_COMPANY_NAME

    def test_admin_update_is_logged(self):
        resp = client.put(
            "/api/settings/company",
            json={"companyName": "Rivera & Co CPAs", "website": "https://rivera.example"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["company"]["companyName"] == "Rivera & Co CPAs"

        client.put("/api/settings/company", json={"companyPhone": "555-0199"}, headers=ADMIN_HEADERS)
        body = client.get("/api/settings/company", headers=STAFF_HEADERS).json()
        assert body["website"] == "https://rivera.example"
        assert body["companyPhone"] == "555-0199"

        entries = fetch_activity_entries(10, resource_type="settings")
        assert entries[0]["user_email"] == "admin@example.com"
        assert entries[0]["action"] == "updated"

    def test_unknown_field(self):
        resp = client.put("/api/settings/company", json={"logo": "x.png"}, headers=ADMIN_HEADERS)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Unknown fields: logo"


class TestNotifications:
    """/api/settings/notifications"""

    def test_defaults(self):
        body = client.get("/api/settings/notifications", headers=STAFF_HEADERS).json()
        assert body["emailNewTask"] is True
        assert body["smsEnabled"] is False
        assert body["quietHoursStart"] == "22:00"

    def test_update_is_per_user(self):
        resp = client.put(
            "/api/settings/notifications",
            json={"smsEnabled": True, "quietHoursEnabled": True, "quietHoursEnd": "06:30"},
            headers=STAFF_HEADERS,
        )
        assert resp.status_code == 200
        preferences = resp.json()["preferences"]
        assert preferences["smsEnabled"] is True
        assert preferences["quietHoursEnd"] == "06:30"
        assert preferences["emailWeeklySummary"] is True

        other = client.get("/api/settings/notifications", headers=ADMIN_HEADERS).json()
        assert other["smsEnabled"] is False

    def test_false_overrides_default(self):
        client.put("/api/settings/notifications", json={"emailNewTask": False}, headers=STAFF_HEADERS)
        assert client.get("/api/settings/notifications", headers=STAFF_HEADERS).json()["emailNewTask"] is False

    @pytest.mark.parametrize(
        "payload, detail",
        [
            ({"smsEnabled": "yes"}, "smsEnabled must be true or false"),
            ({"quietHoursStart": "25:00"}, "quietHoursStart must be HH:MM"),
            ({"quietHoursEnd": 7}, "quietHoursEnd must be HH:MM"),
            ({"pushEnabled": True}, "Unknown fields: pushEnabled"),
        ],
    )
    def test_invalid(self, payload, detail):
        resp = client.put("/api/settings/notifications", json=payload, headers=STAFF_HEADERS)
        assert resp.status_code == 400
        assert resp.json()["detail"] == detail
