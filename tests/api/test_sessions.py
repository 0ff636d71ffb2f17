"""Tests for account session endpoints."""

from fastapi.testclient import TestClient

from app.api.dependencies import SESSION_COOKIE

LAPTOP = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/126.0",
    "X-Forwarded-For": "198.51.100.7, 10.0.0.1",
    "X-Vercel-IP-City": "Berlin",
    "X-Vercel-IP-Country": "DE",
}
PHONE = {
    "User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X) Mobile/15E148",
    "X-Real-IP": "198.51.100.8",
}


class TestListSessions:
    """Tests for GET /account/sessions."""

    def test_requires_sign_in(self, client: TestClient) -> None:
        response = client.get("/account/sessions")

        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_lists_current_session_first(
        self, client: TestClient, other_client: TestClient, seed_user, login
    ) -> None:
        seed_user()
        login(client, headers=LAPTOP)
        login(other_client, headers=PHONE)

        data = other_client.get("/account/sessions", headers=PHONE).json()

        current, other = data["sessions"]
        assert current["is_current"] is True
        assert current["device"] == "Mobile"
        assert current["os"] == "iOS"
        assert current["is_primary"] is False
        assert other["is_primary"] is True
        assert other["ip"] == "198.51.100.7"
        assert other["city"] == "Berlin"
        assert other["country"] == "DE"

    def test_new_session_waits_for_cooldown(
        self, client: TestClient, other_client: TestClient, seed_user, login
    ) -> None:
        seed_user()
        login(client, headers=LAPTOP)
        login(other_client, headers=PHONE)

        primary = client.get("/account/sessions", headers=LAPTOP).json()
        secondary = other_client.get("/account/sessions", headers=PHONE).json()

        assert primary["can_revoke_others"] is True
        assert primary["cooldown_hours_left"] is None
        assert secondary["can_revoke_others"] is False
        assert secondary["cooldown_hours_left"] == 24

    def test_same_device_sessions_are_collapsed(self, client: TestClient, seed_user, login) -> None:
        seed_user()
        login(client, headers=LAPTOP)
        login(client, headers=LAPTOP)

        data = client.get("/account/sessions", headers=LAPTOP).json()

        assert len(data["sessions"]) == 1
        assert data["sessions"][0]["is_current"] is True

    def test_bearer_header_is_accepted(self, client: TestClient, other_client: TestClient, seed_user, login) -> None:
        seed_user()
        token = login(client, headers=LAPTOP).cookies[SESSION_COOKIE]

        response = other_client.get("/account/sessions", headers={**LAPTOP, "Authorization": f"Bearer {token}"})

        assert response.status_code == 200


class TestRevokeSession:
    """Tests for POST /account/sessions/{id}/revoke."""

    def test_primary_revokes_other_session(
        self, client: TestClient, other_client: TestClient, seed_user, login
    ) -> None:
        seed_user()
        login(client, headers=LAPTOP)
        login(other_client, headers=PHONE)
        phone_id = other_client.get("/account/sessions", headers=PHONE).json()["sessions"][0]["id"]

        response = client.post(f"/account/sessions/{phone_id}/revoke")

        assert response.status_code == 200
        assert response.json()["session_id"] == phone_id
        assert other_client.get("/account/sessions", headers=PHONE).status_code == 401

    def test_young_session_is_refused(
        self, client: TestClient, other_client: TestClient, seed_user, login
    ) -> None:
        seed_user()
        login(client, headers=LAPTOP)
        login(other_client, headers=PHONE)
        laptop_id = client.get("/account/sessions", headers=LAPTOP).json()["sessions"][0]["id"]

        response = other_client.post(f"/account/sessions/{laptop_id}/revoke")

        assert response.status_code == 409
        assert response.json()["error_code"] == "REVOCATION_COOLDOWN"

    def test_own_session_is_refused(self, client: TestClient, seed_user, login) -> None:
        seed_user()
        login(client, headers=LAPTOP)
        own_id = client.get("/account/sessions", headers=LAPTOP).json()["sessions"][0]["id"]

        response = client.post(f"/account/sessions/{own_id}/revoke")

        assert response.status_code == 409
        assert response.json()["error_code"] == "SELF_REVOCATION"

    def test_unknown_session(self, client: TestClient, seed_user, login) -> None:
        seed_user()
        login(client, headers=LAPTOP)

        response = client.post("/account/sessions/9999/revoke")

        assert response.status_code == 404
        assert response.json()["error_code"] == "SESSION_NOT_FOUND"
