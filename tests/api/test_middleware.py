"""Tests for API middleware."""

from fastapi.testclient import TestClient


class TestRequestIdMiddleware:
    """Tests for request ID correlation middleware."""

    def test_generates_request_id_if_not_provided(self, client: TestClient) -> None:
        """Should generate request ID if not in request headers."""
        response = client.get("/health")
        assert response.status_code == 200
        # UUID format
        assert len(response.headers["X-Request-ID"]) == 36

    def test_uses_provided_request_id(self, client: TestClient) -> None:
        """Should use request ID from request headers."""
        response = client.get("/health", headers={"X-Request-ID": "custom-request-id-12345"})
        assert response.headers["X-Request-ID"] == "custom-request-id-12345"

    def test_request_id_in_error_body(self, client: TestClient) -> None:
        """Error envelopes carry the request ID."""
        response = client.post(
            "/checkout",
            json={"full_name": "Ann"},
            headers={"X-Request-ID": "req-empty-cart"},
        )
        assert response.status_code == 422
        assert response.json()["request_id"] == "req-empty-cart"


class TestApiKeyMiddleware:
    """Tests for the internal API key check."""

    def test_storefront_endpoints_dont_require_key(self, client: TestClient) -> None:
        """Storefront endpoints authenticate by cookie, not by key."""
        assert client.get("/health").status_code == 200
        assert client.get("/cart").status_code == 200

    def test_internal_endpoints_require_key(self, client: TestClient) -> None:
        response = client.post("/internal/outbox/drain")
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_auth_format_rejected(self, client: TestClient) -> None:
        response = client.post("/internal/outbox/drain", headers={"Authorization": "InvalidFormat"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_invalid_api_key_rejected(self, client: TestClient) -> None:
        response = client.post("/internal/outbox/drain", headers={"Authorization": "Bearer invalid-key"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_API_KEY"

    def test_valid_api_key_accepted(self, client: TestClient, internal_headers) -> None:
        response = client.post("/internal/outbox/drain", headers=internal_headers)
        assert response.status_code == 200
