"""Tests for API middleware."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from catalog_api.application.catalog_service import CatalogService


class TestRequestIdMiddleware:
    """Tests for request ID correlation middleware."""

    def test_generates_request_id_if_not_provided(self, client: TestClient) -> None:
        """Should generate request ID if not in request headers."""
        response = client.get("/health")
        assert response.status_code == 200
        assert "X-Request-ID" in response.headers
        # UUID format
        request_id = response.headers["X-Request-ID"]
        assert len(request_id) == 36

    def test_uses_provided_request_id(self, client: TestClient) -> None:
        """Should use request ID from request headers."""
        custom_id = "custom-request-id-12345"
        response = client.get(
            "/health",
            headers={"X-Request-ID": custom_id},
        )
        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == custom_id


class TestIdentityMiddleware:
    """Tests for bearer credential verification."""

    def test_public_endpoints_dont_require_auth(self, client: TestClient) -> None:
        """Public endpoints should work without authentication."""
        assert client.get("/health").status_code == 200
        assert client.get("/ready").status_code == 200
        assert client.get("/items").status_code == 200

    def test_protected_endpoints_require_auth(self, client: TestClient) -> None:
        """Writes should require authentication."""
        response = client.post("/items", content=b"")
        assert response.status_code == 401
        data = response.json()
        assert data["error_code"] == "UNAUTHORIZED"
        assert data["request_id"] == response.headers["X-Request-ID"]

    def test_invalid_auth_format_rejected(self, client: TestClient) -> None:
        """Invalid authorization header format should be rejected."""
        response = client.post(
            "/items",
            content=b"",
            headers={"Authorization": "InvalidFormat"},
        )
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_unknown_token_rejected(self, client: TestClient) -> None:
        response = client.delete(
            "/items/anything",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    def test_rejected_caller_body_is_not_read(self, client: TestClient) -> None:
        """The service is never reached for an unauthenticated write."""
        with patch.object(CatalogService, "create_item") as create_item:
            response = client.post("/items", content=b"x" * 2048)

        assert response.status_code == 401
        create_item.assert_not_called()

    def test_valid_token_accepted(self, auth_client: TestClient) -> None:
        """Valid token should pass through to the route."""
        response = auth_client.delete("/items/missing")
        assert response.status_code == 404


class TestErrorHandlerMiddleware:
    """Tests for unhandled exception handling."""

    def test_unexpected_error_returns_500(self, client: TestClient) -> None:
        with patch.object(CatalogService, "get_item", side_effect=RuntimeError("boom")):
            response = client.get("/items/abc", headers={"X-Request-ID": "req-500"})

        assert response.status_code == 500
        data = response.json()
        assert data["error_code"] == "INTERNAL_ERROR"
        assert data["request_id"] == "req-500"
