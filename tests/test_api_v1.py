"""
Tests for system endpoints and the shared error contract
"""

from fastapi.testclient import TestClient

from app import app

client = TestClient(app)


class TestHealthEndpoints:
    """Test system health and availability"""

    def test_root_endpoint(self):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "name" in data
        assert data["version"] == "1.0.0"

    def test_health_check(self):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_api_directory(self):
        data = client.get("/api/v1").json()
        assert data["endpoints"]["progress"]["path"] == "/progress"

    def test_openapi_schema(self):
        response = client.get("/openapi.json")
        assert response.status_code == 200
        paths = response.json()["paths"]
        for path in [
            "/progress",
            "/courses/{courseId}/access",
            "/analytics/course/{courseId}",
            "/ai/adaptive",
            "/ai/spaced",
            "/certificates",
            "/social/friends",
            "/social/activity",
        ]:
            assert path in paths


class TestErrorContract:
    def test_correlation_headers(self):
        response = client.get("/health", headers={"X-Correlation-ID": "trace-123"})
        assert response.headers["X-Correlation-ID"] == "trace-123"
        assert response.headers["X-Request-ID"].startswith("req_")

    def test_unauthenticated_error_body(self):
        response = client.get("/users/stats")
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Unauthorized"
        assert body["status_code"] == 401

    def test_unknown_route(self):
        response = client.get("/does-not-exist")
        assert response.status_code == 404
        assert "error" in response.json()
