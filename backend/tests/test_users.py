"""Tests for User endpoints."""
from tests.conftest import create_test_user


class TestUsers:
    """User create / get."""

    def test_create_user(self, client):
        data = create_test_user(client, name="Alice", email="alice@example.com")
        assert data["displayName"] == "Alice"
        assert data["email"] == "alice@example.com"
        assert "userId" in data

    def test_create_user_accepts_snake_case(self, client):
        resp = client.post("/api/users/", json={"display_name": "Bob"})
        assert resp.status_code == 201
        assert resp.json()["displayName"] == "Bob"

    def test_get_user(self, client):
        user = create_test_user(client)
        resp = client.get(f"/api/users/{user['userId']}")
        assert resp.status_code == 200
        assert resp.json()["displayName"] == "Test User"

    def test_get_user_not_found(self, client):
        resp = client.get("/api/users/00000000-0000-0000-0000-000000000000")
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "NOT_FOUND"

    def test_create_user_requires_name(self, client):
        resp = client.post("/api/users/", json={"email": "nobody@example.com"})
        assert resp.status_code == 422

    def test_health_endpoint(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
