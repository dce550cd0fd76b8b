from fastapi.testclient import TestClient


def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "ts" in data
    # Offline test env: every source is synthetic / heuristic
    assert data["sources"] == {"weather": False, "grid": False, "ai": False}


def test_request_id_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_request_id_generated(client: TestClient):
    assert client.get("/health").headers.get("X-Request-ID")
