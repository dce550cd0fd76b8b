from fastapi.testclient import TestClient

from greenguard import deps
from greenguard.config import Settings


def test_seed_stores_history(client: TestClient, store):
    response = client.post("/demo/seed", json={"count": 6, "seed": 1})

    assert response.status_code == 200
    data = response.json()
    assert len(data["telemetry_ids"]) == 6
    assert store.get_facility_rules(data["facility_id"]) is not None


def test_scenario_walks_normal_warning_anomaly(client: TestClient):
    response = client.post("/demo/scenario")

    assert response.status_code == 200
    severities = [r["verdict"]["severity"] for r in response.json()["results"]]
    assert severities[0] == "VERIFIED"
    assert severities[1] == "WARNING"
    assert severities[2] == "ANOMALY"


def test_logs_tail_without_log_dir(client: TestClient):
    data = client.get("/demo/logs/tail").json()
    assert data["ok"] is False


def test_demo_routes_hidden_outside_demo_mode(client: TestClient):
    from greenguard.main import app

    app.dependency_overrides[deps.get_settings] = lambda: Settings(demo_mode=False)
    assert client.post("/demo/scenario").status_code == 404
    assert client.get("/demo/logs/tail").status_code == 404
