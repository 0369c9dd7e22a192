from fastapi.testclient import TestClient

from shipgraph.adapters.mock_notifier import MockNotifier, get_notifier
from shipgraph.main import app

client = TestClient(app)


def test_health_ok():
    res = client.get("/api/health")
    assert res.status_code == 200
    body = res.json()
    assert "status" in body
    assert "db" in body
    assert "notifier" in body
    assert body["store_backend"] in ("relational", "wide_column")


def test_health_degraded_when_notifier_down():
    app.dependency_overrides[get_notifier] = lambda: MockNotifier(fail=True)
    try:
        body = client.get("/api/health").json()
    finally:
        app.dependency_overrides.clear()
    assert body["notifier"] is False
    assert body["status"] == "degraded"
