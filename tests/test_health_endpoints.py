from fastapi.testclient import TestClient

from leadsync.main import app


client = TestClient(app)


def test_health_check():
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["service"] == "leadsync"


def test_health_ready_with_memory_store():
    resp = client.get("/health/ready")
    assert resp.status_code == 200
    checks = resp.json()
    assert checks["lead_store"] == "memory"
    assert checks["database"] == "not_used"
    assert checks["ready"] is True


def test_health_ready_reports_database_failure(monkeypatch):
    from leadsync import database
    from leadsync.config import Config, config

    class BrokenEngine:
        def connect(self):
            raise RuntimeError("connection refused")

    monkeypatch.setattr(Config, "LEAD_STORE_BACKEND", "sql")
    monkeypatch.setattr(config, "LEAD_STORE_BACKEND", "sql")
    monkeypatch.setattr(database, "engine", BrokenEngine())

    resp = client.get("/health/ready")
    assert resp.status_code == 503
    checks = resp.json()
    assert checks["database"] is False
    assert checks["ready"] is False


def test_health_info():
    resp = client.get("/health/info")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service"] == "leadsync"
    assert sorted(data["pipelines"]) == ["ama", "billcut", "crm"]
    assert "configuration" in data
    assert "features" in data


def test_metrics_endpoint():
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "text/plain" in resp.headers.get("content-type", "")
    assert "api_requests_total" in resp.text
