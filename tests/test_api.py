"""
HTTP surface tests with FastAPI's TestClient.

The aggregators are replaced through dependency overrides so no request
leaves the process.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClient, make_alert

from backend.app.alerts.alert_aggregator import AlertAggregator
from backend.app.alerts.models import AlertSeverity
from backend.app.api.v1.flood_risk import get_alert_aggregator, get_risk_aggregator
from backend.app.main import app
from backend.app.risk.models import CANONICAL_ORDER, FetchStatus, ProviderKind
from backend.app.risk.risk_aggregator import RiskAggregator


@pytest.fixture
def client(fake_clients):
    gov = FakeClient(ProviderKind.GOVERNMENT_REGISTRY, alerts=[
        make_alert("a", AlertSeverity.HIGH, 3),
        make_alert("b", AlertSeverity.MEDIUM, 1),
        make_alert("c", AlertSeverity.MEDIUM, 2),
    ])
    weather = FakeClient(ProviderKind.WEATHER, alerts=[])
    app.dependency_overrides[get_risk_aggregator] = lambda: RiskAggregator(fake_clients)
    app.dependency_overrides[get_alert_aggregator] = lambda: AlertAggregator({
        ProviderKind.GOVERNMENT_REGISTRY: gov,
        ProviderKind.WEATHER: weather,
    })
    yield TestClient(app)
    app.dependency_overrides.clear()


HANOI = {"latitude": 21.0285, "longitude": 105.8542, "name": "Hanoi", "province": "Hanoi"}


class TestAssessEndpoint:
    def test_assess(self, client):
        resp = client.post("/api/v1/flood-risk/assess", json=HANOI)
        assert resp.status_code == 200
        body = resp.json()
        assert body["overall_risk_score"] == 50
        assert body["risk_level"] == "high"
        assert body["confidence_level"] == "high"
        assert body["data_sources"] == [k.value for k in CANONICAL_ORDER]
        assert len(body["factors"]) == 4
        assert body["recommendations"]["immediate_actions"]
        assert "X-Request-ID" in resp.headers

    def test_invalid_latitude_422(self, client, fake_clients):
        resp = client.post("/api/v1/flood-risk/assess", json={**HANOI, "latitude": 95})
        assert resp.status_code == 422
        assert all(c.calls == 0 for c in fake_clients.values())

    def test_degraded_still_200(self, client, fake_clients):
        for c in fake_clients.values():
            c.status = FetchStatus.TIMEOUT
        body = client.post("/api/v1/flood-risk/assess", json=HANOI).json()
        assert body["data_sources"] == []
        assert body["confidence_level"] == "low"
        assert body["degraded"] is True

    def test_insufficient_data_503(self, fake_clients):
        for c in fake_clients.values():
            c.status = FetchStatus.NETWORK_ERROR
        app.dependency_overrides[get_risk_aggregator] = lambda: RiskAggregator(fake_clients, min_sources=1)
        try:
            resp = TestClient(app).post("/api/v1/flood-risk/assess", json=HANOI)
        finally:
            app.dependency_overrides.clear()
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "INSUFFICIENT_DATA"


class TestBatchEndpoint:
    def test_batch_preserves_order(self, client):
        locations = [{**HANOI, "name": f"p{i}"} for i in range(3)]
        resp = client.post("/api/v1/flood-risk/batch-assess", json={"locations": locations})
        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 3
        assert [a["location"]["name"] for a in body["assessments"]] == ["p0", "p1", "p2"]

    def test_empty_batch_rejected(self, client):
        resp = client.post("/api/v1/flood-risk/batch-assess", json={"locations": []})
        assert resp.status_code == 422

    def test_oversized_batch_rejected(self, client):
        resp = client.post("/api/v1/flood-risk/batch-assess", json={"locations": [HANOI] * 21})
        assert resp.status_code == 422


class TestAlertsEndpoint:
    def test_alerts(self, client):
        resp = client.get("/api/v1/flood-risk/alerts/Hanoi")
        assert resp.status_code == 200
        body = resp.json()
        assert body["summary"]["total_alerts"] == 3
        assert body["summary"]["high_severity_count"] == 1
        assert [a["id"] for a in body["alerts"]] == ["b", "c", "a"]

    def test_regional_summary(self, client):
        resp = client.get("/api/v1/flood-risk/regional-summary/Hanoi")
        assert resp.status_code == 200
        body = resp.json()
        assert body["province"] == "Hanoi"
        assert body["overall_risk_level"] == "low"
        assert body["recent_alerts"] == 3
        assert body["high_severity_alerts"] == 1
        assert body["recommendations"]

    def test_blank_province_422(self, client):
        resp = client.get("/api/v1/flood-risk/alerts/%20")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert resp.json()["error"]["request_id"] == resp.headers["X-Request-ID"]


class TestServiceEndpoints:
    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/docs"

    def test_health_reports_every_provider(self, client):
        body = client.get("/health").json()
        names = {c["name"] for c in body["components"]}
        assert {"weather", "elevation", "infrastructure", "government_registry"} <= names
        assert body["status"] in ("healthy", "degraded")

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_thresholds(self, client):
        body = client.get("/api/v1/flood-risk/thresholds").json()
        assert body["weights"]["weather"] == 0.3
        assert body["risk_levels"]["severe"] == "75 – 100"
        assert body["degraded_fallback"] == {
            "score": 25,
            "risk_level": "medium",
            "confidence_level": "low",
            "applies_when": "no provider answered before the deadline",
        }
