"""
HTTP tests for the FastAPI app

Tests cover:
- POST /api/analyze status mapping (200 / 400 / 429 / 500) and quota accounting
- GET /api/usage
- Health and front-end routes
"""

import pytest
from fastapi.testclient import TestClient

from apex_height.errors import UpstreamReasoningError
from apex_height.main import MALFORMED_REQUEST_MESSAGE, app
from apex_height.routers import analysis
from apex_height.services.analyzer import AnalyzeOrchestrator
from apex_height.services.dossier import DossierAssembler
from apex_height.services.quota import QuotaTracker

from conftest import FakeReasoner, FakeVision, make_data_uri


@pytest.fixture
def quota():
    return QuotaTracker(capacity=20)


@pytest.fixture
def wire(quota, knowledge_base, report):
    """Install fakes behind the router's dependencies; returns a configurator."""

    def _wire(vision=None, reasoner=None):
        orchestrator = AnalyzeOrchestrator(
            quota=quota,
            assembler=DossierAssembler(vision or FakeVision({0: ["person", "credit card"]})),
            reasoner=reasoner or FakeReasoner(report=report),
            knowledge_base=knowledge_base,
        )
        app.dependency_overrides[analysis.get_analyzer] = lambda: orchestrator
        app.dependency_overrides[analysis.get_quota_tracker] = lambda: quota
        return orchestrator

    yield _wire
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


# ============================================================================
# POST /api/analyze
# ============================================================================

class TestAnalyze:

    def test_success_returns_report_and_spends_unit(self, client, wire, quota):
        wire()

        response = client.post("/api/analyze", json={"images": [make_data_uri()]})

        assert response.status_code == 200
        body = response.json()
        assert body["estimation"] == "175 cm (5 ft 9 in)"
        assert body["confidenceScore"] == "85%"
        assert body["visualizationData"]["sourceImageIndex"] == 0
        assert body["visualizationData"]["referenceBox"] == {"x": 40, "y": 30, "w": 8, "h": 5}
        assert "postureCorrection" not in body
        assert quota.current_remaining() == 19

    def test_quota_exhausted_returns_429(self, client, wire, quota):
        wire()
        for _ in range(20):
            quota.try_reserve()

        response = client.post("/api/analyze", json={"images": [make_data_uri()]})

        assert response.status_code == 429
        assert "limit" in response.json()["error"]
        assert quota.current_remaining() == 0

    def test_empty_images_returns_400(self, client, wire, quota):
        wire()
        response = client.post("/api/analyze", json={"images": []})
        assert response.status_code == 400
        assert response.json() == {"error": "No image data provided."}
        assert quota.current_remaining() == 20

    @pytest.mark.parametrize("kwargs", [
        {"json": {}},
        {"json": {"images": "data:image/png;base64,AAAA"}},
        {"json": {"images": [123]}},
        {"json": {"image": "data:image/png;base64,AAAA"}},
        {"content": b"not json", "headers": {"Content-Type": "application/json"}},
    ])
    def test_malformed_body_returns_400(self, client, wire, quota, kwargs):
        wire()
        response = client.post("/api/analyze", **kwargs)
        assert response.status_code == 400
        assert response.json() == {"error": MALFORMED_REQUEST_MESSAGE}
        assert quota.current_remaining() == 20

    def test_oversized_body_returns_413(self, client, wire, quota, monkeypatch):
        wire()
        monkeypatch.setattr(app.state, "max_body_bytes", 1024)

        response = client.post("/api/analyze", json={"images": ["A" * 2048]})

        assert response.status_code == 413
        assert response.json() == {"error": "Request body is too large."}
        assert quota.current_remaining() == 20

    def test_too_many_images_returns_400(self, client, wire, quota):
        wire()
        response = client.post("/api/analyze", json={"images": [make_data_uri()] * 5})
        assert response.status_code == 400
        assert quota.current_remaining() == 20

    def test_no_person_returns_400_and_refunds(self, client, wire, quota):
        wire(vision=FakeVision({0: ["chair"]}))
        response = client.post("/api/analyze", json={"images": [make_data_uri()]})
        assert response.status_code == 400
        assert response.json() == {"error": "No person detected in any of the images."}
        assert quota.current_remaining() == 20

    def test_vision_failure_returns_500_without_upstream_detail(self, client, wire, quota):
        wire(vision=FakeVision({}, fail_on=0))
        response = client.post("/api/analyze", json={"images": [make_data_uri()]})
        assert response.status_code == 500
        assert "unauthorized" not in response.text
        assert quota.current_remaining() == 20

    def test_reasoning_failure_returns_500_and_refunds(self, client, wire, quota):
        wire(reasoner=FakeReasoner(error=UpstreamReasoningError("reasoning reply is not JSON")))
        response = client.post("/api/analyze", json={"images": [make_data_uri()]})
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to analyze image with the AI service."}
        assert quota.current_remaining() == 20


# ============================================================================
# GET /api/usage AND MISC
# ============================================================================

class TestUsage:

    def test_reports_remaining(self, client, wire, quota):
        wire()
        quota.try_reserve()
        response = client.get("/api/usage")
        assert response.status_code == 200
        body = response.json()
        assert body["remaining"] == 19
        assert body["capacity"] == 20
        assert "resetsAt" in body

    def test_usage_tracks_analyses(self, client, wire):
        wire()
        client.post("/api/analyze", json={"images": [make_data_uri()]})
        assert client.get("/api/usage").json()["remaining"] == 19


class TestMisc:

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_index_served(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "Apex Height Estimator" in response.text
