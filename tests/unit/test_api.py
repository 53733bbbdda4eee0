import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from hybrid_audit.llm.registry import ProviderRegistry
from hybrid_audit.main_api import app

from conftest import FakeProvider, make_fetcher, site_handler

AUDIT_BODY = {
    "url": "acme.test",
    "layer1": {"psi_enabled": False},
    "micro_audits": {"visual_mode": "none", "enable_codebase_peek": False, "enable_pdp": False},
}


@pytest.fixture
def client():
    registry = ProviderRegistry([FakeProvider("gemini"), FakeProvider("openai")])
    with patch("hybrid_audit.main_api.build_registry", return_value=registry), \
         patch("hybrid_audit.main_api.Fetcher", return_value=make_fetcher(site_handler())):
        with TestClient(app) as test_client:
            yield test_client


def parse_sse(text):
    events = []
    for block in text.replace("\r\n", "\n").strip().split("\n\n"):
        if block.startswith(":"):
            continue  # keep-alive ping
        lines = dict(line.split(": ", 1) for line in block.split("\n"))
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_post_audit_returns_report(client):
    response = client.post("/audit", json=AUDIT_BODY)

    assert response.status_code == 200
    report = response.json()
    assert report["error"] is None
    assert report["layer1"]["normalized_url"]["href"] == "https://acme.test/"
    assert "Missing H1 heading" in [f["finding"] for f in report["findings"]]


def test_invalid_url_is_rejected(client):
    response = client.post("/audit", json={"url": "https://"})

    assert response.status_code == 400
    assert response.json()["detail"].startswith("Invalid URL")


def test_stream_emits_progress_then_report(client):
    """
    WHY: UIs render progress from the stream and need the report as its last event.
    HOW: POST to the streaming endpoint and parse the SSE body.
    EXPECTED: An audit event first, layer progress in between, the report last with the same id.
    """
    response = client.post("/audit/stream", json=AUDIT_BODY)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(response.text)
    names = [name for name, _ in events]
    assert names[0] == "audit"
    assert names[-1] == "report"
    assert "layer1:start" in names
    assert "layer3:complete" in names
    assert events[-1][1]["audit_id"] == events[0][1]["audit_id"]
    assert all(data["type"] == name for name, data in events[1:-1])


def test_evidence_can_be_read_and_deleted(client):
    audit_id = client.post("/audit", json=AUDIT_BODY).json()["audit_id"]

    archive = client.get(f"/audits/{audit_id}/evidence")
    assert archive.status_code == 200
    assert archive.json()["final_report"]["audit_id"] == audit_id
    assert "robots" in archive.json()["raw_signals"]

    deleted = client.delete(f"/audits/{audit_id}/evidence")
    assert deleted.json() == {"status": "deleted", "audit_id": audit_id}
    assert client.get(f"/audits/{audit_id}/evidence").status_code == 404
    assert client.delete(f"/audits/{audit_id}/evidence").status_code == 404


def test_provider_status(client):
    response = client.get("/providers/status")

    assert response.json() == {
        "available": ["gemini", "openai"],
        "concurrency": {"gemini": {"active": 0, "max": 2}, "openai": {"active": 0, "max": 2}},
    }
