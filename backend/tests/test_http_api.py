from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from car_assistant.core import llm
from car_assistant.main import app
from car_assistant.services.remote import remote_extractor

client = TestClient(app)

SCENARIO_ONE = "我想买15万的车，首付2万5，月供3000左右"


@pytest.fixture(autouse=True)
def _no_credential(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(remote_extractor, "_api_key", None)


def test_health_reports_remote_state() -> None:
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["remote_configured"] is False
    assert body["active_sessions"] == {}


def test_extract_without_credential_answers_locally() -> None:
    response = client.post("/v1/extract", json={"text": SCENARIO_ONE})

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "local"
    assert body["remote"] is None
    assert body["remote_error"] is None
    assert body["merged"] == {
        "carPrice": "15万元",
        "downPayment": "2.5万元",
        "monthlyPayment": "3000元",
        "loanTerm": None,
    }


def test_extract_overlays_remote_values(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_generate(messages, **kwargs):
        return '{"carPrice": "15万元", "downPayment": null, "monthlyPayment": "3000元", "loanTerm": "3年"}'

    monkeypatch.setattr(remote_extractor, "_api_key", "sk-test")
    monkeypatch.setattr(llm, "generate", fake_generate)

    body = client.post("/v1/extract", json={"text": SCENARIO_ONE}).json()

    assert body["source"] == "remote"
    assert body["remote"]["downPayment"] is None
    assert body["merged"]["downPayment"] == "2.5万元"
    assert body["merged"]["loanTerm"] == "3年"


def test_extract_reports_remote_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing_generate(messages, **kwargs):
        raise llm.LLMTransportError("DashScope request failed (401): Invalid API-key provided.")

    monkeypatch.setattr(remote_extractor, "_api_key", "sk-bad")
    monkeypatch.setattr(llm, "generate", failing_generate)

    body = client.post("/v1/extract", json={"text": SCENARIO_ONE}).json()

    assert body["source"] == "local"
    assert "Invalid API-key" in body["remote_error"]
    assert body["merged"]["carPrice"] == "15万元"


def test_extract_rejects_empty_text() -> None:
    assert client.post("/v1/extract", json={"text": ""}).status_code == 422


def test_credential_can_be_set_and_cleared() -> None:
    assert client.get("/v1/credential").json() == {"configured": False}

    assert client.put("/v1/credential", json={"api_key": "sk-test"}).json() == {"configured": True}
    assert remote_extractor.api_key == "sk-test"

    assert client.put("/v1/credential", json={"api_key": ""}).json() == {"configured": False}
    assert client.get("/v1/credential").json() == {"configured": False}
