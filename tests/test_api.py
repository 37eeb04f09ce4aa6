"""
Tests for the HTTP endpoints
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from buddy.api import create_app
from buddy.config import Settings
from buddy.core import ButtonBuddy
from buddy.hints import SiteHintProvider

CANDIDATES = [
    {"id": "a", "tag": "button", "text": "Menu"},
    {"id": "b", "tag": "a", "text": "Settings", "clickable": True},
    {"id": "c", "tag": "a", "text": "Billing"},
]


@pytest.fixture
def client():
    buddy = ButtonBuddy(None, "test-model", settings=Settings(enable_site_hints=False))
    return TestClient(create_app(buddy))


@pytest.fixture
def hints_client():
    def offline(request):
        raise httpx.ConnectError("offline", request=request)

    provider = SiteHintProvider(transport=httpx.MockTransport(offline))
    buddy = ButtonBuddy(None, "test-model", settings=Settings(), hint_provider=provider)
    return TestClient(create_app(buddy))


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert "/resolve" in response.json()["endpoints"]


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_rank(client):
    response = client.post("/rank", json={"goal": "change my password", "candidates": CANDIDATES})

    assert response.status_code == 200
    data = response.json()
    assert data["target"] == "b"
    assert data["label"] == "Settings"
    assert 0 <= data["confidence"] <= 1
    assert set(data) == {"target", "label", "confidence", "explanation", "source",
                         "alternates", "latencyMs", "cacheHit"}


@pytest.mark.parametrize("body", [
    {"candidates": CANDIDATES},
    {"goal": "  ", "candidates": CANDIDATES},
    {"goal": "billing", "candidates": []},
    {"goal": "billing"},
])
def test_rank_rejects_missing_input(client, body):
    response = client.post("/rank", json=body)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing goal or candidates"}


def test_rank_rejects_candidate_without_id(client):
    response = client.post("/rank", json={"goal": "billing", "candidates": [{"text": "Billing"}]})

    assert response.status_code == 400


def test_rank_accepts_site_hints_envelope(client):
    body = {
        "goal": "billing",
        "candidates": CANDIDATES,
        "siteHints": {"hints": [{"url": "/billing", "label": "Billing", "score": 1.0}], "meta": {}},
    }

    response = client.post("/rank", json=body)

    assert response.status_code == 200
    assert response.json()["target"] == "c"


def test_site_hints_disabled(client):
    response = client.post("/site-hints", json={"origin": "https://shop.test", "goal": "billing"})

    assert response.status_code == 200
    data = response.json()
    assert data["hints"] == []
    assert data["meta"]["source"] == "disabled"


def test_site_hints_invalid_origin(hints_client):
    response = hints_client.post("/site-hints", json={"origin": "not a url", "goal": "billing"})

    assert response.status_code == 400
    assert "Invalid origin" in response.json()["error"]


def test_site_hints_missing_fields(hints_client):
    response = hints_client.post("/site-hints", json={"goal": "billing"})

    assert response.status_code == 400


def test_site_hints_offline_site(hints_client):
    response = hints_client.post("/site-hints", json={"origin": "https://shop.test", "goal": "billing"})

    assert response.status_code == 200
    data = response.json()
    assert data["origin"] == "https://shop.test"
    assert data["meta"]["source"] == "none"
    assert data["meta"]["cached"] is False


def test_resolve(client):
    response = client.post("/resolve", json={
        "goal": "change my password",
        "candidates": CANDIDATES,
        "history": [{"url": "https://shop.test/", "target": "a", "label": "Menu", "confidence": 0.4,
                     "source": "llm", "t": 1}],
    })

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "used_alternate"
    assert data["usedAlternate"] is True
    assert data["primary"]["target"] == "b"
    assert [alt["target"] for alt in data["alternates"]] == ["b"]


def test_resolve_rejects_empty_goal(client):
    response = client.post("/resolve", json={"goal": "", "candidates": CANDIDATES})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing goal."}


def test_resolve_rejects_empty_candidates(client):
    response = client.post("/resolve", json={"goal": "billing", "candidates": []})

    assert response.status_code == 400
    assert response.json() == {"error": "No candidates to rank."}


def test_rank_rejects_non_numeric_hint_score(client):
    body = {
        "goal": "billing",
        "candidates": CANDIDATES,
        "siteHints": [{"url": "/billing", "label": "Billing", "score": "high"}],
    }

    response = client.post("/rank", json=body)

    assert response.status_code == 400
    assert "Malformed site hint" in response.json()["error"]


def test_resolve_rejects_non_numeric_history_timestamp(client):
    response = client.post("/resolve", json={
        "goal": "billing",
        "candidates": CANDIDATES,
        "history": [{"url": "https://shop.test/", "target": "a", "label": "Menu", "t": "yesterday"}],
    })

    assert response.status_code == 400
    assert "Malformed history step" in response.json()["error"]
