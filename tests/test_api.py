"""Tests for the FastAPI app (main.py)."""

import json
from unittest.mock import patch

import pytest
from conftest import FakeExtractor, FakeMailSource, make_article, make_email
from fastapi.testclient import TestClient

from config import settings
from src.database import Repository

ADMIN = {"Authorization": "Bearer admin-token"}


@pytest.fixture
def client(tmp_path):
    """Test client with an isolated repository and in-memory mail/web doubles."""
    repository = Repository(tmp_path / "test.db")
    mail = FakeMailSource(emails=[make_email("m1")])
    extractor = FakeExtractor({
        "https://example.com/2099/03/ai-chips-shortage": make_article("AI chips"),
        "https://news.example.org/articles/open-models-rise": make_article("Open models"),
    })

    with (
        patch("main._repository", return_value=repository),
        patch("main._mail_source", return_value=lambda: mail),
        patch("main._extractor", return_value=extractor),
        patch.object(settings, "admin_token", "admin-token"),
        patch.object(settings, "cron_secret", "cron-secret"),
    ):
        from main import app
        with TestClient(app) as c:
            yield c, repository


def _sse_events(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def test_health(client):
    c, _ = client
    res = c.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_stream_requires_admin_token(client):
    c, _ = client
    assert c.post("/api/fetch-newsletters-stream", json={}).status_code == 401
    res = c.post("/api/fetch-newsletters-stream", json={}, headers={"Authorization": "Bearer wrong"})
    assert res.status_code == 401


def test_stream_without_configured_token(client):
    c, _ = client
    with patch.object(settings, "admin_token", ""):
        res = c.post("/api/fetch-newsletters-stream", json={}, headers=ADMIN)
    assert res.status_code == 500


def test_stream_emits_progress_events(client):
    c, repository = client
    repository.upsert_source("digest@example.com")

    res = c.post("/api/fetch-newsletters-stream", json={}, headers=ADMIN)

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(res.text)
    assert events[0] == {"type": "start", "phase": "fetching", "total": 1}
    assert events[-1]["type"] == "complete"
    assert events[-1]["summary"]["newsletters"] == 1
    assert events[-1]["summary"]["articles"] == 2
    newsletter = next(e for e in events if e["type"] == "newsletter" and e["item"]["status"] == "success"
                      and e["phase"] == "processing" and "from" in e["item"])
    assert newsletter["item"]["from"] == "Digest <digest@example.com>"


def test_stream_tolerates_invalid_body(client):
    c, repository = client
    repository.upsert_source("digest@example.com")

    res = c.post(
        "/api/fetch-newsletters-stream",
        content=b"not json",
        headers={**ADMIN, "Content-Type": "application/json"},
    )
    assert _sse_events(res.text)[-1]["type"] == "complete"

    res = c.post("/api/fetch-newsletters-stream", json={"targetDate": "yesterday", "force": "yes"}, headers=ADMIN)
    assert _sse_events(res.text)[-1]["type"] == "complete"


def test_stream_with_target_date_uses_historical_window(client):
    c, repository = client
    repository.upsert_source("digest@example.com")

    c.post("/api/fetch-newsletters-stream", json={"targetDate": "2099-03-15"}, headers=ADMIN)

    items = c.get("/api/repository", params={"date": "2099-03-15"}).json()
    assert {i["sourceType"] for i in items} == {"newsletter", "article"}


def test_cron_accepts_query_or_bearer_secret(client):
    c, repository = client
    repository.upsert_source("digest@example.com")

    assert c.get("/api/cron/fetch-newsletters").status_code == 403
    res = c.get("/api/cron/fetch-newsletters", params={"secret": "cron-secret"})
    assert res.status_code == 200
    assert res.json()["summary"]["newsletters"] == 1

    res = c.post("/api/cron/fetch-newsletters", headers={"Authorization": "Bearer cron-secret"})
    assert res.status_code == 200
    assert res.json()["summary"]["newsletters"] == 0


def test_repository_rejects_bad_date(client):
    c, _ = client
    assert c.get("/api/repository", params={"date": "15.03.2099"}).status_code == 400


def test_sources_and_exclusions(client):
    c, repository = client

    assert c.post("/api/sources", json={"email": "News@Example.com"}).status_code == 401
    res = c.post("/api/sources", json={"email": "News@Example.com", "name": "News"}, headers=ADMIN)
    assert res.json() == {"ok": True, "email": "news@example.com"}
    assert c.post("/api/sources", json={"email": "nope"}, headers=ADMIN).status_code == 400

    sources = c.get("/api/sources").json()
    assert [(s["email"], s["enabled"]) for s in sources] == [("news@example.com", True)]

    res = c.post("/api/excluded-senders", json={"email": "promo@example.com", "reason": "ads"}, headers=ADMIN)
    assert res.status_code == 200
    assert repository.excluded_sender_emails() == {"promo@example.com"}


def test_runs_are_listed_after_ingestion(client):
    c, repository = client
    repository.upsert_source("digest@example.com")
    c.post("/api/fetch-newsletters-stream", json={}, headers=ADMIN)

    runs = c.get("/api/runs").json()
    assert len(runs) == 1
    assert runs[0]["status"] == "success"
    assert c.get(f"/api/runs/{runs[0]['run_id']}").json()["run_id"] == runs[0]["run_id"]
    assert c.get("/api/runs/missing").status_code == 404


def test_personality_endpoints(client):
    c, _ = client

    res = c.get("/api/personality/en")
    assert res.status_code == 200
    assert res.json()["state"]["episode_count"] == 0
    assert "PERSONALITIES (Episode #1" in res.json()["brief"]
    assert c.get("/api/personality/fr").status_code == 404

    script = 'HOST: Hi.\n---MOMENTS---\n[host_name] "Nova"\n[joke] "Ha"'
    res = c.post("/api/personality/en/episodes", json={"text": script}, headers=ADMIN)
    assert res.status_code == 200
    assert res.json()["state"]["host_name"] == "Nova"
    assert res.json()["script"] == "HOST: Hi."

    assert c.get("/api/personality/en").json()["state"]["episode_count"] == 1
    assert c.post("/api/personality/en/episodes", json={"text": " "}, headers=ADMIN).status_code == 400


def test_personality_defaults_to_configured_locale(client):
    c, _ = client
    with patch.object(settings, "personality_locale", "de"):
        res = c.get("/api/personality")
    assert res.json()["state"]["locale"] == "de"
    assert "PERSÖNLICHKEITEN" in res.json()["brief"]


def test_serve_runs_uvicorn_on_configured_address():
    import main

    with (
        patch.object(settings, "api_host", "127.0.0.1"),
        patch.object(settings, "api_port", 8765),
        patch("main.uvicorn.run") as mock_run,
    ):
        main.serve()

    mock_run.assert_called_once_with(main.app, host="127.0.0.1", port=8765)
