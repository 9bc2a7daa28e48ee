from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from topicboard.app import create_app
from topicboard.config import Settings


def build_test_app(tmp_path: Path, **overrides) -> TestClient:
    settings = Settings(database_path=str(tmp_path / "conversations.sqlite"), **overrides)
    return TestClient(create_app(settings=settings))


def _create(client: TestClient, **payload) -> dict:
    body = {"questions": ["Is it green?"], "answers": ["Yes, very green and healthy"], "language": "en"}
    body.update(payload)
    response = client.post("/api/conversations", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_conversation_assigns_topic(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    created = _create(client, datetime="2026-10-01T08:30:00Z")

    assert created["topic"] == "environment"
    assert created["language"] == "en"
    assert created["datetime"].startswith("2026-10-01T08:30:00")

    fetched = client.get(f"/api/conversations/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json() == created


def test_create_conversation_defaults_language(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    created = _create(client, language=None, questions="ok", answers="yes")
    assert created["language"] == "en"
    assert created["questions"] == ["ok"]
    assert created["topic"] == "general"


def test_create_conversation_validation_errors(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)

    missing = client.post("/api/conversations", json={"questions": ["hello"]})
    assert missing.status_code == 400
    assert missing.json() == {"error": "answers and questions are required"}

    bad_items = client.post("/api/conversations", json={"questions": ["hello", 5], "answers": ["hi"]})
    assert bad_items.status_code == 400
    assert "questions[1]" in bad_items.json()["error"]

    bad_date = client.post(
        "/api/conversations",
        json={"questions": ["hello"], "answers": ["hi"], "datetime": "not a date"},
    )
    assert bad_date.status_code == 400

    not_object = client.post("/api/conversations", json=["hello"])
    assert not_object.status_code == 400


def test_list_conversations_paginates(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    base = datetime(2026, 10, 1, tzinfo=timezone.utc)
    for index in range(5):
        _create(client, datetime=(base + timedelta(hours=index)).isoformat())

    response = client.get("/api/conversations", params={"limit": 2, "offset": 1})
    assert response.status_code == 200
    payload = response.json()
    assert payload["pagination"] == {"total": 5, "limit": 2, "offset": 1, "hasMore": True}
    assert [item["datetime"][:13] for item in payload["data"]] == ["2026-10-01T03", "2026-10-01T02"]

    tail = client.get("/api/conversations", params={"limit": 2, "offset": 4}).json()
    assert len(tail["data"]) == 1
    assert tail["pagination"]["hasMore"] is False

    defaults = client.get("/api/conversations").json()
    assert defaults["pagination"]["limit"] == 100
    assert defaults["pagination"]["offset"] == 0

    assert client.get("/api/conversations", params={"limit": -1}).status_code == 422


def test_get_and_delete_conversation(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    created = _create(client)

    assert client.get("/api/conversations/999").status_code == 404
    assert client.delete("/api/conversations/999").status_code == 404

    deleted = client.delete(f"/api/conversations/{created['id']}")
    assert deleted.status_code == 200
    assert deleted.json() == {"success": True}
    missing = client.get(f"/api/conversations/{created['id']}")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Conversation not found"}


def test_analyze_single_conversation(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    store = client.app.state.services.store
    record = store.insert(
        recorded_at=datetime.now(timezone.utc),
        language="en",
        questions=["Which doctor should I see?"],
        answers=["A doctor near you"],
        topic=None,
    )

    assert client.post("/api/analyze-topic", json={}).status_code == 400
    assert client.post("/api/analyze-topic", json={"id": "abc"}).status_code == 400
    assert client.post("/api/analyze-topic", json={"id": record.id + 10}).status_code == 404

    response = client.post("/api/analyze-topic", json={"id": str(record.id)})
    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["topic"] == "health"
    assert payload["conversation"]["id"] == record.id
    assert payload["conversation"]["topic"] == "health"


def test_batch_analyze_missing_topics(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    store = client.app.state.services.store
    now = datetime.now(timezone.utc)
    first = store.insert(
        recorded_at=now,
        language="en",
        questions=["Where can I find statistics tutorials?"],
        answers=["Statistics tutorials online"],
        topic=None,
    )
    second = store.insert(recorded_at=now, language="en", questions=["ok"], answers=["yes"], topic="")
    _create(client)

    response = client.get("/api/analyze-topic")
    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["analyzed"] == 2
    assert payload["results"] == [
        {"id": first.id, "topic": "statistics"},
        {"id": second.id, "topic": "general"},
    ]

    again = client.get("/api/analyze-topic").json()
    assert again["analyzed"] == 0
    assert again["results"] == []


def test_analytics_endpoint_and_dashboard(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    _create(client)
    _create(client, language="de", questions=["Is the software ready?"], answers=["The software ships"])
    _create(client, datetime=(datetime.now(timezone.utc) - timedelta(days=90)).isoformat())

    response = client.get("/api/analytics", params={"days": 30})
    assert response.status_code == 200
    payload = response.json()
    assert payload["totalConversations"] == 3
    assert sum(item["count"] for item in payload["interactionsOverTime"]) == 2
    assert payload["topTopics"][0] == {"topic": "environment", "count": 2}
    assert {item["language"] for item in payload["conversationsByLanguage"]} == {"en", "de"}

    assert client.get("/api/analytics", params={"days": 0}).status_code == 422

    page = client.get("/")
    assert page.status_code == 200
    assert "Conversation Analytics" in page.text
    assert "technology" in page.text


def test_metrics_endpoint_disabled_by_default(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    assert client.get("/metrics").status_code == 404


def test_prometheus_metrics_endpoint_available(tmp_path: Path) -> None:
    client = build_test_app(tmp_path, observability_prometheus_enabled=True)
    _create(client)

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "topicboard_conversations_created_total" in response.text


def test_prometheus_mode_keeps_untagged_operations_working(tmp_path: Path) -> None:
    client = build_test_app(tmp_path, observability_prometheus_enabled=True)
    created = _create(client)
    store = client.app.state.services.store
    store.insert(
        recorded_at=datetime.now(timezone.utc),
        language="en",
        questions=["Which doctor should I see?"],
        answers=["A doctor near you"],
        topic=None,
    )

    assert client.post("/api/analyze-topic", json={"id": created["id"]}).status_code == 200
    assert client.get("/api/analyze-topic").json()["analyzed"] == 1
    assert client.delete(f"/api/conversations/{created['id']}").status_code == 200

    body = client.get("/metrics").text
    assert "topicboard_conversations_deleted_total 1.0" in body
    assert "topicboard_topics_analyzed_total 1.0" in body
    assert "topicboard_topics_reanalyzed_total 1.0" in body


def test_oversized_numbers_map_to_client_errors(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    huge = 10**20

    assert client.get(f"/api/conversations/{huge}").status_code == 404
    assert client.delete(f"/api/conversations/{huge}").status_code == 404
    assert client.post("/api/analyze-topic", json={"id": huge}).status_code == 404
    assert client.get("/api/conversations", params={"limit": huge}).status_code == 422
    assert client.get("/api/conversations", params={"offset": huge}).status_code == 422
    assert client.get("/api/analytics", params={"days": 1_000_000_000}).status_code == 422


def test_create_conversation_rejects_non_string_language(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    response = client.post(
        "/api/conversations",
        json={"questions": ["hello"], "answers": ["hi"], "language": ["en", "de"]},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "language must be a string"}
    assert client.get("/api/conversations").json()["pagination"]["total"] == 0


def test_storage_failure_returns_generic_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    client = build_test_app(tmp_path)
    _create(client)
    store = client.app.state.services.store

    def broken_connect() -> sqlite3.Connection:
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "_connect", broken_connect)
    failed = client.get("/api/conversations")
    assert failed.status_code == 500
    assert failed.json() == {"error": "Failed to fetch conversations"}
    assert client.get("/api/analytics").status_code == 500

    monkeypatch.undo()
    recovered = client.get("/api/conversations")
    assert recovered.status_code == 200
    assert recovered.json()["pagination"]["total"] == 1


def test_dashboard_shows_answers_beyond_questions(tmp_path: Path) -> None:
    client = build_test_app(tmp_path)
    _create(client, questions=["Is it green?"], answers=["Yes, very green", "Greenhouse gardens grow well"])

    page = client.get("/")
    assert page.status_code == 200
    assert "Yes, very green" in page.text
    assert "Greenhouse gardens grow well" in page.text
