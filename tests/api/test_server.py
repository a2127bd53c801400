"""
API Server Tests

Runs the FastAPI app (lifespan included) against an in-memory engine.
"""

import pytest
from fastapi.testclient import TestClient

from thread_engine.api import server

from ..fixtures import at, post, seed_group


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("THREAD_ENGINE_STORAGE_BACKEND", "memory")
    monkeypatch.delenv("THREAD_ENGINE_STORAGE_DIR", raising=False)
    monkeypatch.setenv("THREAD_ENGINE_RECENT_WINDOW_DAYS", "3650")
    with TestClient(server.app) as test_client:
        engine = server.engine_instance
        seed_group(engine, "g1", ["alice", "bob"], tag_ids=["design"])
        seed_group(engine, "g2", ["carol"], tag_ids=["ops"])
        post(engine, "m1", "th1", "g1", "alice", at(minutes=1))
        yield test_client


class TestReadEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "online"
        assert response.json()["storage"] == "memory"

    def test_get_thread(self, client):
        response = client.get("/api/v1/threads/th1", params={"user_id": "alice"})

        assert response.status_code == 200
        body = response.json()
        assert body["group_id"] == "g1"
        assert [m["id"] for m in body["messages"]] == ["m1"]
        assert body["last_open_at"]["iso"] == at(minutes=1).to_iso()

    def test_get_unknown_thread_is_404(self, client):
        response = client.get("/api/v1/threads/nope", params={"user_id": "alice"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "THREAD_NOT_FOUND"

    def test_get_hidden_thread_is_403(self, client):
        response = client.get("/api/v1/threads/th1", params={"user_id": "carol"})
        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "THREAD_NOT_VISIBLE"
        assert error["context"] == {"thread_id": "th1", "user_id": "carol"}

    def test_visibility(self, client):
        body = client.get("/api/v1/threads/th1/visibility", params={"user_id": "bob"}).json()

        assert body["visible"] is False
        assert body["has_tags"] is False
        assert body["newest_message_at"]["iso"] == at(minutes=1).to_iso()

    def test_recent_threads(self, client):
        response = client.get(
            "/api/v1/users/alice/recent-threads", params={"group_id": "g1", "limit": 5}
        )

        assert response.status_code == 200
        assert [t["id"] for t in response.json()["threads"]] == ["th1"]

    def test_recent_threads_rejects_negative_limit(self, client):
        response = client.get(
            "/api/v1/users/alice/recent-threads", params={"group_id": "g1", "limit": -1}
        )
        assert response.status_code == 422


class TestWriteEndpoints:

    def test_tag_then_open_threads(self, client):
        response = client.post(
            "/api/v1/threads/th1/tags", json={"group_id": "g1", "tag_id": "design"}
        )
        assert response.status_code == 200
        assert response.json()["noop"] is False

        open_threads = client.get("/api/v1/users/bob/open-threads").json()["threads"]
        assert [t["id"] for t in open_threads] == ["th1"]
        assert open_threads[0]["tag_ids"] == ["design"]

        tags = client.get("/api/v1/groups/g1/tags").json()["tags"]
        assert tags[0]["id"] == "design"
        assert tags[0]["threads_count"] == 1

    def test_tag_mismatch_is_422(self, client):
        response = client.post(
            "/api/v1/threads/th1/tags", json={"group_id": "g1", "tag_id": "ops"}
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "GROUP_MISMATCH"

    def test_unknown_tag_is_422(self, client):
        response = client.post(
            "/api/v1/threads/th1/tags", json={"group_id": "g1", "tag_id": "missing"}
        )

        assert response.status_code == 422
        assert response.json()["error"]["context"]["tag_id"] == "missing"

    def test_show_hide_and_bump(self, client):
        assert client.post("/api/v1/threads/th1/show", json={"user_id": "alice"}).status_code == 200

        bumped = client.post("/api/v1/threads/th1/bump-last-open", json={"user_id": "alice"}).json()
        assert bumped["bumped"] is True

        hidden = client.post("/api/v1/threads/th1/hide", json={"user_id": "alice"}).json()
        assert hidden["noop"] is False

        skipped = client.post("/api/v1/threads/th1/bump-last-open", json={"user_id": "alice"}).json()
        assert skipped["bumped"] is False
        assert client.get("/api/v1/users/alice/open-threads").json()["threads"] == []

    def test_unsubscribe(self, client):
        response = client.post("/api/v1/threads/th1/unsubscribe", json={"user_id": "alice"})

        assert response.status_code == 200
        assert server.engine_instance.can_user_see_thread("alice", "th1") is False

    def test_missing_body_field_is_422(self, client):
        response = client.post("/api/v1/threads/th1/hide", json={})
        assert response.status_code == 422


def test_status_mapping():
    from thread_engine.contracts.errors import (
        GroupMismatchError, IntegrityError, StoreUnavailableError, ThreadNotFoundError,
        ThreadNotVisibleError, TransactionConflictError
    )

    assert server._status_for(ThreadNotFoundError("x")) == 404
    assert server._status_for(ThreadNotVisibleError("x")) == 403
    assert server._status_for(TransactionConflictError("x")) == 409
    assert server._status_for(GroupMismatchError("x")) == 422
    assert server._status_for(StoreUnavailableError("x")) == 503
    assert server._status_for(IntegrityError("x")) == 503
