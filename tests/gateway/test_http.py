"""Tests for the FastAPI gateway in highclaw/gateway/http.py."""

import pytest
from fastapi.testclient import TestClient

from highclaw.gateway.errors import RPC_NOT_FOUND
from highclaw.gateway.http import ChatRequest, create_app


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


# ---------------------------------------------------------------------------
# TestSessionsAPI
# ---------------------------------------------------------------------------

class TestSessionsAPI:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["channels"] == {}

    def test_create_and_get(self, client):
        resp = client.post("/api/sessions", json={"key": "agent:main:main", "channel": "http"})
        assert resp.status_code == 201
        assert resp.json()["channel"] == "http"

        resp = client.get("/api/sessions/agent:main:main")
        assert resp.status_code == 200
        assert resp.json()["messages"] == []

    def test_list(self, client):
        client.post("/api/sessions", json={"key": "a"})
        client.post("/api/sessions", json={"key": "b"})
        keys = {s["key"] for s in client.get("/api/sessions").json()["sessions"]}
        assert keys == {"a", "b"}

    def test_missing_session_is_404(self, client):
        resp = client.get("/api/sessions/agent:main:ghost")
        assert resp.status_code == 404
        detail = resp.json()["detail"]
        assert detail["error"] == "not_found"
        assert detail["code"] == 404
        assert detail["details"] == {"type": "not-found"}

    def test_patch(self, client):
        client.post("/api/sessions", json={"key": "k"})
        resp = client.patch("/api/sessions/k", json={"model": "gpt-x", "verboseLevel": "on"})
        assert resp.status_code == 200
        assert resp.json()["model"] == "gpt-x"

    def test_patch_invalid_activation_is_400(self, client):
        client.post("/api/sessions", json={"key": "k"})
        resp = client.patch("/api/sessions/k", json={"groupActivation": "never"})
        assert resp.status_code == 400

    def test_reset_and_delete(self, client, service):
        client.post("/api/sessions", json={"key": "k"})
        service.add_message("k", "user", "hi")
        assert client.post("/api/sessions/k/reset").json() == {"ok": True, "key": "k"}
        assert service.get("k").message_count == 0
        assert client.delete("/api/sessions/k").json() == {"ok": True, "deleted": True}
        assert client.get("/api/sessions/k").status_code == 404


# ---------------------------------------------------------------------------
# TestBindingsAPI
# ---------------------------------------------------------------------------

class TestBindingsAPI:
    def test_lifecycle(self, client):
        resp = client.post("/api/bindings", json={
            "channel": "Slack", "conversation": "C1", "sessionKey": "agent:main:team",
        })
        assert resp.status_code == 201
        assert resp.json() == {"channel": "slack", "conversation": "C1", "sessionKey": "agent:main:team"}

        assert len(client.get("/api/bindings").json()["bindings"]) == 1

        resp = client.delete("/api/bindings", params={"channel": "slack", "conversation": "C1"})
        assert resp.json() == {"ok": True, "removed": True}
        assert client.get("/api/bindings").json()["bindings"] == []

    def test_blank_session_key_is_400(self, client):
        resp = client.post("/api/bindings", json={"channel": "slack", "conversation": "C1", "sessionKey": " "})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# TestChatAPI
# ---------------------------------------------------------------------------

class TestChatAPI:
    def test_chat(self, client):
        resp = client.post("/api/chat", json={"message": "hi", "session": "agent:main:main"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["response"] == "echo: hi"
        assert body["sessionKey"] == "agent:main:main"

    def test_chat_routes_peer(self, client):
        resp = client.post("/api/chat", json={
            "message": "hi", "channel": "whatsapp", "peerId": "u1", "peerKind": "group", "groupId": "fam",
        })
        assert resp.json()["sessionKey"] == "agent:main:whatsapp:group:fam"

    def test_anonymous_chat_routes_by_client_address(self, client, service):
        resp = client.post("/api/chat", json={"message": "hi"})
        assert resp.json()["sessionKey"] == "agent:main:web:direct:testclient"
        assert service.get("agent:main:web:direct:testclient").channel == "web"

    def test_idempotency_header(self, client, runner):
        headers = {"X-Idempotency-Key": "req-1"}
        first = client.post("/api/chat", json={"message": "hi", "session": "k"}, headers=headers)
        second = client.post("/api/chat", json={"message": "hi", "session": "k"}, headers=headers)
        assert first.json()["status"] == "ok"
        assert second.status_code == 200
        assert second.json()["duplicate"] is True
        assert runner.calls == 1

    def test_blank_message_is_400(self, client):
        resp = client.post("/api/chat", json={"message": "  ", "session": "k"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["details"]["type"] == "invalid-input"

    def test_timeout_is_504(self, client, service, runner):
        service.agent_timeout_s = 0.05
        runner.delay = 1
        resp = client.post("/api/chat", json={"message": "slow", "session": "k"})
        assert resp.status_code == 504
        assert resp.json()["detail"]["error"] == "timeout"

    def test_agent_failure_is_500(self, client, runner):
        runner.error = RuntimeError("boom")
        resp = client.post("/api/chat", json={"message": "hi", "session": "k"})
        assert resp.status_code == 500


class TestChatRequest:
    def test_peer_context_absent_without_ids(self):
        assert ChatRequest(message="hi").peer_context() is None

    def test_peer_context_built_from_aliases(self):
        req = ChatRequest.model_validate({"message": "hi", "channel": "slack", "peerId": "u1", "accountId": "w"})
        peer = req.peer_context()
        assert (peer.channel, peer.peer_id, peer.account_id) == ("slack", "u1", "w")

    def test_peer_context_falls_back_to_client_address(self):
        peer = ChatRequest(message="hi").peer_context("10.0.0.5")
        assert (peer.channel, peer.peer_id, peer.conversation) == ("web", "10.0.0.5", "10.0.0.5")


# ---------------------------------------------------------------------------
# TestWebSocket
# ---------------------------------------------------------------------------

class TestWebSocket:
    def test_rpc_over_websocket(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"id": "1", "method": "sessions.create", "params": {"key": "agent:main:main"}})
            assert ws.receive_json()["result"]["key"] == "agent:main:main"

            ws.send_json({"id": "2", "method": "chat.send", "params": {"sessionKey": "agent:main:main", "message": "yo"}})
            assert ws.receive_json()["result"]["response"] == "echo: yo"

            ws.send_json({"id": "3", "method": "sessions.get", "params": {"key": "agent:main:nope"}})
            assert ws.receive_json()["error"]["code"] == RPC_NOT_FOUND

    def test_bad_frame_keeps_connection_open(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["error"]["code"] == -32600
            ws.send_json({"id": "h", "method": "health"})
            assert ws.receive_json()["result"]["status"] == "ok"
