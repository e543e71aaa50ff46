"""Tests for the WebSocket RPC dispatcher in highclaw/gateway/rpc.py."""

import json

import pytest

from highclaw import __version__
from highclaw.gateway.errors import (
    RPC_INTERNAL_ERROR,
    RPC_INVALID_PARAMS,
    RPC_INVALID_REQUEST,
    RPC_METHOD_NOT_FOUND,
    RPC_NOT_FOUND,
    RPC_TIMEOUT,
)
from highclaw.gateway.rpc import RPCDispatcher


@pytest.fixture
def dispatcher(service):
    return RPCDispatcher(service)


async def call(dispatcher, method, params=None, req_id="1"):
    payload = {"id": req_id, "method": method}
    if params is not None:
        payload["params"] = params
    return (await dispatcher.dispatch(payload)).to_dict()


# ---------------------------------------------------------------------------
# TestProtocol
# ---------------------------------------------------------------------------

class TestProtocol:
    async def test_health(self, dispatcher):
        resp = await call(dispatcher, "health")
        assert resp["id"] == "1"
        assert resp["result"]["status"] == "ok"
        assert resp["result"]["version"] == __version__
        assert "error" not in resp

    async def test_numeric_id_echoed(self, dispatcher):
        resp = await call(dispatcher, "health", req_id=42)
        assert resp["id"] == 42

    async def test_unknown_method(self, dispatcher):
        resp = await call(dispatcher, "sessions.explode")
        assert resp["error"]["code"] == RPC_METHOD_NOT_FOUND
        assert "sessions.explode" in resp["error"]["message"]

    async def test_missing_method_is_invalid_request(self, dispatcher):
        resp = (await dispatcher.dispatch({"id": "7"})).to_dict()
        assert resp["id"] == "7"
        assert resp["error"]["code"] == RPC_INVALID_REQUEST
        assert "result" not in resp

    async def test_non_object_payload(self, dispatcher):
        resp = (await dispatcher.dispatch(["not", "an", "object"])).to_dict()
        assert resp["id"] == ""
        assert resp["error"]["code"] == RPC_INVALID_REQUEST

    async def test_invalid_params(self, dispatcher):
        resp = await call(dispatcher, "sessions.get", {})
        assert resp["error"]["code"] == RPC_INVALID_PARAMS
        assert "key" in resp["error"]["message"]

    async def test_handle_text_bad_json(self, dispatcher):
        resp = json.loads(await dispatcher.handle_text("{nope"))
        assert resp["error"]["code"] == RPC_INVALID_REQUEST

    async def test_handle_text_round_trip(self, dispatcher):
        raw = json.dumps({"id": "x", "method": "sessions.list"})
        assert json.loads(await dispatcher.handle_text(raw)) == {"id": "x", "result": []}

    def test_methods_listed(self, dispatcher):
        assert "chat.send" in dispatcher.methods
        assert "sessions.prune" in dispatcher.methods


# ---------------------------------------------------------------------------
# TestSessionMethods
# ---------------------------------------------------------------------------

class TestSessionMethods:
    async def test_create_get_list(self, dispatcher):
        created = await call(dispatcher, "sessions.create", {"key": "agent:main:main", "channel": "rpc"})
        assert created["result"]["key"] == "agent:main:main"

        got = await call(dispatcher, "sessions.get", {"key": "agent:main:main"})
        assert got["result"]["messages"] == []

        listed = await call(dispatcher, "sessions.list")
        assert [s["key"] for s in listed["result"]] == ["agent:main:main"]

    async def test_get_missing(self, dispatcher):
        resp = await call(dispatcher, "sessions.get", {"key": "agent:main:ghost"})
        assert resp["error"]["code"] == RPC_NOT_FOUND

    async def test_patch_uses_camel_case(self, dispatcher):
        await call(dispatcher, "sessions.create", {"key": "k"})
        resp = await call(dispatcher, "sessions.patch", {"key": "k", "thinkingLevel": "high", "model": "m"})
        assert resp["result"]["thinkingLevel"] == "high"
        assert resp["result"]["model"] == "m"

    async def test_patch_bad_activation(self, dispatcher):
        await call(dispatcher, "sessions.create", {"key": "k"})
        resp = await call(dispatcher, "sessions.patch", {"key": "k", "groupActivation": "never"})
        assert resp["error"]["code"] == RPC_INVALID_PARAMS

    async def test_reset_and_delete(self, dispatcher, service):
        await call(dispatcher, "sessions.create", {"key": "k"})
        service.add_message("k", "user", "hi")
        assert (await call(dispatcher, "sessions.reset", {"key": "k"}))["result"] == {"ok": True, "key": "k"}
        assert service.get("k").message_count == 0

        assert (await call(dispatcher, "sessions.delete", {"key": "k"}))["result"]["deleted"] is True
        assert (await call(dispatcher, "sessions.delete", {"key": "k"}))["result"]["deleted"] is False

    async def test_bindings(self, dispatcher):
        bound = await call(dispatcher, "sessions.bind", {
            "channel": "telegram", "conversation": "c1", "sessionKey": "agent:main:ops",
        })
        assert bound["result"]["sessionKey"] == "agent:main:ops"
        listed = await call(dispatcher, "sessions.bindings")
        assert len(listed["result"]) == 1
        removed = await call(dispatcher, "sessions.unbind", {"channel": "telegram", "conversation": "c1"})
        assert removed["result"]["removed"] is True

    async def test_prune_defaults_and_validation(self, dispatcher):
        resp = await call(dispatcher, "sessions.prune")
        assert resp["result"] == {"pruned": 0, "capped": 0}
        bad = await call(dispatcher, "sessions.prune", {"maxCount": -1})
        assert bad["error"]["code"] == RPC_INVALID_PARAMS


# ---------------------------------------------------------------------------
# TestChatSend
# ---------------------------------------------------------------------------

class TestChatSend:
    async def test_send(self, dispatcher, service):
        resp = await call(dispatcher, "chat.send", {"sessionKey": "agent:main:main", "message": "hi"})
        result = resp["result"]
        assert result["status"] == "ok"
        assert result["response"] == "echo: hi"
        assert result["usage"] == {"inputTokens": 7, "outputTokens": 3}
        assert service.get("agent:main:main").message_count == 2

    async def test_duplicate(self, dispatcher, runner):
        params = {"sessionKey": "k", "message": "hi", "idempotencyKey": "abc"}
        await call(dispatcher, "chat.send", params)
        resp = await call(dispatcher, "chat.send", params)
        assert resp["result"]["status"] == "duplicate"
        assert runner.calls == 1

    async def test_missing_message(self, dispatcher):
        resp = await call(dispatcher, "chat.send", {"sessionKey": "k"})
        assert resp["error"]["code"] == RPC_INVALID_PARAMS

    async def test_blank_message(self, dispatcher):
        resp = await call(dispatcher, "chat.send", {"sessionKey": "k", "message": "  "})
        assert resp["error"]["code"] == RPC_INVALID_PARAMS

    async def test_timeout(self, dispatcher, service, runner):
        service.agent_timeout_s = 0.05
        runner.delay = 1
        resp = await call(dispatcher, "chat.send", {"sessionKey": "k", "message": "slow"})
        assert resp["error"]["code"] == RPC_TIMEOUT

    async def test_agent_failure(self, dispatcher, runner):
        runner.error = RuntimeError("boom")
        resp = await call(dispatcher, "chat.send", {"sessionKey": "k", "message": "hi"})
        assert resp["error"]["code"] == RPC_INTERNAL_ERROR
        assert "boom" in resp["error"]["message"]
