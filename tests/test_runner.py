"""Tests for LLMAgentRunner in highclaw/agent/runner.py."""

import pytest

from highclaw.agent.runner import AgentRequest, LLMAgentRunner
from highclaw.providers.base import LLMProvider, LLMResponse


class ScriptedProvider(LLMProvider):
    def __init__(self, response: LLMResponse):
        super().__init__(api_key="test")
        self.response = response
        self.calls: list[dict] = []

    async def chat(self, messages, model=None, max_tokens=4096, temperature=0.7):
        self.calls.append({"messages": messages, "model": model})
        return self.response

    def get_default_model(self) -> str:
        return "default-model"


class TestLLMAgentRunner:
    async def test_reply_and_usage(self):
        provider = ScriptedProvider(LLMResponse(
            content="hi!", usage={"prompt_tokens": 12, "completion_tokens": 4},
        ))
        runner = LLMAgentRunner(provider, system_prompt="be nice")
        reply = await runner.run(AgentRequest(
            session_key="k", message="hello", history=[{"role": "user", "content": "hello"}],
        ))

        assert (reply.reply, reply.tokens_in, reply.tokens_out) == ("hi!", 12, 4)
        assert reply.model == "default-model"
        assert provider.calls[0]["messages"] == [
            {"role": "system", "content": "be nice"},
            {"role": "user", "content": "hello"},
        ]

    async def test_session_model_overrides_default(self):
        provider = ScriptedProvider(LLMResponse(content="ok"))
        runner = LLMAgentRunner(provider, model="configured")
        await runner.run(AgentRequest(session_key="k", message="x", model="per-session"))
        assert provider.calls[0]["model"] == "per-session"

    def test_empty_history_falls_back_to_message(self):
        runner = LLMAgentRunner(ScriptedProvider(LLMResponse(content="")), system_prompt="")
        assert runner.build_messages(AgentRequest(session_key="k", message="solo")) == [
            {"role": "user", "content": "solo"},
        ]

    async def test_error_finish_reason_raises(self):
        provider = ScriptedProvider(LLMResponse(content="Error calling LLM: 401", finish_reason="error"))
        with pytest.raises(RuntimeError, match="401"):
            await LLMAgentRunner(provider).run(AgentRequest(session_key="k", message="x"))
