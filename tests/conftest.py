"""Shared fixtures: a temporary store root, a scripted agent runner, and a service wired to both."""

import asyncio

import pytest

from highclaw.agent.runner import AgentReply, AgentRequest, AgentRunner
from highclaw.session.idempotency import IdempotencyGate
from highclaw.session.router import SessionRouter
from highclaw.session.service import SessionService
from highclaw.session.store import SessionStore


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRunner(AgentRunner):
    """Echoes the message back, or fails / stalls when configured to."""

    def __init__(self, reply: str | None = None, delay: float = 0.0, error: Exception | None = None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.requests: list[AgentRequest] = []

    async def run(self, request: AgentRequest) -> AgentReply:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        text = self.reply if self.reply is not None else f"echo: {request.message}"
        return AgentReply(reply=text, tokens_in=7, tokens_out=3, model="fake-model")

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "highclaw")


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def service(store, runner, clock):
    return SessionService(
        store,
        router=SessionRouter(store),
        gate=IdempotencyGate(ttl_seconds=300, clock=clock),
        runner=runner,
        agent_timeout_s=2.0,
    )
