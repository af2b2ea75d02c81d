"""Shared fixtures for the sub-agent test suite."""

import asyncio

import pytest

import metrics
from config import SubAgentSettings
from providers.base import ExecutionRequest, NormalizedEvent, TaskExecutor


# ---------------------------------------------------------------------------
# Scripted executor standing in for the model client
# ---------------------------------------------------------------------------

class ScriptedExecutor(TaskExecutor):
    """Replays a fixed list of events.

    ``block_at`` pauses before yielding the event at that index until
    release() or interrupt() is called. ``raise_at`` raises RuntimeError
    instead of yielding the event at that index.
    """

    provider_name = "scripted"

    def __init__(
        self,
        events: list[NormalizedEvent] | None = None,
        block_at: int | None = None,
        raise_at: int | None = None,
        start_error: Exception | None = None,
    ):
        self.events = list(events or [])
        self.block_at = block_at
        self.raise_at = raise_at
        self.start_error = start_error
        self.request: ExecutionRequest | None = None
        self.started = False
        self.interrupted = False
        self.disconnected = False
        self.blocked = False
        self._release = asyncio.Event()

    async def start(self, request: ExecutionRequest) -> None:
        self.request = request
        self.started = True
        if self.start_error is not None:
            raise self.start_error

    async def stream_events(self):
        for index, event in enumerate(self.events + [None]):
            if index == self.block_at:
                self.blocked = True
                await self._release.wait()
                self.blocked = False
            if self.interrupted:
                return
            if index == self.raise_at:
                raise RuntimeError("model backend exploded")
            if event is None:
                return
            yield event

    def release(self) -> None:
        self._release.set()

    async def interrupt(self) -> None:
        self.interrupted = True
        self._release.set()

    async def disconnect(self) -> None:
        self.disconnected = True


def text(t: str) -> NormalizedEvent:
    return NormalizedEvent("assistant_text", {"text": t})


def plan(*steps: str, explanation: str | None = None) -> NormalizedEvent:
    return NormalizedEvent("plan_update", {
        "explanation": explanation,
        "plan": [{"step": s, "status": "pending"} for s in steps],
    })


def result(t: str) -> NormalizedEvent:
    return NormalizedEvent("result", {"text": t})


async def until(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until *predicate()* is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.collector.reset()
    yield
    metrics.collector.reset()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the real ~/.rain-subagents config."""
    monkeypatch.setenv("RAIN_SUBAGENTS_CONFIG", str(tmp_path / "missing-config.json"))
    for var in (
        "RAIN_SUBAGENTS_ENABLED",
        "RAIN_SUBAGENTS_MAX_CONCURRENT",
        "RAIN_SUBAGENTS_DEFAULT_MODEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture()
def settings():
    return SubAgentSettings(default_timeout=0, available_skills=["pytest"])


@pytest.fixture()
def executors():
    """Executors handed out in order; a default one is made when the list runs out."""
    queue: list[ScriptedExecutor] = []
    handed_out: list[ScriptedExecutor] = []

    def factory() -> ScriptedExecutor:
        ex = queue.pop(0) if queue else ScriptedExecutor([text("done"), result("done")])
        handed_out.append(ex)
        return ex

    factory.queue = queue
    factory.handed_out = handed_out
    return factory


@pytest.fixture()
def manager(settings, executors):
    from subagents.manager import SubAgentManager
    from subagents.templates import resolve

    return SubAgentManager(resolve([]), settings=settings, executor_factory=executors)
