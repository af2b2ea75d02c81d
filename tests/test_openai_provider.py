"""Tests for OpenAIExecutor against a fake streaming client."""

import json
from types import SimpleNamespace

import pytest

from providers import get_executor, register_executor
from providers.base import ExecutionRequest, _sanitize_api_error
from providers.openai_provider import OpenAIExecutor

from conftest import ScriptedExecutor


def chunk(content=None, tool_calls=None, usage=None):
    choices = []
    if content is not None or tool_calls is not None:
        choices = [SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))]
    return SimpleNamespace(choices=choices, usage=usage)


def tool_call_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index,
        id=call_id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )


class _Stream:
    def __init__(self, chunks):
        self._chunks = list(chunks)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for c in self._chunks:
            if isinstance(c, Exception):
                raise c
            yield c


class FakeClient:
    """Mimics ``client.chat.completions.create`` with canned streams."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[dict] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return _Stream(response)


def request(model="gpt-4o-mini") -> ExecutionRequest:
    return ExecutionRequest(
        task_id="t1",
        items=[
            {"type": "text", "text": "Be careful."},
            {"type": "skill", "name": "pytest"},
            {"type": "text", "text": "fix the bug\n"},
        ],
        model=model,
    )


async def collect(executor) -> list:
    return [e async for e in executor.stream_events()]


class TestOpenAIExecutor:

    @pytest.mark.asyncio
    async def test_plain_answer(self):
        client = FakeClient([
            chunk(content="Fixed "),
            chunk(content="it."),
            chunk(usage=SimpleNamespace(total_tokens=42)),
        ])
        ex = OpenAIExecutor(client=client)
        await ex.start(request())
        events = await collect(ex)

        assert [e.type for e in events] == ["usage", "assistant_text", "result"]
        assert events[0].data == {"total_tokens": 42}
        assert events[-1].data == {"text": "Fixed it."}

        call = client.calls[0]
        assert call["model"] == "gpt-4o-mini"
        assert call["stream"] is True
        assert call["messages"][1] == {"role": "user", "content": "Be careful.\n\nfix the bug\n"}
        assert call["tools"][0]["function"]["name"] == "update_plan"

    @pytest.mark.asyncio
    async def test_update_plan_call_becomes_plan_event(self):
        args = json.dumps({"explanation": "split", "plan": [{"step": "a", "status": "pending"}]})
        client = FakeClient(
            [
                chunk(tool_calls=[tool_call_delta(0, "call_1", "update_plan", args[:10])]),
                chunk(tool_calls=[tool_call_delta(0, arguments=args[10:])]),
            ],
            [chunk(content="Done.")],
        )
        ex = OpenAIExecutor(client=client)
        await ex.start(request())
        events = await collect(ex)

        assert [e.type for e in events] == ["plan_update", "assistant_text", "result"]
        assert events[0].data == {"explanation": "split", "plan": [{"step": "a", "status": "pending"}]}

        second = client.calls[1]["messages"]
        assert second[2]["tool_calls"][0]["function"]["name"] == "update_plan"
        assert second[3] == {"role": "tool", "tool_call_id": "call_1", "content": "Plan suggestion recorded."}

    @pytest.mark.asyncio
    async def test_api_error_is_sanitized(self):
        client = FakeClient(RuntimeError("bad key sk-abcdefSECRETSECRET"))
        ex = OpenAIExecutor(client=client)
        await ex.start(request())
        events = await collect(ex)

        assert [e.type for e in events] == ["error"]
        message = events[0].data["message"]
        assert message.startswith("OpenAI error (RuntimeError)")
        assert "SECRET" not in message

    @pytest.mark.asyncio
    async def test_error_mid_stream_is_sanitized(self):
        client = FakeClient([
            chunk(content="par"),
            ConnectionError("reset by peer, token sk-abcdefLEAKEDLEAKED"),
        ])
        ex = OpenAIExecutor(client=client)
        await ex.start(request())
        events = await collect(ex)

        assert [e.type for e in events] == ["error"]
        message = events[0].data["message"]
        assert message.startswith("OpenAI error (ConnectionError)")
        assert "LEAKED" not in message

    @pytest.mark.asyncio
    async def test_project_instructions_in_system_prompt(self):
        client = FakeClient([chunk(content="ok")])
        ex = OpenAIExecutor(client=client)
        req = request()
        req.project_instructions = "Always run ruff."
        await ex.start(req)
        await collect(ex)
        system = client.calls[0]["messages"][0]
        assert system["role"] == "system"
        assert system["content"].endswith("Project instructions:\nAlways run ruff.")

    @pytest.mark.asyncio
    async def test_interrupt_stops_without_result(self):
        client = FakeClient([chunk(content="partial")])
        ex = OpenAIExecutor(client=client)
        await ex.start(request())
        await ex.interrupt()
        assert await collect(ex) == []

    @pytest.mark.asyncio
    async def test_auto_model_uses_default(self):
        client = FakeClient([chunk(content="ok")])
        ex = OpenAIExecutor(client=client)
        await ex.start(request(model="auto"))
        await collect(ex)
        assert client.calls[0]["model"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_disconnect_drops_client(self):
        ex = OpenAIExecutor(client=FakeClient())
        await ex.disconnect()
        assert await collect(ex) == []


class TestRegistry:

    def test_registered_factory(self):
        register_executor("scripted", ScriptedExecutor)
        assert isinstance(get_executor("scripted"), ScriptedExecutor)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_executor("does-not-exist")

    def test_sanitize_redacts_bearer(self):
        msg = _sanitize_api_error("OpenAI", ValueError("Authorization: Bearer abc.def"))
        assert "abc.def" not in msg
        assert "[REDACTED]" in msg
