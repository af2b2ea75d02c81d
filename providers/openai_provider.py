"""OpenAI executor: function-calling loop whose only tool is update_plan."""

import json
from typing import AsyncIterator

from .base import ExecutionRequest, NormalizedEvent, TaskExecutor, _sanitize_api_error

MAX_ITERATIONS = 20  # Safety limit for the agentic loop
DEFAULT_MODEL = "gpt-4o"

SYSTEM_PROMPT = (
    "You are a sub-agent working on one bounded task for a primary agent. "
    "Complete the task and finish with a concise summary of the result. "
    "When you want to propose changes to the shared task plan, call "
    "update_plan; the primary agent decides whether to apply them."
)

UPDATE_PLAN_DEFINITION = {
    "type": "function",
    "function": {
        "name": "update_plan",
        "description": "Propose an updated task plan to the primary agent.",
        "parameters": {
            "type": "object",
            "properties": {
                "explanation": {"type": "string"},
                "plan": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "step": {"type": "string"},
                            "status": {
                                "type": "string",
                                "enum": ["pending", "in_progress", "completed"],
                            },
                        },
                        "required": ["step", "status"],
                    },
                },
            },
            "required": ["plan"],
        },
    },
}


class OpenAIExecutor(TaskExecutor):
    """Executor using OpenAI chat completions with streaming."""

    provider_name = "openai"

    def __init__(self, api_key: str | None = None, client=None):
        self._api_key = api_key
        self._client = client
        self._model = DEFAULT_MODEL
        self._messages: list[dict] = []
        self._interrupted = False

    async def start(self, request: ExecutionRequest) -> None:
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self._api_key)
        self._model = request.model if request.model and request.model != "auto" else DEFAULT_MODEL
        system = SYSTEM_PROMPT
        if request.project_instructions:
            system += "\n\nProject instructions:\n" + request.project_instructions
        self._messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": request.prompt},
        ]
        self._interrupted = False

    async def stream_events(self) -> AsyncIterator[NormalizedEvent]:
        if self._client is None:
            return

        iterations = 0
        total_tokens = 0
        last_text = ""

        while iterations < MAX_ITERATIONS and not self._interrupted:
            iterations += 1

            try:
                stream = await self._client.chat.completions.create(
                    model=self._model,
                    messages=self._messages,
                    tools=[UPDATE_PLAN_DEFINITION],
                    stream=True,
                    stream_options={"include_usage": True},
                )
            except Exception as e:
                yield NormalizedEvent("error", {"message": _sanitize_api_error("OpenAI", e)})
                return

            full_content = ""
            tool_calls_map: dict[int, dict] = {}  # index -> {id, name, arguments}

            try:
                async for chunk in stream:
                    if self._interrupted:
                        break

                    if chunk.usage:
                        total_tokens += chunk.usage.total_tokens or 0

                    if not chunk.choices:
                        continue

                    delta = chunk.choices[0].delta
                    if delta and delta.content:
                        full_content += delta.content

                    if delta and delta.tool_calls:
                        for tc_delta in delta.tool_calls:
                            slot = tool_calls_map.setdefault(
                                tc_delta.index, {"id": "", "name": "", "arguments": ""}
                            )
                            if tc_delta.id:
                                slot["id"] = tc_delta.id
                            if tc_delta.function:
                                if tc_delta.function.name:
                                    slot["name"] = tc_delta.function.name
                                if tc_delta.function.arguments:
                                    slot["arguments"] += tc_delta.function.arguments
            except Exception as e:
                yield NormalizedEvent("error", {"message": _sanitize_api_error("OpenAI", e)})
                return

            if self._interrupted:
                return

            if total_tokens:
                yield NormalizedEvent("usage", {"total_tokens": total_tokens})
            if full_content:
                last_text = full_content
                yield NormalizedEvent("assistant_text", {"text": full_content})

            tool_calls = [tool_calls_map[i] for i in sorted(tool_calls_map)]
            assistant_msg: dict = {"role": "assistant", "content": full_content or None}
            if tool_calls:
                assistant_msg["tool_calls"] = [
                    {
                        "id": tc["id"],
                        "type": "function",
                        "function": {"name": tc["name"], "arguments": tc["arguments"]},
                    }
                    for tc in tool_calls
                ]
            self._messages.append(assistant_msg)

            if not tool_calls:
                break

            for tc in tool_calls:
                try:
                    args = json.loads(tc["arguments"] or "{}")
                except json.JSONDecodeError:
                    args = {}

                if tc["name"] == "update_plan" and isinstance(args, dict):
                    yield NormalizedEvent("plan_update", {
                        "explanation": args.get("explanation"),
                        "plan": args.get("plan", []),
                    })
                    content = "Plan suggestion recorded."
                else:
                    content = f"Unknown tool: {tc['name']}"

                self._messages.append({
                    "role": "tool",
                    "tool_call_id": tc["id"],
                    "content": content,
                })

        if not self._interrupted:
            yield NormalizedEvent("result", {"text": last_text})

    async def interrupt(self) -> None:
        self._interrupted = True

    async def disconnect(self) -> None:
        self._client = None
        self._messages = []
