"""Abstract base class for task executors (the model side of a sub-agent)."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator

_logger = logging.getLogger(__name__)


def _sanitize_api_error(provider_name: str, error: Exception) -> str:
    """Log full error server-side, return a safe message for the task record.

    Strips API keys, bearer tokens, and other secrets so they never end up
    in a poll result.
    """
    _logger.error("%s API error: %s", provider_name, error, exc_info=True)
    error_type = type(error).__name__
    msg = str(error).split('\n')[0][:200]
    msg = re.sub(r'(sk-[a-zA-Z0-9]{6})[a-zA-Z0-9]+', r'\1...', msg)
    msg = re.sub(r'(Bearer\s+)[^\s"]+', r'\1[REDACTED]', msg)
    msg = re.sub(r'(key[=:]\s*)[^\s&"]+', r'\1[REDACTED]', msg, flags=re.IGNORECASE)
    return f"{provider_name} error ({error_type}): {msg}"


class NormalizedEvent:
    """Normalized event emitted by all executors.

    Event types:
      - assistant_text : an agent message
      - plan_update    : ``update_plan`` call, data ``{"explanation", "plan"}``
      - tool_use       : a tool call started, data ``{"kind", "label"}``
      - usage          : token usage, data ``{"total_tokens"}``
      - result         : final answer, data ``{"text"}``
      - error          : unrecoverable failure, data ``{"message"}``
    """

    __slots__ = ("type", "data")

    def __init__(self, event_type: str, data: dict):
        self.type = event_type
        self.data = data

    def __repr__(self) -> str:
        return f"NormalizedEvent({self.type!r}, {self.data!r})"


@dataclass
class ExecutionRequest:
    """Everything an executor needs to run one sub-agent turn."""

    task_id: str
    items: list[dict]
    model: str
    cwd: str = "."
    skills: list[str] = field(default_factory=list)
    project_instructions: str | None = None  # AGENTS.md text shared with the parent

    @property
    def prompt(self) -> str:
        """All text items joined, in order."""
        return "\n\n".join(i["text"] for i in self.items if i.get("type") == "text")


class TaskExecutor(ABC):
    """Abstract base for execution back-ends."""

    provider_name: str

    @abstractmethod
    async def start(self, request: ExecutionRequest) -> None:
        """Submit the sub-agent's turn. Called once per executor."""
        ...

    @abstractmethod
    async def stream_events(self) -> AsyncIterator[NormalizedEvent]:
        """Yield NormalizedEvents until the turn finishes.

        Each yielded event is a suspension point where the runner checks
        for cancellation.
        """
        ...

    @abstractmethod
    async def interrupt(self) -> None:
        """Stop the current turn as soon as possible."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Clean up resources."""
        ...
