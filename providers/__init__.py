from typing import Callable

from .base import ExecutionRequest, NormalizedEvent, TaskExecutor

_FACTORIES: dict[str, Callable[[], TaskExecutor]] = {}


def register_executor(name: str, factory: Callable[[], TaskExecutor]) -> None:
    """Make *factory* available to get_executor() under *name*."""
    _FACTORIES[name] = factory


def get_executor(name: str) -> TaskExecutor:
    """Factory: create an executor instance by name."""
    if name in _FACTORIES:
        return _FACTORIES[name]()
    if name == "openai":
        from .openai_provider import OpenAIExecutor
        return OpenAIExecutor()
    raise ValueError(f"Unknown provider: {name}")


__all__ = [
    "get_executor",
    "register_executor",
    "ExecutionRequest",
    "NormalizedEvent",
    "TaskExecutor",
]
