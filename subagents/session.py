"""Per-session wiring for sub-agents.

A SubAgentSession owns the template registry, the task store, and the
manager for one primary-agent session. Create it when the session starts
and close it when the session ends:

    async with SubAgentSession.open(cwd) as session:
        tool_handlers["manage_subagents"] = session.handler
        tools.extend(session.tool_definitions())
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable

from config import SubAgentSettings, load_settings
from providers.base import TaskExecutor

from .manager import SubAgentManager
from .meta_tool import create_subagent_handler, tool_definitions
from .templates import AgentTemplate, discover_template_sources, project_instructions, resolve

logger = logging.getLogger(__name__)


class SubAgentSession:
    def __init__(
        self,
        templates: dict[str, AgentTemplate],
        settings: SubAgentSettings,
        executor_factory: Callable[[], TaskExecutor] | None = None,
        notify: Callable[[dict], Awaitable[None]] | None = None,
        cwd: str = ".",
        project_doc: str | None = None,
    ):
        self.settings = settings
        self.manager = SubAgentManager(
            templates,
            settings=settings,
            executor_factory=executor_factory,
            notify=notify,
            cwd=cwd,
            project_instructions=project_doc,
        )
        self.handler = create_subagent_handler(self.manager)
        self._closed = False

    @classmethod
    def open(
        cls,
        cwd: str | Path,
        settings: SubAgentSettings | None = None,
        executor_factory: Callable[[], TaskExecutor] | None = None,
        notify: Callable[[dict], Awaitable[None]] | None = None,
    ) -> "SubAgentSession":
        """Load settings, the project doc and the templates visible from *cwd*."""
        settings = settings or load_settings()
        sources = discover_template_sources(cwd, settings.template_files)
        templates = resolve(sources)
        logger.info(
            "Sub-agents %s with %d templates: %s",
            "enabled" if settings.enabled else "disabled",
            len(templates),
            ", ".join(templates),
        )
        return cls(
            templates,
            settings,
            executor_factory=executor_factory,
            notify=notify,
            cwd=str(cwd),
            project_doc=project_instructions(sources),
        )

    def tool_definitions(self) -> list[dict]:
        return tool_definitions(self.settings)

    async def close(self) -> None:
        """Cancel running sub-agents and drop all task records."""
        if self._closed:
            return
        self._closed = True
        await self.manager.shutdown()

    async def __aenter__(self) -> "SubAgentSession":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
