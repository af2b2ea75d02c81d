"""SubAgentManager: spawn, poll, cancel and list sub-agents for one session."""

import asyncio
import hashlib
import json
import logging
from typing import Any, Awaitable, Callable, Mapping

import metrics
from config import SubAgentSettings
from providers import get_executor
from providers.base import TaskExecutor

from .errors import FeatureDisabled, SubAgentError, UnknownTemplate
from .plan import PlanSuggestionCollector
from .runner import WorkerRunner
from .store import TaskSnapshot, TaskStatus, TaskStore
from .templates import AgentTemplate

logger = logging.getLogger(__name__)


class SubAgentManager:
    """Scheduler for sub-agent tasks.

    All public operations except wait() and shutdown() are non-blocking:
    they read or mutate the store and return. Runners are detached
    asyncio tasks created on the caller's event loop.

    Args:
        templates: Resolved template registry for the session.
        settings: Feature gate, admission ceiling, and runner defaults.
        executor_factory: Returns a fresh executor per task. Defaults to
            ``get_executor(settings.provider)``.
        store: Task store to use; a new one sized from settings otherwise.
        notify: Optional coroutine receiving ``subagents_update`` payloads.
        cwd: Working directory passed to executors.
        project_instructions: Project doc text (AGENTS.md) given to every
            sub-agent, the same text the primary agent sees.
    """

    def __init__(
        self,
        templates: Mapping[str, AgentTemplate],
        settings: SubAgentSettings | None = None,
        executor_factory: Callable[[], TaskExecutor] | None = None,
        store: TaskStore | None = None,
        notify: Callable[[dict], Awaitable[None]] | None = None,
        cwd: str = ".",
        project_instructions: str | None = None,
    ):
        self.settings = settings or SubAgentSettings()
        self.templates = dict(templates)
        self.store = store or TaskStore(max_history=self.settings.max_history)
        self.collector = PlanSuggestionCollector(self.store)
        self.cwd = cwd
        self.project_instructions = project_instructions
        self._executor_factory = executor_factory or (lambda: get_executor(self.settings.provider))
        self._notify = notify
        self._tasks: dict[str, asyncio.Task] = {}
        self._last_emitted_hash: str | None = None

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    # ── Core operations ─────────────────────────────────────────────

    def spawn(self, template_name: str, task_description: str) -> str:
        """Start a sub-agent and return its task id without waiting.

        Raises:
            FeatureDisabled: the subsystem is turned off.
            UnknownTemplate: *template_name* is not in the registry.
            AdmissionRejected: max_concurrent active tasks already exist.
        """
        if not self.settings.enabled:
            metrics.record_rejected(FeatureDisabled.kind)
            raise FeatureDisabled("Sub-agents are disabled in this session.")

        template = self.templates.get(template_name)
        if template is None:
            metrics.record_rejected(UnknownTemplate.kind)
            known = ", ".join(sorted(self.templates))
            raise UnknownTemplate(
                f"Unknown sub-agent template '{template_name}'. Available: {known}"
            )

        max_len = self.settings.max_task_length
        if max_len and len(task_description) > max_len:
            task_description = task_description[:max_len] + "... [truncated]"

        loop = asyncio.get_running_loop()
        try:
            record = self.store.create(
                template.name,
                task_description,
                max_active=self.settings.max_concurrent,
            )
        except SubAgentError as e:
            metrics.record_rejected(e.kind)
            raise

        try:
            executor = self._executor_factory()
        except Exception as e:
            logger.exception("Could not create executor", extra={"task_id": record.id})
            self.store.mark_running(record.id)
            self.store.fail(record.id, f"Could not create executor: {e}")
            return record.id

        runner = WorkerRunner(
            record.id,
            template,
            task_description,
            store=self.store,
            collector=self.collector,
            executor=executor,
            token=record.cancel_token,
            default_model=self.settings.default_model,
            available_skills=frozenset(self.settings.available_skills),
            project_instructions=self.project_instructions,
            cwd=self.cwd,
            timeout=self.settings.default_timeout,
            notify=self.emit_update_if_changed,
        )
        handle = loop.create_task(runner.run(), name=f"subagent-{record.id}")
        self._tasks[record.id] = handle
        handle.add_done_callback(lambda _t, tid=record.id: self._tasks.pop(tid, None))

        metrics.record_spawn(template.name)
        logger.info("Spawned sub-agent (template '%s')", template.name, extra={"task_id": record.id})
        return record.id

    def poll(self, task_id: str, include_messages: bool = False) -> TaskSnapshot:
        """Latest state of *task_id*. Raises NotFound for unknown ids."""
        return self.store.snapshot(task_id, drain_messages=include_messages)

    def cancel(self, task_id: str) -> TaskSnapshot:
        """Cancel *task_id*; a no-op if it already finished.

        Raises NotFound for unknown ids.
        """
        snap, changed = self.store.cancel(task_id)
        if changed:
            logger.info("Cancelled sub-agent", extra={"task_id": task_id})
        return snap

    def list(self) -> list[TaskSnapshot]:
        """All known tasks, oldest first."""
        return self.store.snapshots()

    def running_count(self) -> int:
        return self.store.count_active()

    # ── Session helpers ─────────────────────────────────────────────

    async def wait(self, task_id: str, timeout: float | None = None) -> TaskSnapshot:
        """Wait for the runner of *task_id* to exit, then return its snapshot."""
        self.poll(task_id)
        handle = self._tasks.get(task_id)
        if handle is not None and not handle.done():
            await asyncio.wait_for(asyncio.shield(handle), timeout=timeout)
        return self.poll(task_id)

    async def shutdown(self) -> None:
        """Cancel every active task, wait for runners to exit, and clear the store."""
        for task_id in self.store.active_ids():
            self.store.cancel_if_active(task_id)

        handles = [h for h in self._tasks.values() if not h.done()]
        if handles:
            _, pending = await asyncio.wait(handles, timeout=5)
            for handle in pending:
                handle.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        self._tasks.clear()
        self.store.clear()
        self._last_emitted_hash = None

    # ── Progress notifications ──────────────────────────────────────

    def build_update(self) -> dict[str, Any]:
        snapshots = self.store.snapshots()
        return {
            "type": "subagents_update",
            "created_count": len(snapshots),
            "running_count": sum(1 for s in snapshots if s.status is TaskStatus.RUNNING),
            "agents": [
                {
                    "id": s.id,
                    "template": s.template_name,
                    "title": s.title,
                    "status": s.status.value,
                    "tool_uses": s.tool_uses,
                    "total_tokens": s.total_tokens,
                    "last_activity": s.last_activity.to_dict() if s.last_activity else None,
                    "transcript": list(s.transcript),
                    "transcript_truncated": s.transcript_truncated,
                }
                for s in snapshots
            ],
        }

    async def emit_update_if_changed(self) -> None:
        """Send a subagents_update payload unless it equals the last one sent."""
        if self._notify is None:
            return

        update = self.build_update()
        digest = hashlib.sha256(
            json.dumps(update, sort_keys=True, default=str).encode()
        ).hexdigest()
        if digest == self._last_emitted_hash:
            return
        self._last_emitted_hash = digest

        try:
            await self._notify(update)
        except Exception:
            logger.warning("Failed to send sub-agent update", exc_info=True)
