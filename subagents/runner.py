"""WorkerRunner: drives one sub-agent against its executor and posts progress to the store."""

import asyncio
import logging
import time
from typing import Awaitable, Callable

import metrics
from providers.base import ExecutionRequest, NormalizedEvent, TaskExecutor

from .errors import ExecutionFailure
from .plan import PlanSuggestionCollector, parse_plan_update
from .store import Activity, CancellationToken, TaskStatus, TaskStore
from .templates import AgentTemplate

logger = logging.getLogger(__name__)


class WorkerRunner:
    """Runs a single sub-agent task to a terminal state.

    The runner is the only writer of its record besides the cancel path.
    It checks the cancellation token after starting the executor and at
    every event the executor yields; that is where it suspends.
    """

    def __init__(
        self,
        task_id: str,
        template: AgentTemplate,
        task: str,
        *,
        store: TaskStore,
        collector: PlanSuggestionCollector,
        executor: TaskExecutor,
        token: CancellationToken,
        default_model: str,
        available_skills: set[str] | frozenset[str] = frozenset(),
        project_instructions: str | None = None,
        cwd: str = ".",
        timeout: float = 0,
        notify: Callable[[], Awaitable[None]] | None = None,
    ):
        self.task_id = task_id
        self.template = template
        self.task = task
        self._store = store
        self._collector = collector
        self._executor = executor
        self._token = token
        self._default_model = default_model
        self._available_skills = available_skills
        self._project_instructions = project_instructions
        self._cwd = cwd
        self._timeout = timeout
        self._notify_fn = notify
        self._created = time.time()
        self._log_extra = {"task_id": task_id}
        self._interrupt_task: asyncio.Future | None = None
        self._final_status: TaskStatus | None = None

    # ── Request building ────────────────────────────────────────────

    def build_request(self) -> tuple[ExecutionRequest, list[str]]:
        """Turn the template and task into an ExecutionRequest plus warnings."""
        items: list[dict] = []
        warnings: list[str] = []
        skills: list[str] = []

        if self.template.instructions.strip():
            items.append({"type": "text", "text": self.template.instructions})

        for skill in self.template.skills:
            if skill in self._available_skills:
                items.append({"type": "skill", "name": skill})
                skills.append(skill)
            else:
                warnings.append(f"unknown skill preset: {skill}")

        items.append({"type": "text", "text": f"{self.task}\n"})

        request = ExecutionRequest(
            task_id=self.task_id,
            items=items,
            model=self.template.model or self._default_model,
            cwd=self._cwd,
            skills=skills,
            project_instructions=self._project_instructions,
        )
        return request, warnings

    # ── Lifecycle ───────────────────────────────────────────────────

    async def _notify(self) -> None:
        if self._notify_fn is not None:
            await self._notify_fn()

    def _request_interrupt(self) -> None:
        self._interrupt_task = asyncio.ensure_future(self._interrupt())

    async def _interrupt(self) -> None:
        try:
            await self._executor.interrupt()
        except Exception:
            logger.warning("Interrupt failed", exc_info=True, extra=self._log_extra)

    def _on_timeout(self) -> None:
        if self._store.status(self.task_id) is TaskStatus.RUNNING:
            logger.info("Timed out after %ss", self._timeout, extra=self._log_extra)
            self._store.add_warnings(self.task_id, [f"timed out after {self._timeout:g}s"])
            self._store.cancel_if_active(self.task_id)

    def _complete(self, output: str) -> None:
        if self._store.complete(self.task_id, output):
            self._final_status = TaskStatus.COMPLETED

    def _fail(self, error: str) -> None:
        if self._store.fail(self.task_id, error):
            self._final_status = TaskStatus.FAILED

    async def run(self) -> None:
        """Execute the task. Never raises except for task cancellation."""
        started = False
        timeout_handle = None

        try:
            if self._token.cancelled or not self._store.mark_running(self.task_id):
                logger.info("Cancelled before start", extra=self._log_extra)
                return

            started = True
            metrics.record_start()
            loop = asyncio.get_running_loop()
            self._token.add_callback(lambda: loop.call_soon_threadsafe(self._request_interrupt))
            if self._timeout and self._timeout > 0:
                timeout_handle = loop.call_later(self._timeout, self._on_timeout)

            logger.info("Running template '%s'", self.template.name, extra=self._log_extra)
            await self._notify()
            await self._execute()
        except asyncio.CancelledError:
            self._store.cancel_if_active(self.task_id)
            raise
        except Exception as e:
            logger.exception("Sub-agent failed", extra=self._log_extra)
            self._fail(str(ExecutionFailure(f"Sub-agent execution failed: {e}")))
        finally:
            if timeout_handle is not None:
                timeout_handle.cancel()
            if self._interrupt_task is not None and not self._interrupt_task.done():
                await self._interrupt_task
            try:
                await self._executor.disconnect()
            except Exception:
                logger.warning("Disconnect failed", exc_info=True, extra=self._log_extra)

            # Completed and Failed are only ever written by this runner.
            status = self._final_status or TaskStatus.CANCELLED
            if started:
                metrics.record_finish(status.value, time.time() - self._created)
            else:
                metrics.record_finish(status.value, started=False)
            logger.info("Finished: %s", status.value, extra=self._log_extra)
            await self._notify()

    async def _execute(self) -> None:
        request, warnings = self.build_request()
        self._store.add_warnings(self.task_id, warnings)

        await self._executor.start(request)
        if self._token.cancelled:
            logger.info("Acknowledged cancellation", extra=self._log_extra)
            return

        messages: list[str] = []
        seq = 0

        async for event in self._executor.stream_events():
            if self._token.cancelled:
                logger.info("Acknowledged cancellation", extra=self._log_extra)
                return

            if event.type == "plan_update":
                seq += 1
                self._collector.record(self.task_id, parse_plan_update(event.data, seq))
            elif event.type == "result":
                self._complete(event.data.get("text") or "\n\n".join(messages))
                return
            elif event.type == "error":
                message = event.data.get("message") or "unknown execution error"
                self._fail(str(ExecutionFailure(message)))
                return
            else:
                self._apply_progress(event, messages)

            await self._notify()

        if self._token.cancelled:
            logger.info("Acknowledged cancellation", extra=self._log_extra)
            return

        # Stream ended without a result event.
        self._complete("\n\n".join(messages))

    def _apply_progress(self, event: NormalizedEvent, messages: list[str]) -> None:
        if event.type == "assistant_text":
            text = event.data.get("text", "")
            if text:
                messages.append(text)
                self._store.append_message(self.task_id, text)
        elif event.type == "tool_use":
            self._store.bump_tool_use(
                self.task_id,
                Activity(
                    kind=event.data.get("kind", "Activity"),
                    label=event.data.get("label", ""),
                ),
            )
        elif event.type == "usage":
            self._store.set_total_tokens(self.task_id, event.data.get("total_tokens"))
        else:
            logger.debug("Ignored event %r", event.type, extra=self._log_extra)
