"""Task record store, the single source of truth for sub-agent state.

Every read and mutation runs under one lock so pollers always see a
consistent snapshot. Each record has exactly one writer (its runner) plus
the manager's cancel path.
"""

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .errors import AdmissionRejected, NotFound
from .plan import PlanSuggestion

TRANSCRIPT_MAX_LINES = 30
TRANSCRIPT_MAX_LINE_CHARS = 300
DEFAULT_MAX_HISTORY = 100


class TaskStatus(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.PENDING, TaskStatus.RUNNING)


class CancellationToken:
    """Cooperative cancellation flag with fire-once callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()

    def add_callback(self, cb: Callable[[], None]) -> None:
        """Run *cb* on cancel; immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)
                return
        cb()


@dataclass(frozen=True)
class Activity:
    kind: str
    label: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "label": self.label}


@dataclass
class TaskRecord:
    id: str
    template_name: str
    task_description: str
    title: str
    status: TaskStatus = TaskStatus.PENDING
    output: str | None = None
    error: str | None = None
    plan_suggestions: list[PlanSuggestion] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    transcript: deque = field(default_factory=deque)
    transcript_truncated: bool = False
    tool_uses: int = 0
    last_activity: Activity | None = None
    total_tokens: int | None = None
    warnings: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken, repr=False)


@dataclass(frozen=True)
class TaskSnapshot:
    """Immutable view of a TaskRecord taken under the store lock."""

    id: str
    template_name: str
    task_description: str
    title: str
    status: TaskStatus
    output: str | None
    error: str | None
    plan_suggestions: tuple[PlanSuggestion, ...]
    messages: tuple[str, ...]
    transcript: tuple[str, ...]
    transcript_truncated: bool
    tool_uses: int
    last_activity: Activity | None
    total_tokens: int | None
    warnings: tuple[str, ...]
    created_at: float
    finished_at: float | None

    def summary(self) -> dict:
        return {
            "id": self.id,
            "template": self.template_name,
            "status": self.status.value,
            "created_at": self.created_at,
        }


def title_from_task(task: str) -> str | None:
    """First non-blank line of *task*, stripped."""
    for line in task.splitlines():
        line = line.strip()
        if line:
            return line
    return None


def _clip(line: str) -> str:
    if len(line) <= TRANSCRIPT_MAX_LINE_CHARS:
        return line
    return line[:TRANSCRIPT_MAX_LINE_CHARS] + "…"


class TaskStore:
    """Process-wide table of sub-agent records keyed by task id."""

    def __init__(self, max_history: int = DEFAULT_MAX_HISTORY):
        self._lock = threading.Lock()
        self._records: dict[str, TaskRecord] = {}
        self.max_history = max_history

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ── Internal helpers (caller holds the lock) ────────────────────

    def _get(self, task_id: str) -> TaskRecord:
        record = self._records.get(task_id)
        if record is None:
            raise NotFound(f"Sub-agent task '{task_id}' not found.")
        return record

    def _new_id(self) -> str:
        while True:
            task_id = str(uuid.uuid4())
            if task_id not in self._records:
                return task_id

    def _snapshot(self, record: TaskRecord, messages: tuple[str, ...] = ()) -> TaskSnapshot:
        return TaskSnapshot(
            id=record.id,
            template_name=record.template_name,
            task_description=record.task_description,
            title=record.title,
            status=record.status,
            output=record.output,
            error=record.error,
            plan_suggestions=tuple(record.plan_suggestions),
            messages=messages,
            transcript=tuple(record.transcript),
            transcript_truncated=record.transcript_truncated,
            tool_uses=record.tool_uses,
            last_activity=record.last_activity,
            total_tokens=record.total_tokens,
            warnings=tuple(record.warnings),
            created_at=record.created_at,
            finished_at=record.finished_at,
        )

    def _finish(self, record: TaskRecord, status: TaskStatus) -> None:
        record.status = status
        record.finished_at = time.time()
        self._evict(keep=record.id)

    def _evict(self, keep: str | None = None) -> None:
        """Drop the oldest terminal records beyond max_history, sparing *keep*."""
        excess = len(self._records) - self.max_history
        if excess <= 0:
            return
        evictable = [
            r.id for r in self._records.values()
            if r.status.is_terminal and r.id != keep
        ]
        for task_id in evictable[:excess]:
            del self._records[task_id]

    # ── Creation and lookup ─────────────────────────────────────────

    def create(
        self,
        template_name: str,
        task_description: str,
        max_active: int | None = None,
    ) -> TaskRecord:
        """Allocate a Pending record, admission-checked against *max_active*."""
        with self._lock:
            if max_active is not None:
                active = sum(1 for r in self._records.values() if not r.status.is_terminal)
                if active >= max_active:
                    raise AdmissionRejected(
                        f"Max concurrent sub-agents ({max_active}) reached."
                    )
            record = TaskRecord(
                id=self._new_id(),
                template_name=template_name,
                task_description=task_description,
                title=title_from_task(task_description) or template_name,
            )
            self._records[record.id] = record
            self._evict()
            return record

    def snapshot(self, task_id: str, drain_messages: bool = False) -> TaskSnapshot:
        with self._lock:
            record = self._get(task_id)
            messages: tuple[str, ...] = ()
            if drain_messages:
                messages = tuple(record.messages)
                record.messages.clear()
            return self._snapshot(record, messages)

    def snapshots(self) -> list[TaskSnapshot]:
        """All records in creation order (dict insertion order)."""
        with self._lock:
            return [self._snapshot(r) for r in self._records.values()]

    def token(self, task_id: str) -> CancellationToken:
        with self._lock:
            return self._get(task_id).cancel_token

    def count_active(self) -> int:
        with self._lock:
            return sum(1 for r in self._records.values() if not r.status.is_terminal)

    def active_ids(self) -> list[str]:
        with self._lock:
            return [r.id for r in self._records.values() if not r.status.is_terminal]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    # ── Status transitions ──────────────────────────────────────────

    def mark_running(self, task_id: str) -> bool:
        with self._lock:
            record = self._records.get(task_id)
            if record is None or record.status is not TaskStatus.PENDING:
                return False
            record.status = TaskStatus.RUNNING
            return True

    def complete(self, task_id: str, output: str) -> bool:
        with self._lock:
            record = self._records.get(task_id)
            if record is None or record.status.is_terminal:
                return False
            record.output = output
            record.error = None
            self._finish(record, TaskStatus.COMPLETED)
            return True

    def fail(self, task_id: str, error: str) -> bool:
        with self._lock:
            record = self._records.get(task_id)
            if record is None or record.status.is_terminal:
                return False
            record.output = None
            record.error = error
            self._finish(record, TaskStatus.FAILED)
            return True

    def cancel(self, task_id: str) -> tuple[TaskSnapshot, bool]:
        """Move an active record to Cancelled.

        Returns the resulting snapshot and whether a transition happened.
        Raises NotFound for unknown ids.
        """
        with self._lock:
            record = self._get(task_id)
            if record.status.is_terminal:
                return self._snapshot(record), False
            record.output = None
            record.error = None
            self._finish(record, TaskStatus.CANCELLED)
            snap = self._snapshot(record)
        record.cancel_token.cancel()
        return snap, True

    def cancel_if_active(self, task_id: str) -> bool:
        """Like cancel(), but a no-op for unknown or finished tasks."""
        with self._lock:
            record = self._records.get(task_id)
            if record is None or record.status.is_terminal:
                return False
            record.output = None
            record.error = None
            self._finish(record, TaskStatus.CANCELLED)
        record.cancel_token.cancel()
        return True

    def status(self, task_id: str) -> TaskStatus | None:
        with self._lock:
            record = self._records.get(task_id)
            return record.status if record else None

    # ── Progress updates ────────────────────────────────────────────

    def append_plan_suggestion(self, task_id: str, suggestion: PlanSuggestion) -> bool:
        with self._lock:
            record = self._records.get(task_id)
            if record is None or record.status.is_terminal:
                return False
            record.plan_suggestions.append(suggestion)
            return True

    def plan_suggestions(self, task_id: str) -> list[PlanSuggestion]:
        with self._lock:
            return list(self._get(task_id).plan_suggestions)

    def append_message(self, task_id: str, message: str) -> bool:
        with self._lock:
            record = self._records.get(task_id)
            if record is None or record.status.is_terminal:
                return False
            record.messages.append(message)
            for raw in message.splitlines():
                line = raw.rstrip()
                if not line:
                    continue
                record.transcript.append(_clip(line))
                while len(record.transcript) > TRANSCRIPT_MAX_LINES:
                    record.transcript.popleft()
                    record.transcript_truncated = True
            return True

    def bump_tool_use(self, task_id: str, activity: Activity) -> bool:
        with self._lock:
            record = self._records.get(task_id)
            if record is None or record.status.is_terminal:
                return False
            record.tool_uses += 1
            record.last_activity = activity
            return True

    def set_total_tokens(self, task_id: str, total_tokens: int | None) -> bool:
        with self._lock:
            record = self._records.get(task_id)
            if record is None or record.status.is_terminal:
                return False
            record.total_tokens = total_tokens
            return True

    def add_warnings(self, task_id: str, warnings: list[str]) -> None:
        if not warnings:
            return
        with self._lock:
            record = self._records.get(task_id)
            if record is not None:
                record.warnings.extend(warnings)
