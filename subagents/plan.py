"""Plan suggestions emitted by sub-agents, and the collector that files them."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .store import TaskStore

logger = logging.getLogger(__name__)

VALID_STEP_STATUSES = {"pending", "in_progress", "completed"}


@dataclass(frozen=True)
class PlanStep:
    step: str
    status: str = "pending"

    def to_dict(self) -> dict:
        return {"step": self.step, "status": self.status}


@dataclass(frozen=True)
class PlanSuggestion:
    seq: int
    plan: tuple[PlanStep, ...]
    explanation: str | None = None

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "explanation": self.explanation,
            "plan": [s.to_dict() for s in self.plan],
        }


def parse_plan_update(data: dict, seq: int) -> PlanSuggestion:
    """Build a PlanSuggestion from an ``update_plan`` payload.

    Steps without text are dropped; unknown statuses become ``pending``.
    """
    steps = []
    for item in data.get("plan") or []:
        if not isinstance(item, dict):
            continue
        text = str(item.get("step", "")).strip()
        if not text:
            continue
        status = item.get("status", "pending")
        if status not in VALID_STEP_STATUSES:
            status = "pending"
        steps.append(PlanStep(step=text, status=status))

    explanation = data.get("explanation")
    return PlanSuggestion(
        seq=seq,
        plan=tuple(steps),
        explanation=str(explanation) if explanation else None,
    )


class PlanSuggestionCollector:
    """Files plan suggestions against their task's record in the store."""

    def __init__(self, store: "TaskStore"):
        self._store = store

    def record(self, task_id: str, suggestion: PlanSuggestion) -> bool:
        """Append *suggestion* unless the task already reached a terminal state."""
        accepted = self._store.append_plan_suggestion(task_id, suggestion)
        if not accepted:
            logger.debug(
                "Dropped late plan suggestion #%d for sub-agent %s",
                suggestion.seq, task_id,
            )
        return accepted

    def drain(self, task_id: str) -> list[PlanSuggestion]:
        """Suggestions accumulated so far. They are not cleared."""
        return self._store.plan_suggestions(task_id)
