"""manage_subagents meta-tool: spawn, poll, cancel and list sub-agents via tool calls."""

import json
import logging

from config import SubAgentSettings

from .errors import SubAgentError
from .manager import SubAgentManager
from .store import TaskSnapshot, TaskStatus

logger = logging.getLogger(__name__)

MANAGE_SUBAGENTS_DEFINITION = {
    "type": "function",
    "function": {
        "name": "manage_subagents",
        "description": (
            "Delegate bounded tasks to asynchronous sub-agents. 'spawn' starts a "
            "sub-agent from a template and returns its id immediately; 'poll' "
            "returns its status, output or error, and any plan suggestions it "
            "made (apply them yourself if you agree); 'cancel' stops it; 'list' "
            "shows every sub-agent in this session; 'templates' shows the "
            "available templates."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": ["spawn", "poll", "cancel", "list", "templates"],
                    "description": "Action to perform",
                },
                "template": {
                    "type": "string",
                    "description": (
                        "Template name for spawn, e.g. 'inspect', 'implement', "
                        "'tests', 'refactor', 'docs'."
                    ),
                },
                "task": {
                    "type": "string",
                    "description": "Task to delegate. Required for spawn.",
                },
                "id": {
                    "type": "string",
                    "description": "Sub-agent task id. Required for poll and cancel.",
                },
                "include_messages": {
                    "type": "boolean",
                    "description": (
                        "poll only: also return agent messages received since the "
                        "last poll that asked for them."
                    ),
                },
            },
            "required": ["action"],
        },
    },
}


def tool_definitions(settings: SubAgentSettings) -> list[dict]:
    """Tool definitions to advertise; empty when sub-agents are disabled."""
    return [MANAGE_SUBAGENTS_DEFINITION] if settings.enabled else []


def poll_payload(snap: TaskSnapshot, include_messages: bool = False) -> dict:
    payload: dict = {"status": snap.status.value}
    if snap.status is TaskStatus.COMPLETED:
        payload["output"] = snap.output or ""
    elif snap.status is TaskStatus.FAILED:
        payload["error"] = snap.error
    payload["plan_suggestions"] = [s.to_dict() for s in snap.plan_suggestions]
    payload["title"] = snap.title
    payload["template"] = snap.template_name
    payload["tool_uses"] = snap.tool_uses
    payload["total_tokens"] = snap.total_tokens
    payload["warnings"] = list(snap.warnings)
    if include_messages:
        payload["messages"] = list(snap.messages)
    return payload


def _ok(data) -> dict:
    return {"content": json.dumps(data, ensure_ascii=False, default=str), "is_error": False}


def _error(kind: str, message: str) -> dict:
    return {
        "content": json.dumps({"error": kind, "message": message}, ensure_ascii=False),
        "is_error": True,
    }


def create_subagent_handler(manager: SubAgentManager):
    """Factory: return a handler bound to *manager*.

    The handler is injected into the tool executor for the session, so every
    call shares the same task store.
    """

    async def handle_manage_subagents(args: dict, cwd: str) -> dict:
        action = args.get("action", "")

        try:
            if action == "spawn":
                template = args.get("template", "")
                task = args.get("task", "")
                if not template or not task:
                    return _error(
                        "InvalidArguments",
                        "'template' and 'task' are required for spawn.",
                    )
                task_id = manager.spawn(template, task)
                return _ok({"id": task_id})

            elif action == "poll":
                if args.get("id") is None:
                    return _error("InvalidArguments", "'id' is required for poll.")
                task_id = str(args["id"])
                include_messages = bool(args.get("include_messages", False))
                snap = manager.poll(task_id, include_messages=include_messages)
                return _ok(poll_payload(snap, include_messages))

            elif action == "cancel":
                if args.get("id") is None:
                    return _error("InvalidArguments", "'id' is required for cancel.")
                task_id = str(args["id"])
                snap = manager.cancel(task_id)
                return _ok({"status": snap.status.value})

            elif action == "list":
                return _ok([s.summary() for s in manager.list()])

            elif action == "templates":
                return _ok([t.to_dict() for t in manager.templates.values()])

            else:
                return _error(
                    "InvalidArguments",
                    f"Unknown action: {action}. Use: spawn, poll, cancel, list, templates",
                )

        except SubAgentError as e:
            return _error(e.kind, str(e))
        except Exception as e:
            logger.exception("manage_subagents %s failed", action)
            return _error("InternalError", f"Sub-agent error: {e}")

    return handle_manage_subagents
