"""Sub-agents module: delegate bounded tasks to asynchronous child agents."""

from .errors import (
    AdmissionRejected,
    ConfigError,
    ExecutionFailure,
    FeatureDisabled,
    NotFound,
    SubAgentError,
    UnknownTemplate,
)
from .manager import SubAgentManager
from .meta_tool import MANAGE_SUBAGENTS_DEFINITION, create_subagent_handler, tool_definitions
from .plan import PlanStep, PlanSuggestion, PlanSuggestionCollector
from .session import SubAgentSession
from .store import TaskSnapshot, TaskStatus, TaskStore
from .templates import BUILTIN_TEMPLATES, AgentTemplate, TemplateSource, load_templates, resolve

__all__ = [
    "AdmissionRejected",
    "ConfigError",
    "ExecutionFailure",
    "FeatureDisabled",
    "NotFound",
    "SubAgentError",
    "UnknownTemplate",
    "SubAgentManager",
    "MANAGE_SUBAGENTS_DEFINITION",
    "create_subagent_handler",
    "tool_definitions",
    "PlanStep",
    "PlanSuggestion",
    "PlanSuggestionCollector",
    "SubAgentSession",
    "TaskSnapshot",
    "TaskStatus",
    "TaskStore",
    "BUILTIN_TEMPLATES",
    "AgentTemplate",
    "TemplateSource",
    "load_templates",
    "resolve",
]
