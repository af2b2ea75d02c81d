"""Error kinds raised by the sub-agent subsystem."""


class SubAgentError(Exception):
    """Base class. ``kind`` is the name reported over the tool surface."""

    kind = "SubAgentError"


class UnknownTemplate(SubAgentError):
    kind = "UnknownTemplate"


class AdmissionRejected(SubAgentError):
    kind = "AdmissionRejected"


class NotFound(SubAgentError):
    kind = "NotFound"


class ConfigError(SubAgentError):
    kind = "ConfigError"


class FeatureDisabled(SubAgentError):
    kind = "FeatureDisabled"


class ExecutionFailure(SubAgentError):
    """Wrapped failure from the execution capability.

    Only ever recorded on a task's ``error`` field; never raised to the
    caller that spawned the task.
    """

    kind = "ExecutionFailure"
