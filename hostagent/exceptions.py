"""Custom exception hierarchy for hostagent."""


class HostAgentError(Exception):
    """Base for all agent errors. ``code`` is the wire-level error name."""

    code = "AgentError"


class AlreadyRunningError(HostAgentError):
    """A process with the given ID is already registered."""

    code = "AlreadyRunning"


class ProcessNotFoundError(HostAgentError):
    """No process with the given ID is registered."""

    code = "NotFound"


class SpawnFailureError(HostAgentError):
    """The OS could not create the process."""

    code = "SpawnFailure"


class MissingFieldError(HostAgentError):
    """A command request lacks a required field."""

    code = "MissingField"


class InvalidActionError(HostAgentError):
    """A command request named an unknown action."""

    code = "InvalidAction"
