"""Error taxonomy for the orchestration core.

NotFoundError and ValidationError propagate straight to the caller.
TransientFailure is absorbed by the retry loop, TerminalFailure describes an
exhausted retry budget and CollaborationFailure aborts a collaboration session.
"""


class OrchestrationError(Exception):
    """Base class for all orchestration errors."""


class NotFoundError(OrchestrationError):
    """Raised when a task, agent, session or tool id is unknown."""

    def __init__(self, kind: str, identifier: str, message: str | None = None):
        """Initialize with the kind of object that could not be found."""
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind} not found: {identifier}")


class ValidationError(OrchestrationError, ValueError):
    """Raised when a request is malformed or cannot be satisfied as stated."""


class TransientFailure(OrchestrationError):
    """A single agent attempt failed or timed out and may be retried."""

    def __init__(self, task_id: str, attempt: int, message: str):
        """Initialize with the attempt that failed."""
        self.task_id = task_id
        self.attempt = attempt
        super().__init__(message)


class TerminalFailure(OrchestrationError):
    """The retry budget for a task has been exhausted."""

    def __init__(self, task_id: str, attempts: int, last_error: str):
        """Initialize with the final error of the last attempt."""
        self.task_id = task_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Task {task_id} failed after {attempts} attempts: {last_error}"
        )


class CollaborationFailure(OrchestrationError):
    """Raised when a collaboration strategy cannot produce a result."""

    def __init__(
        self, session_id: str, message: str, cause: Exception | None = None
    ):
        """Initialize with session context."""
        self.session_id = session_id
        self.cause = cause
        super().__init__(message)
