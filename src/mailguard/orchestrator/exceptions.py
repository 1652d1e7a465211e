"""
Exceptions raised inside the orchestrator context.

None of these reach a client directly: the orchestrator converts each one
into an error-shaped ResponseMessage for the request being processed.
"""


class OrchestratorError(Exception):
    """Base exception for orchestrator and lifecycle errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class IllegalTransitionError(OrchestratorError):
    """Raised when a WorkerState change is not listed in WORKER_TRANSITIONS."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Illegal worker transition {current} -> {target}",
            details={"from_state": current, "to_state": target},
        )
        self.current = current
        self.target = target


class WorkerStartError(OrchestratorError):
    """The worker context (process or task) could not be created."""
    pass


class WorkerUnavailableError(OrchestratorError):
    """
    The worker is not Ready and will not become Ready for this request.

    Raised after a load failure; the next admission retries creation.
    """
    pass


class WorkerCrashedError(OrchestratorError):
    """The worker went away while an inference was outstanding."""
    pass
