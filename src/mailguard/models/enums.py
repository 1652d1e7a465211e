"""
Enumerations for mail scanner data models.

All enums are closed taxonomies - no values outside these sets are permitted.
"""

from enum import Enum


class ThreatType(str, Enum):
    """
    Closed taxonomy of email threat classifications.

    ERROR is never produced by the model; it marks hard failures in
    synthesized responses.
    """

    SAFE = "safe"
    SPAM = "spam"
    UNKNOWN_THREAT = "unknown_threat"
    MALWARE = "malware"
    DATA_EXFILTRATION = "data_exfiltration"
    PHISHING = "phishing"
    SCAM = "scam"
    EXTORTION = "extortion"
    ERROR = "error"

    @classmethod
    def model_labels(cls) -> list[str]:
        """Labels the model may emit (everything except ERROR)."""
        return [t.value for t in cls if t is not cls.ERROR]


class RequestType(str, Enum):
    REQUEST = "request"
    CANCEL = "cancel"  # Accepted on the wire, currently unused


class ResponseType(str, Enum):
    COMPLETION = "completion"
    ERROR = "error"


class WorkerState(str, Enum):
    """
    Lifecycle of the ephemeral inference worker.

    One instance per orchestrator session. Legal edges are listed in
    WORKER_TRANSITIONS.
    """

    UNLOADED = "unloaded"
    CREATING = "creating"
    AWAITING_MODEL = "awaiting_model"
    READY = "ready"
    INSUFFICIENT_RESOURCES = "insufficient_resources"
    UNLOADING = "unloading"
    LOAD_ERROR = "load_error"


WORKER_TRANSITIONS: dict[WorkerState, frozenset[WorkerState]] = {
    WorkerState.UNLOADED: frozenset({WorkerState.CREATING}),
    WorkerState.CREATING: frozenset({WorkerState.AWAITING_MODEL, WorkerState.LOAD_ERROR}),
    WorkerState.AWAITING_MODEL: frozenset({
        WorkerState.READY,
        WorkerState.INSUFFICIENT_RESOURCES,
        WorkerState.LOAD_ERROR,
    }),
    WorkerState.READY: frozenset({WorkerState.UNLOADING, WorkerState.LOAD_ERROR}),
    WorkerState.INSUFFICIENT_RESOURCES: frozenset({WorkerState.UNLOADED}),
    WorkerState.UNLOADING: frozenset({WorkerState.UNLOADED}),
    WorkerState.LOAD_ERROR: frozenset({WorkerState.CREATING}),
}
