"""
Data models for the mail threat scanner.

Exports:
- Enums: ThreatType, RequestType, ResponseType, WorkerState
- Email: EmailContent (normalization + fingerprint)
- Wire: RequestMessage, ResponseMessage, AnalysisResult
- Control: worker <-> lifecycle control messages
- Resources: ResourceSnapshot
"""

from mailguard.models.control import (
    ControlMessage,
    GetSystemInfoMessage,
    InferenceCommand,
    InferenceResultMessage,
    InitializeMessage,
    InsufficientResourcesMessage,
    ModelLoadedMessage,
    ModelLoadErrorMessage,
    ModelLoadProgressMessage,
    SystemInfoMessage,
    parse_control_message,
)
from mailguard.models.email import EmailContent
from mailguard.models.enums import (
    WORKER_TRANSITIONS,
    RequestType,
    ResponseType,
    ThreatType,
    WorkerState,
)
from mailguard.models.messages import AnalysisResult, RequestMessage, ResponseMessage
from mailguard.models.resources import ResourceSnapshot

__all__ = [
    # Enums
    "ThreatType",
    "RequestType",
    "ResponseType",
    "WorkerState",
    "WORKER_TRANSITIONS",
    # Email
    "EmailContent",
    # Wire
    "AnalysisResult",
    "RequestMessage",
    "ResponseMessage",
    # Control
    "ControlMessage",
    "InitializeMessage",
    "ModelLoadedMessage",
    "ModelLoadErrorMessage",
    "ModelLoadProgressMessage",
    "InsufficientResourcesMessage",
    "GetSystemInfoMessage",
    "SystemInfoMessage",
    "InferenceCommand",
    "InferenceResultMessage",
    "parse_control_message",
    # Resources
    "ResourceSnapshot",
]
