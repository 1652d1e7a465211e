"""
Control messages exchanged between the Worker Lifecycle Manager and the
inference worker.

Messages are a tagged union discriminated on ``type`` so the same models
travel over in-memory ports and JSON-lines pipes unchanged.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from mailguard.models.messages import AnalysisResult, RequestMessage
from mailguard.models.resources import ResourceSnapshot


class _ControlBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class InitializeMessage(_ControlBase):
    """Lifecycle -> worker: begin sizing and loading the model."""

    type: Literal["initialize"] = "initialize"


class ModelLoadedMessage(_ControlBase):
    """Worker -> lifecycle: model ready with the effective context window."""

    type: Literal["modelLoaded"] = "modelLoaded"
    context_size: int = Field(..., ge=1)
    model_name: Optional[str] = None


class ModelLoadErrorMessage(_ControlBase):
    """Worker -> lifecycle: non-resource load failure."""

    type: Literal["modelLoadError"] = "modelLoadError"
    error: str


class ModelLoadProgressMessage(_ControlBase):
    type: Literal["modelLoadProgress"] = "modelLoadProgress"
    percentage: int = Field(..., ge=0, le=100)


class InsufficientResourcesMessage(_ControlBase):
    """Worker -> lifecycle: no supported model fits in sampled memory."""

    type: Literal["insufficientResources"] = "insufficientResources"
    required_memory: int = Field(..., ge=0, description="MB needed by the smallest model")
    available_memory: int = Field(..., ge=0, description="MB available when sampled")


class GetSystemInfoMessage(_ControlBase):
    """Worker -> lifecycle: request a ResourceSnapshot."""

    type: Literal["getSystemInfo"] = "getSystemInfo"
    correlation_id: str


class SystemInfoMessage(_ControlBase):
    """Lifecycle -> worker: reply to getSystemInfo."""

    type: Literal["systemInfo"] = "systemInfo"
    correlation_id: str
    snapshot: ResourceSnapshot


class InferenceCommand(_ControlBase):
    """Lifecycle -> worker: classify one request."""

    type: Literal["inference"] = "inference"
    correlation_id: str
    request: RequestMessage


class InferenceResultMessage(_ControlBase):
    """Worker -> lifecycle: outcome of one InferenceCommand."""

    type: Literal["inferenceResult"] = "inferenceResult"
    correlation_id: str
    success: bool
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


ControlMessage = Annotated[
    Union[
        InitializeMessage,
        ModelLoadedMessage,
        ModelLoadErrorMessage,
        ModelLoadProgressMessage,
        InsufficientResourcesMessage,
        GetSystemInfoMessage,
        SystemInfoMessage,
        InferenceCommand,
        InferenceResultMessage,
    ],
    Field(discriminator="type"),
]

_CONTROL_ADAPTER: TypeAdapter = TypeAdapter(ControlMessage)


def parse_control_message(data: dict[str, Any]) -> ControlMessage:
    """Validate a wire dict into the matching control message model."""
    return _CONTROL_ADAPTER.validate_python(data)
