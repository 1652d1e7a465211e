"""
Wire messages exchanged between the Client Request Queue and the orchestrator.

Field aliases match the wire format (camelCase ids, snake_case result fields).
Every terminal outcome - classification, synthesized "unknown", or hard
error - is a ResponseMessage, so clients never special-case failures.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from mailguard.models.enums import RequestType, ResponseType, ThreatType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisResult(BaseModel):
    """
    Classification of one email. Also the value stored in the fingerprint cache.
    """

    model_config = ConfigDict(frozen=True)

    brief_analysis: str = Field(..., description="Short justification (30-50 words)")
    type: ThreatType = Field(..., description="Threat category")
    confidence: float = Field(..., ge=0.0, lt=1.0, description="Confidence in [0, 1)")


class RequestMessage(BaseModel):
    """Analysis request sent by a client, correlated by request_id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    request_id: str = Field(..., alias="requestId", min_length=1)
    request_type: RequestType = Field(default=RequestType.REQUEST, alias="requestType")
    prompt: str = Field(..., description="Instructions and email fields combined")
    fingerprint: Optional[str] = Field(default=None, description="Content fingerprint of the email")
    submitted_at: datetime = Field(default_factory=_utcnow, alias="submittedAt")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ResponseMessage(BaseModel):
    """Terminal response for exactly one request id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    response_type: ResponseType = Field(..., alias="responseType")
    request_id: str = Field(..., alias="requestId")
    brief_analysis: str
    type: ThreatType
    confidence: float = Field(..., ge=0.0, lt=1.0)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_result(self) -> AnalysisResult:
        return AnalysisResult(
            brief_analysis=self.brief_analysis,
            type=self.type,
            confidence=self.confidence,
        )

    @property
    def is_completion(self) -> bool:
        return self.response_type == ResponseType.COMPLETION

    @classmethod
    def completion(cls, request_id: str, result: AnalysisResult) -> "ResponseMessage":
        return cls(
            response_type=ResponseType.COMPLETION,
            request_id=request_id,
            brief_analysis=result.brief_analysis,
            type=result.type,
            confidence=result.confidence,
        )

    @classmethod
    def failure(
        cls,
        request_id: str,
        brief_analysis: str,
        threat_type: ThreatType = ThreatType.ERROR,
    ) -> "ResponseMessage":
        """Error-shaped terminal response (confidence is always 0)."""
        return cls(
            response_type=ResponseType.ERROR,
            request_id=request_id,
            brief_analysis=brief_analysis,
            type=threat_type,
            confidence=0.0,
        )
