"""Resource snapshot produced by probing the host machine."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ResourceSnapshot(BaseModel):
    """
    Memory and CPU availability at one instant.

    Memory figures are whole megabytes, as the sizing rules are expressed in MB.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    available_memory_mb: int = Field(..., ge=0)
    total_memory_mb: int = Field(..., ge=0)
    cpu_threads: int = Field(..., ge=1)
    sampled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
