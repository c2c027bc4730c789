"""Progress event models."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProgressStage(str, Enum):
    """Pipeline stage a progress event belongs to."""

    PACKAGING = "packaging"
    UPLOADING = "uploading"
    MERGING = "merging"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """Transient status message for one upload session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    stage: ProgressStage
    file_type: Optional[str] = Field(None, alias="fileType")
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize with the camelCase field names clients expect."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
