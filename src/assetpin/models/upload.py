"""Upload data models."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ChunkAcceptedResponse(BaseModel):
    """Response model for a non-final chunk."""

    message: str
    progress: float


class PipelineResponse(BaseModel):
    """Response model once an asset bundle has been packed and uploaded."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    images_root_cid: str = Field(..., alias="imagesRootCID")
    metadata_root_cid: str = Field(..., alias="metadataRootCID")
    last_root_cid: Optional[str] = Field(None, alias="lastRootCID")


class SessionStatusResponse(BaseModel):
    """Response model for an in-flight chunked upload session."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    total_chunks: int = Field(..., alias="totalChunks")
    received_chunks: list[int] = Field(..., alias="receivedChunks")
    progress: float


class FolderResult(BaseModel):
    """Outcome of processing one pre-existing asset folder."""

    model_config = ConfigDict(populate_by_name=True)

    folder: str
    images_root_cid: str = Field(..., alias="imagesRootCID")
    metadata_root_cid: str = Field(..., alias="metadataRootCID")


class ProcessFoldersResponse(BaseModel):
    """Response model for batch processing of pre-existing folders."""

    message: str
    folders: list[FolderResult]


class ErrorResponse(BaseModel):
    """Error body returned for 4xx and 5xx responses."""

    error: str
    message: str
    stack: Optional[str] = None
