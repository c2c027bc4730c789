"""Upload API routes."""

import logging
import traceback
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.datastructures import FormData, UploadFile

from assetpin.api.dependencies import AppState, get_state
from assetpin.core.exceptions import (
    AssetPipelineError,
    MissingHeaders,
    PayloadTooLarge,
    ValidationError,
)
from assetpin.models.upload import (
    ChunkAcceptedResponse,
    ErrorResponse,
    FolderResult,
    PipelineResponse,
    ProcessFoldersResponse,
    SessionStatusResponse,
)
from assetpin.pipeline.orchestrator import ChunkMergeSource, DirectUploadSource, PipelineResult
from assetpin.progress.sse import SSE_HEADERS, event_stream
from assetpin.sessions.receiver import IncomingFile, check_sizes
from assetpin.sessions.registry import validate_session_id

router = APIRouter(tags=["upload"])
logger = logging.getLogger(__name__)


def parse_chunk_headers(
    session_id: Optional[str], chunk_index: Optional[str], total_chunks: Optional[str]
) -> Optional[tuple[str, int, int]]:
    """Return (session_id, chunk_index, total_chunks), or None for a direct upload.

    Raises:
        MissingHeaders: If only some chunk headers are present or they are not integers
        InvalidSessionId: If the session id is not a plain directory name
    """
    if chunk_index is None and total_chunks is None:
        return None
    if not session_id or chunk_index is None or total_chunks is None:
        raise MissingHeaders(
            "x-session-id, x-chunk-index and x-total-chunks must be sent together"
        )
    validate_session_id(session_id)
    try:
        return session_id, int(chunk_index), int(total_chunks)
    except ValueError as e:
        raise MissingHeaders("x-chunk-index and x-total-chunks must be integers") from e


def incoming_files(form: FormData) -> list[IncomingFile]:
    """Every uploaded file in the form, whatever its field name."""
    return [
        IncomingFile(
            file_name=value.filename or "unnamed",
            content_type=value.content_type or "application/octet-stream",
            stream=value.file,
            size_bytes=value.size,
        )
        for _, value in form.multi_items()
        if isinstance(value, UploadFile)
    ]


def error_response(error: Exception, status_code: int, state: AppState) -> JSONResponse:
    body = ErrorResponse(error=type(error).__name__, message=str(error))
    if status_code >= 500 and state.settings.expose_stack_traces:
        body.stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def pipeline_response(result: PipelineResult, state: AppState) -> PipelineResponse:
    return PipelineResponse(
        images_root_cid=result.images_root_cid,
        metadata_root_cid=result.metadata_root_cid,
        last_root_cid=state.registry.last_root_cid or result.metadata_root_cid,
    )


@router.post("/uploadfiles", response_model=None)
async def upload_files(
    request: Request,
    x_session_id: Optional[str] = Header(None),
    x_chunk_index: Optional[str] = Header(None),
    x_total_chunks: Optional[str] = Header(None),
    state: AppState = Depends(get_state),
):
    """Accept one chunk of a chunked upload, or a whole bundle in one request.

    The request that completes a bundle runs the full pipeline and answers
    with the root CIDs.
    """
    form: Optional[FormData] = None
    session_id = x_session_id
    try:
        chunk = parse_chunk_headers(x_session_id, x_chunk_index, x_total_chunks)

        form = await request.form()
        files = incoming_files(form)
        if not files:
            raise ValidationError("No files uploaded")

        if chunk is None:
            session_id = validate_session_id(x_session_id) if x_session_id else str(uuid4())
            check_sizes(files, state.settings.MAX_FILE_SIZE_BYTES)
            pipeline = state.get_pipeline()
            result = await pipeline.run(DirectUploadSource(files, state.allocator), session_id)
            return pipeline_response(result, state).model_dump(by_alias=True)

        session_id, chunk_index, total_chunks = chunk
        registration = await state.receiver.receive(session_id, chunk_index, total_chunks, files)

        if not registration.is_complete:
            return ChunkAcceptedResponse(
                message=f"Chunk {chunk_index + 1} of {total_chunks} received",
                progress=registration.session.progress_percent,
            ).model_dump()

        pipeline = state.get_pipeline()
        result = await pipeline.run(ChunkMergeSource(registration.session, state.merger), session_id)
        logger.info(
            "Chunked upload completed",
            extra={"session_id": session_id, "metadata_root_cid": result.metadata_root_cid},
        )
        return pipeline_response(result, state).model_dump(by_alias=True)

    except (ValidationError, PayloadTooLarge) as e:
        logger.warning(f"Rejected upload: {e}", extra={"session_id": session_id})
        return error_response(e, 400, state)
    except Exception as e:
        logger.error(f"Error processing files: {e}", exc_info=True, extra={"session_id": session_id})
        # pipeline components report their own failures
        if session_id and not isinstance(e, AssetPipelineError):
            state.broadcaster.emit_error(session_id, e)
        return error_response(e, 500, state)
    finally:
        if form is not None:
            await form.close()


@router.get("/upload-progress/{session_id}")
async def upload_progress(
    session_id: str, request: Request, state: AppState = Depends(get_state)
) -> StreamingResponse:
    """Live progress events for one session as Server-Sent Events."""
    return StreamingResponse(
        event_stream(
            state.broadcaster,
            session_id,
            request.is_disconnected,
            keepalive_seconds=state.settings.SSE_KEEPALIVE_SECONDS,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/upload-sessions/{session_id}", response_model=None)
async def upload_session_status(session_id: str, state: AppState = Depends(get_state)):
    """Chunks received so far for an in-flight session."""
    try:
        session = state.registry.get(session_id)
    except ValidationError as e:
        return error_response(e, 400, state)

    return SessionStatusResponse(
        session_id=session.session_id,
        total_chunks=session.total_chunks,
        received_chunks=sorted(session.received_chunks),
        progress=session.progress_percent,
    ).model_dump(by_alias=True)


@router.post("/process-folders", response_model=None)
async def process_folders(
    x_session_id: Optional[str] = Header(None),
    state: AppState = Depends(get_state),
):
    """Pack, upload and rewrite every numbered folder already under the assets root."""
    try:
        pipeline = state.get_pipeline()
        results = await pipeline.process_all_folders(x_session_id)
    except Exception as e:
        logger.error(f"Error processing all folders: {e}", exc_info=True)
        if x_session_id and not isinstance(e, AssetPipelineError):
            state.broadcaster.emit_error(x_session_id, e)
        return error_response(e, 500, state)

    return ProcessFoldersResponse(
        message="Folders processed successfully.",
        folders=[
            FolderResult(
                folder=r.folder_id,
                images_root_cid=r.images_root_cid,
                metadata_root_cid=r.metadata_root_cid,
            )
            for r in results
        ],
    ).model_dump(by_alias=True)
