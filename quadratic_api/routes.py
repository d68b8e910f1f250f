"""
HTTP routes for the API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from quadratic_api import services
from quadratic_api.completions import (
    DEFAULT_MODEL,
    CompletionClient,
    CompletionRequestError,
    CompletionStreamError,
)
from quadratic_api.db import DbClient
from quadratic_api.dependencies import (
    enforce_ai_rate_limit,
    get_completion_client,
    get_db_client,
    require_auth_subject,
)
from quadratic_api.schemas import (
    AIAutoCompleteRequest,
    CreateFileResponse,
    FileResponse,
    FilesBackupRequest,
    ListFilesResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()
files_router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


@router.get("/", response_model=ListFilesResponse)
def list_files(
    subject: str = Depends(require_auth_subject),
    db: DbClient = Depends(get_db_client),
):
    user = services.get_user(db, subject)
    files = services.list_files(db, user)
    return ListFilesResponse(
        files=[FileResponse(**record.as_dict()) for record in files]
    )


@router.get("/createFile", response_model=CreateFileResponse)
def create_file(
    subject: str = Depends(require_auth_subject),
    db: DbClient = Depends(get_db_client),
):
    user = services.get_user(db, subject)
    record = services.create_placeholder_file(db, user)
    return CreateFileResponse(created=FileResponse(**record.as_dict()))


@router.post("/ai/autocomplete")
def ai_autocomplete(
    payload: AIAutoCompleteRequest,
    response: Response,
    subject: str = Depends(enforce_ai_rate_limit),
    client: CompletionClient = Depends(get_completion_client),
):
    """
    Relay a streaming chat completion to the caller as server-sent events.
    """
    rate_limit_headers = {
        k: v for k, v in response.headers.items() if k.lower().startswith("ratelimit-")
    }
    messages = [message.model_dump() for message in payload.messages]
    try:
        chunks = client.stream_chat(messages, payload.model or DEFAULT_MODEL)
    except CompletionStreamError:
        return PlainTextResponse(
            "Error streaming data", status_code=500, headers=rate_limit_headers
        )
    except CompletionRequestError as e:
        if e.status_code is not None:
            return JSONResponse(
                e.body, status_code=e.status_code, headers=rate_limit_headers
            )
        return JSONResponse(str(e), status_code=400, headers=rate_limit_headers)

    headers = {**SSE_HEADERS, **rate_limit_headers}
    return StreamingResponse(chunks, media_type="text/event-stream", headers=headers)


@files_router.post("/backup", response_class=Response)
def backup_file(
    payload: FilesBackupRequest,
    subject: str = Depends(enforce_ai_rate_limit),
    db: DbClient = Depends(get_db_client),
):
    try:
        services.backup_file(db, subject, payload.uuid, payload.fileContents)
    except services.InvalidFileContentsError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return None
