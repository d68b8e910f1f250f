"""
Pydantic schemas for the API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel


class FileResponse(BaseModel):
    id: int
    name: str
    uuid: Optional[str] = None
    contents: Any = None
    version: Optional[str] = None
    times_updated: int
    created_date: datetime
    updated_date: datetime
    qUserId: int


class ListFilesResponse(BaseModel):
    files: list[FileResponse]


class CreateFileResponse(BaseModel):
    created: FileResponse


class FilesBackupRequest(BaseModel):
    uuid: str
    # Usually a JSON-encoded string of the file; decoded once before storage.
    fileContents: Any = None


class AIMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class AIAutoCompleteRequest(BaseModel):
    messages: list[AIMessage]
    model: Optional[Literal["gpt-4", "gpt-3-turbo"]] = None
