"""
User and file resolution plus the file backup flow.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Optional

from quadratic_api.db import DbClient, FileRecord, UserRecord

logger = logging.getLogger(__name__)

PLACEHOLDER_FILE_NAME = "first file!"


class InvalidFileContentsError(ValueError):
    """Raised when backup contents cannot be decoded into a document."""


def get_user(db: DbClient, subject: str) -> UserRecord:
    """Return the user for an auth-subject, creating it on first sight."""
    return db.get_or_create_user(subject)


def get_file(db: DbClient, user: UserRecord, uuid: str) -> Optional[FileRecord]:
    return db.get_file(user.id, uuid)


def list_files(db: DbClient, user: UserRecord) -> list[FileRecord]:
    return db.list_files(user.id)


def create_placeholder_file(db: DbClient, user: UserRecord) -> FileRecord:
    return db.create_file(user.id, PLACEHOLDER_FILE_NAME)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _has_non_finite(value: Any) -> bool:
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, dict):
        return any(_has_non_finite(v) for v in value.values())
    if isinstance(value, list):
        return any(_has_non_finite(v) for v in value)
    return False


def decode_file_contents(file_contents: Any) -> Any:
    """
    Decode the backup payload into a structured document.

    Clients send the file as a JSON-encoded string; an already-decoded
    object or array is accepted as-is.
    """
    if isinstance(file_contents, (dict, list)):
        if _has_non_finite(file_contents):
            raise InvalidFileContentsError("fileContents contains NaN or Infinity")
        return file_contents
    if not isinstance(file_contents, (str, bytes)):
        raise InvalidFileContentsError(
            "fileContents must be a JSON-encoded string"
        )
    try:
        return json.loads(file_contents, parse_constant=_reject_constant)
    except ValueError as e:
        raise InvalidFileContentsError(f"fileContents is not valid JSON: {e}") from e


def _version_from_contents(contents: Any) -> Optional[str]:
    if not isinstance(contents, dict):
        return None
    version = contents.get("version")
    if isinstance(version, bool) or not isinstance(version, (str, int, float)):
        return None
    return str(version)


def backup_file(
    db: DbClient, subject: str, uuid: str, file_contents: Any
) -> tuple[FileRecord, bool]:
    """
    Store a full backup of a file for the caller.

    The payload is decoded before anything is written, so a bad payload
    leaves the store untouched.
    """
    contents = decode_file_contents(file_contents)
    user = get_user(db, subject)
    record, created = db.backup_file(
        user.id, uuid, contents, version=_version_from_contents(contents)
    )
    if created:
        logger.info("Created file %s (%s) for user %s", record.id, uuid, user.id)
    else:
        logger.info(
            "Backed up file %s (%s) for user %s, times_updated=%s",
            record.id,
            uuid,
            user.id,
            record.times_updated,
        )
    return record, created
