"""
Attachment storage on GridFS.

Uploaded files (profile pictures, message attachments, monthly report scans)
live in the FILES_BUCKET GridFS bucket of the application database and are
addressed by a `/files/{id}` URL.
"""

import logging
import re
import time
from typing import Optional

import gridfs
from bson import ObjectId
from bson.errors import InvalidId

import config
import database

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _fs() -> gridfs.GridFS:
    if database.db is None:
        raise database.DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return gridfs.GridFS(database.db, collection=config.FILES_BUCKET)


def build_path(prefix: str, owner_id: str, filename: str, *parts: str) -> str:
    """e.g. monthly-reports/{bhw}/{2024-03}/{ms}_{name}"""
    safe_name = _UNSAFE_CHARS.sub("_", filename or "file")
    segments = [prefix, owner_id, *parts, f"{int(time.time() * 1000)}_{safe_name}"]
    return "/".join(segments)


def file_url(file_id) -> str:
    return f"{config.FILES_URL_PREFIX}/{file_id}"


def file_id_from_url(url: str) -> Optional[ObjectId]:
    if not url or not url.startswith(config.FILES_URL_PREFIX + "/"):
        return None
    try:
        return ObjectId(url.rsplit("/", 1)[-1])
    except InvalidId:
        return None


def upload_file(path: str, data: bytes, content_type: Optional[str]) -> str:
    file_id = _fs().put(data, filename=path, metadata={"contentType": content_type or "application/octet-stream"})
    logger.info("Stored %s (%d bytes) as %s", path, len(data), file_id)
    return file_url(file_id)


def open_file(file_id: str):
    """Return (bytes, content_type, filename); raises gridfs.NoFile when missing."""
    try:
        oid = ObjectId(file_id)
    except InvalidId:
        raise gridfs.NoFile(f"no file with id {file_id!r}")
    grid_out = _fs().get(oid)
    metadata = grid_out.metadata or {}
    return grid_out.read(), metadata.get("contentType", "application/octet-stream"), grid_out.filename


def delete_file_by_url(url: str) -> bool:
    file_id = file_id_from_url(url)
    if file_id is None:
        logger.warning("Could not extract file id from URL: %s", url)
        return False
    _fs().delete(file_id)
    logger.info("Deleted stored file %s", file_id)
    return True
