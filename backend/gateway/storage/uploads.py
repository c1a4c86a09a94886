"""Temporary storage of uploaded documents."""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
from typing import BinaryIO, Iterable

from fastapi import UploadFile

from gateway.core.logging import get_logger
from gateway.pipeline.models import DocumentFile

logger = get_logger(__name__)


def _write(source: BinaryIO, path: str) -> int:
    with open(path, "wb") as target:
        shutil.copyfileobj(source, target, length=1024 * 1024)
    return os.path.getsize(path)


async def save_upload(
    source: BinaryIO,
    filename: str | None,
    content_type: str | None,
    tmp_dir: str,
    origin: str = "api",
) -> DocumentFile:
    """
    Copy an uploaded stream into `tmp_dir` under a random name.

    The original name is kept on the DocumentFile; the session deletes
    the temporary copy once the request is persisted.
    """
    os.makedirs(tmp_dir, exist_ok=True)
    extension = os.path.splitext(filename or "")[1]
    path = os.path.join(tmp_dir, f"{uuid.uuid4().hex}{extension}")
    try:
        size = await asyncio.to_thread(_write, source, path)
    except Exception:
        await asyncio.to_thread(_remove, path)
        raise
    return DocumentFile(
        path=path,
        original_name=filename or os.path.basename(path),
        mime_type=content_type or "application/octet-stream",
        size=size,
        origin=origin,
    )


async def save_upload_file(
    upload: UploadFile | None,
    tmp_dir: str,
    origin: str = "api",
) -> DocumentFile | None:
    """save_upload() for a FastAPI UploadFile; None passes through."""
    if upload is None:
        return None
    try:
        return await save_upload(upload.file, upload.filename, upload.content_type, tmp_dir, origin)
    finally:
        await upload.close()


async def save_upload_files(
    uploads: list[UploadFile | None],
    tmp_dir: str,
    origin: str = "api",
) -> list[DocumentFile | None]:
    """
    save_upload_file() for several uploads, all or nothing.

    If one upload cannot be stored, the ones already written are deleted
    before the error propagates.
    """
    saved: list[DocumentFile | None] = []
    try:
        for upload in uploads:
            saved.append(await save_upload_file(upload, tmp_dir, origin))
    except Exception:
        await discard_uploads(saved)
        raise
    return saved


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


async def discard_uploads(documents: Iterable[DocumentFile | None]) -> None:
    """Delete stored uploads that will never reach a processing session."""
    for document in documents:
        if document is None:
            continue
        try:
            await asyncio.to_thread(_remove, document.path)
        except OSError as exc:
            logger.error("Could not delete upload", path=document.path, error=str(exc))
        else:
            logger.info("Upload discarded", path=document.path)
