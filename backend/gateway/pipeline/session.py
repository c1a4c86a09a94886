"""
ProcessingSession — the per-request audit and state record.

One session exists per inbound request.  It accumulates the API request,
the attached files, timestamped log lines and the backend exchange, then
is persisted exactly once as an immutable snapshot.  Temporary files are
released only after persistence has been attempted.

State machine::

    CREATED → REQUEST_CAPTURED → FILES_ATTACHED*
            → RESPONSE_CAPTURED | ERROR_CAPTURED → PERSISTED → FINALIZED
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from gateway.core.constants import LogLevel, RequestOrigin, SessionState
from gateway.core.logging import get_logger
from gateway.pipeline.errors import (
    CleanupError,
    GatewayError,
    PersistenceError,
    SessionStateError,
)
from gateway.pipeline.models import DocumentFile

logger = get_logger(__name__)

VERSION_PATTERN = re.compile(r"^v\d+\.\d+\.\d+$")


def generate_request_id() -> str:
    """32-char hex request ID."""
    return secrets.token_hex(16)


def format_log_date(value: datetime) -> str:
    """'2024-05-01 13:45:12.345' in UTC."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def is_valid_version(version: str | None) -> bool:
    """True for 'vMAJOR.MINOR.PATCH' strings."""
    return bool(version) and VERSION_PATTERN.match(version) is not None


def compute_md5(path: str) -> str:
    """MD5 of a local file, read in chunks."""
    h = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


# ═══════════════════════════════════════════════════════════
#  Snapshot objects
# ═══════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SnapshotObject:
    """
    One object of a persisted session snapshot.

    Either `body` holds the serialised content or `source_path` points
    to a local file to upload as-is.  `key` is relative to the session's
    base path (user_id/request_id).
    """

    key: str
    content_type: str
    body: bytes | None = None
    source_path: str | None = None


class AuditStore(Protocol):
    """Durable store receiving one snapshot per (user_id, request_id)."""

    def snapshot_url(self, user_id: str, request_id: str) -> str:
        ...

    async def put_snapshot(
        self,
        user_id: str,
        request_id: str,
        objects: list[SnapshotObject],
    ) -> None:
        ...


def _json_object(key: str, payload: Any) -> SnapshotObject:
    return SnapshotObject(
        key=key,
        content_type="application/json",
        body=json.dumps(payload, indent=2, default=str).encode("utf-8"),
    )


# ═══════════════════════════════════════════════════════════
#  ProcessingSession
# ═══════════════════════════════════════════════════════════

class ProcessingSession:
    """Accumulates everything that happens during one request."""

    def __init__(
        self,
        user_id: str,
        request_id: str | None = None,
        snapshot_url: str = "",
    ) -> None:
        self.user_id = user_id
        self.request_id = request_id or generate_request_id()
        self.url = snapshot_url
        self.state = SessionState.CREATED

        self.origin: dict[str, str | None] = {
            "type": RequestOrigin.DIRECT.value,
            "service": None,
        }
        self.files: list[DocumentFile] = []
        self.logs: list[str] = []

        self.api_request: dict[str, Any] | None = None
        self.api_response: dict[str, Any] | None = None
        self.backend_version: str = ""
        self.backend_request: dict[str, Any] | None = None
        self.backend_response: dict[str, Any] | None = None
        self.error: dict[str, Any] | None = None

        self.snapshot_api_version: str = ""
        self.started_at = datetime.now(timezone.utc)
        self.ended_at: datetime | None = None

        self._persist_attempted = False
        self._files_released = False

        self.add_log("Session started")

    # ─── Logging ───────────────────────────────────────

    def add_log(self, entry: str, level: LogLevel = LogLevel.INFO) -> None:
        """Append a timestamped line.  Allowed in every state."""
        timestamp = format_log_date(datetime.now(timezone.utc))
        self.logs.append(f"[{timestamp}] [{level.value}] {entry}")

    # ─── Mutators ──────────────────────────────────────

    def _ensure_open(self, operation: str) -> None:
        if self._persist_attempted:
            raise SessionStateError(
                f"Cannot {operation}: session {self.request_id} is already persisted"
            )

    def set_origin(self, origin: RequestOrigin, service: str | None = None) -> "ProcessingSession":
        self._ensure_open("set origin")
        self.origin = {"type": origin.value, "service": service}
        suffix = f" ({service})" if service else ""
        self.add_log(f"Origin set: {origin.value}{suffix}")
        return self

    def set_snapshot_api_version(self, version: str) -> None:
        if not is_valid_version(version):
            self.snapshot_api_version = ""
            self.add_log(
                f"Invalid Snapshot API version format: {version}. Setting empty string.",
                LogLevel.WARN,
            )
            return
        self.snapshot_api_version = version
        self.add_log(f"Snapshot API version set to: {version}")

    def set_api_request(self, request: dict[str, Any]) -> "ProcessingSession":
        self._ensure_open("store API request")
        self.api_request = request
        if self.state == SessionState.CREATED:
            self.state = SessionState.REQUEST_CAPTURED
        self.add_log("API request stored")
        return self

    def add_file(self, file: DocumentFile | None) -> "ProcessingSession":
        if file is None:
            return self
        self._ensure_open("add file")
        self.files.append(file)
        if self.state in (SessionState.CREATED, SessionState.REQUEST_CAPTURED):
            self.state = SessionState.FILES_ATTACHED
        self.add_log(
            f"Added file: {file.original_name} ({file.size} bytes, origin: {file.origin})"
        )
        return self

    def set_backend_version(self, version: str) -> None:
        self._ensure_open("set backend version")
        self.backend_version = version
        self.add_log(f"Backend version set to: {version}")

    def set_backend_request(self, request: dict[str, Any]) -> "ProcessingSession":
        self._ensure_open("store backend request")
        self.backend_request = request
        self.add_log("Backend request stored")
        return self

    def set_backend_response(self, response: dict[str, Any]) -> "ProcessingSession":
        """Store the verbatim backend response.  Never modified afterwards."""
        self._ensure_open("store backend response")
        self.backend_response = response
        self.state = SessionState.RESPONSE_CAPTURED
        self.add_log("Backend response stored")
        return self

    def set_api_response(self, response: dict[str, Any]) -> "ProcessingSession":
        self._ensure_open("store API response")
        self.api_response = response
        self.add_log("API response stored")
        return self

    def set_error(self, error: GatewayError) -> "ProcessingSession":
        self._ensure_open("store error")
        self.error = error.to_dict()
        self.state = SessionState.ERROR_CAPTURED
        self.add_log(f"Error captured ({error.kind.value}): {error.message}", LogLevel.ERROR)
        return self

    # ─── Timing ────────────────────────────────────────

    def close(self) -> None:
        """Stamp the end time.  Later calls keep the first stamp."""
        if self.ended_at is None:
            self.ended_at = datetime.now(timezone.utc)
            self.add_log(f"Session ended - Duration: {self.duration_ms}ms")

    @property
    def duration_ms(self) -> int:
        end = self.ended_at or datetime.now(timezone.utc)
        return int((end - self.started_at).total_seconds() * 1000)

    # ─── Persistence ───────────────────────────────────

    async def save(self, store: AuditStore) -> str:
        """
        Write the snapshot through `store`.  May run once per session.

        Raises:
            SessionStateError: If persistence was already attempted.
            PersistenceError: If building or writing the snapshot failed.
        """
        if self._persist_attempted:
            raise SessionStateError(
                f"Session {self.request_id} persistence was already attempted"
            )
        self._persist_attempted = True
        self.close()

        try:
            objects = await self.build_snapshot()
            await store.put_snapshot(self.user_id, self.request_id, objects)
        except Exception as exc:
            raise PersistenceError(
                f"Could not persist session snapshot: {exc}",
                request_id=self.request_id,
            ) from exc

        self.state = SessionState.PERSISTED
        logger.info(
            "Session snapshot persisted",
            request_id=self.request_id,
            user_id=self.user_id,
            objects=len(objects),
        )
        return self.request_id

    async def build_snapshot(self) -> list[SnapshotObject]:
        """Serialise the session into snapshot objects."""
        file_objects = await self._file_objects()

        objects = [
            _json_object("process.json", {
                "startDate": format_log_date(self.started_at),
                "endDate": format_log_date(self.ended_at) if self.ended_at else None,
                "duration": f"{self.duration_ms}ms",
                "snapshotAPIVersion": self.snapshot_api_version,
                "backendVersion": self.backend_version,
                "origin": self.origin,
                "state": self.state.value,
                "services": {"backend": self.backend_request is not None},
            }),
        ]

        if self.api_request is not None:
            objects.append(_json_object("request.json", self.api_request))
        if self.api_response is not None:
            objects.append(_json_object("response.json", self.api_response))
        if self.error is not None:
            objects.append(_json_object("error.json", self.error))

        objects.extend(file_objects)

        if self.backend_request is not None or self.backend_response is not None:
            objects.append(_json_object("backend/metadata.json", {
                "version": self.backend_version,
                "isActive": True,
            }))
        if self.backend_request is not None:
            objects.append(_json_object("backend/request.json", self.backend_request))
        if self.backend_response is not None:
            objects.append(_json_object("backend/response.json", self.backend_response))

        # Log last so it contains every line written above
        objects.append(SnapshotObject(
            key="process.log",
            content_type="text/plain",
            body="\n".join(self.logs).encode("utf-8"),
        ))
        return objects

    async def _file_objects(self) -> list[SnapshotObject]:
        if not self.files:
            return []

        objects = [_json_object("files.json", [
            {
                "id": index,
                "originalName": f.original_name,
                "size": f.size,
                "mimeType": f.mime_type,
                "origin": f.origin,
            }
            for index, f in enumerate(self.files, start=1)
        ])]

        for index, f in enumerate(self.files, start=1):
            try:
                md5 = await asyncio.to_thread(compute_md5, f.path)
            except OSError as exc:
                md5 = None
                self.add_log(
                    f"File {f.original_name} is not readable, content not archived: {exc}",
                    LogLevel.WARN,
                )

            objects.append(_json_object(f"files/file_{index}.metadata.json", {
                "originalName": f.original_name,
                "size": f.size,
                "md5": md5,
                "mimeType": f.mime_type,
                "origin": f.origin,
            }))
            if md5 is not None:
                extension = os.path.splitext(f.original_name)[1].lstrip(".") or "bin"
                objects.append(SnapshotObject(
                    key=f"files/file_{index}.{extension}",
                    content_type=f.mime_type,
                    source_path=f.path,
                ))
        return objects

    # ─── Cleanup ───────────────────────────────────────

    async def release_files(self) -> list[CleanupError]:
        """
        Delete the session's temporary files.

        Only allowed once persistence has been attempted, and only once.
        Failures are logged and returned, never raised.
        """
        if not self._persist_attempted:
            raise SessionStateError(
                f"Session {self.request_id}: files released before persistence"
            )
        if self._files_released:
            raise SessionStateError(
                f"Session {self.request_id}: files already released"
            )
        self._files_released = True

        failures: list[CleanupError] = []
        for f in self.files:
            try:
                await asyncio.to_thread(os.remove, f.path)
            except FileNotFoundError:
                logger.debug("Temp file already gone", path=f.path, request_id=self.request_id)
            except OSError as exc:
                failure = CleanupError(
                    f"Error deleting temporary file {f.path}: {exc}",
                    request_id=self.request_id,
                    context={"path": f.path},
                )
                failures.append(failure)
                logger.warning(
                    "Temp file cleanup failed",
                    request_id=self.request_id,
                    path=f.path,
                    error=str(exc),
                )

        self.state = SessionState.FINALIZED
        return failures
