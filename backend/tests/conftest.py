"""Shared fixtures and in-memory fakes for the gateway tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from gateway.pipeline.invoker import BackendInvoker
from gateway.pipeline.models import (
    BackendEndpoint,
    BackendVersionConfig,
    DocumentFile,
    SheetDestination,
    User,
    VersionRegistry,
)
from gateway.pipeline.session import SnapshotObject

PDF_BYTES = b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< >>\n%%EOF\n"

BACKEND_PAYLOAD: dict[str, Any] = {
    "response": [
        {"name": "article_id", "value": "PONE-123"},
        {"name": "das_presence", "value": "Yes"},
        {"name": "action_required", "value": "No"},
        {"name": "debug__internal", "value": {"trace": [1, 2]}},
    ],
    "path": ["Path,Score", "A-B,7"],
    "version": "v2.0.0",
    "graph_policy_traversal_data": {"graph_type": "policy-graph"},
}


# ============================================================================
# FAKES
# ============================================================================

class FakeAuditStore:
    """Keeps snapshots in memory, keyed like the S3 layout."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0
        self.snapshots: list[tuple[str, str, dict[str, SnapshotObject]]] = []

    def snapshot_url(self, user_id: str, request_id: str) -> str:
        return f"https://audit.test/{user_id}/{request_id}/"

    async def put_snapshot(self, user_id: str, request_id: str, objects: list[SnapshotObject]) -> None:
        self.calls += 1
        if self.fail:
            raise RuntimeError("bucket unavailable")
        self.snapshots.append((user_id, request_id, {obj.key: obj for obj in objects}))

    def json(self, key: str, index: int = 0) -> Any:
        return json.loads(self.snapshots[index][2][key].body)


class FakeSink:
    """Collects appended rows."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.rows: list[tuple[SheetDestination, list[str]]] = []

    async def append_row(self, destination: SheetDestination, row: list[str]) -> None:
        if self.fail:
            raise RuntimeError("sheets quota exceeded")
        self.rows.append((destination, row))

    def rows_for(self, sheet_name: str) -> list[list[str]]:
        return [row for dest, row in self.rows if dest.sheet_name == sheet_name]


class FakeLinkRecorder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.links: list[tuple[str, str, str]] = []

    async def record(self, user_id: str, article_id: str, request_id: str) -> None:
        if self.fail:
            raise RuntimeError("database down")
        self.links.append((user_id, article_id, request_id))


class LogRecorder:
    """Stands in for a session where only add_log() is needed."""

    def __init__(self) -> None:
        self.logs: list[str] = []

    def add_log(self, entry: str, *args: Any) -> None:
        self.logs.append(entry)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def version_v1() -> BackendVersionConfig:
    return BackendVersionConfig(
        name="v1.0.0",
        process=BackendEndpoint(url="http://backend.test/v1/process", api_key="key-v1"),
        health=BackendEndpoint(url="http://backend.test/v1/health", method="GET"),
        response_mapping={"article_id": 0, "das_presence": 1},
        path_labels=("Path", "Score"),
        sheet=SheetDestination(spreadsheet_id="sheet-id", sheet_name="v1"),
    )


@pytest.fixture
def version_v2() -> BackendVersionConfig:
    return BackendVersionConfig(
        name="v2.0.0",
        process=BackendEndpoint(url="http://backend.test/v2/process", api_key="key-v2"),
        health=BackendEndpoint(url="http://backend.test/v2/health", method="GET"),
        response_mapping={"article_id": 0, "das_presence": 1, "action_required": 3},
        path_labels=("Path", "Score", "Policy"),
        sheet=SheetDestination(spreadsheet_id="sheet-id", sheet_name="v2"),
    )


@pytest.fixture
def registry(version_v1, version_v2) -> VersionRegistry:
    return VersionRegistry(
        default_version="v1.0.0",
        versions={"v1.0.0": version_v1, "v2.0.0": version_v2},
    )


@pytest.fixture
def user() -> User:
    return User(
        id="publisher-a",
        token="token-a",
        authorized_versions=("v1.0.0", "v2.0.0"),
        default_version="v2.0.0",
        restricted_fields=("debug__internal",),
        report_versions=("r1", "r2"),
        default_report_version="r1",
    )


@pytest.fixture
def make_pdf(tmp_path: Path) -> Callable[..., DocumentFile]:
    """Write a temp upload and return its DocumentFile."""

    def _make(name: str = "paper.pdf", content: bytes = PDF_BYTES, origin: str = "api") -> DocumentFile:
        path = tmp_path / f"upload-{len(list(tmp_path.iterdir()))}{Path(name).suffix}"
        path.write_bytes(content)
        return DocumentFile(
            path=str(path),
            original_name=name,
            mime_type="application/pdf",
            size=len(content),
            origin=origin,
        )

    return _make


@pytest.fixture
def backend_calls() -> list[httpx.Request]:
    return []


@pytest.fixture
def make_invoker(backend_calls) -> Callable[..., BackendInvoker]:
    """Invoker whose backend is an httpx.MockTransport."""

    def _make(
        status_code: int = 200,
        payload: Any = BACKEND_PAYLOAD,
        text: str | None = None,
        error: Exception | None = None,
        headers: dict[str, str] | None = None,
    ) -> BackendInvoker:
        def handler(request: httpx.Request) -> httpx.Response:
            backend_calls.append(request)
            if error is not None:
                raise error
            if text is not None:
                return httpx.Response(status_code, text=text, headers=headers)
            return httpx.Response(status_code, json=payload, headers=headers)

        return BackendInvoker(timeout=5, health_timeout=1, transport=httpx.MockTransport(handler))

    return _make
