"""Tests for the ProcessingSession lifecycle and snapshot layout."""

from __future__ import annotations

import hashlib
import json
import os

import pytest

from gateway.core.constants import RequestOrigin, SessionState
from gateway.pipeline.errors import BackendError, PersistenceError, SessionStateError
from gateway.pipeline.models import DocumentFile
from gateway.pipeline.session import ProcessingSession, is_valid_version

from tests.conftest import PDF_BYTES, FakeAuditStore


@pytest.fixture
def session() -> ProcessingSession:
    return ProcessingSession(user_id="publisher-a", snapshot_url="https://audit.test/x/")


class TestStateMachine:
    def test_initial_state(self, session):
        assert session.state == SessionState.CREATED
        assert len(session.request_id) == 32
        assert session.logs[0].endswith("[INFO] Session started")

    def test_happy_path_states(self, session, make_pdf):
        session.set_api_request({"options": "{}"})
        assert session.state == SessionState.REQUEST_CAPTURED
        session.add_file(make_pdf())
        assert session.state == SessionState.FILES_ATTACHED
        session.set_backend_response({"status": 200, "headers": {}, "data": {}})
        assert session.state == SessionState.RESPONSE_CAPTURED

    def test_error_state(self, session):
        session.set_error(BackendError("down", backend_status=502))
        assert session.state == SessionState.ERROR_CAPTURED
        assert session.error["kind"] == "BACKEND"
        assert session.error["status_code"] == 502
        assert "[ERROR]" in session.logs[-1]

    def test_add_file_none_is_noop(self, session):
        session.add_file(None)
        assert session.files == []

    @pytest.mark.parametrize("version, valid", [
        ("v1.2.3", True),
        ("1.2.3", False),
        ("v1.2", False),
        ("", False),
        (None, False),
    ])
    def test_version_format(self, version, valid):
        assert is_valid_version(version) is valid

    def test_invalid_snapshot_version_is_blanked(self, session):
        session.set_snapshot_api_version("latest")
        assert session.snapshot_api_version == ""
        assert "[WARN] Invalid Snapshot API version format: latest" in session.logs[-1]


class TestPersistence:
    @pytest.mark.asyncio
    async def test_snapshot_layout(self, session, make_pdf):
        document = make_pdf()
        session.set_origin(RequestOrigin.EXTERNAL, "submission-portal")
        session.set_snapshot_api_version("v1.0.0")
        session.set_api_request({"options": {"article_id": "A-1"}})
        session.add_file(document)
        session.set_backend_version("v2.0.0")
        session.set_backend_request({"options": {"debug": True}})
        session.set_backend_response({"status": 200, "headers": {}, "data": {"response": []}})
        session.set_api_response({"status": 200, "body": {"response": []}})

        store = FakeAuditStore()
        await session.save(store)

        assert session.state == SessionState.PERSISTED
        objects = store.snapshots[0][2]
        assert set(objects) == {
            "process.json",
            "request.json",
            "response.json",
            "files.json",
            "files/file_1.metadata.json",
            "files/file_1.pdf",
            "backend/metadata.json",
            "backend/request.json",
            "backend/response.json",
            "process.log",
        }
        assert list(objects)[-1] == "process.log"

        process = store.json("process.json")
        assert process["origin"] == {"type": "external", "service": "submission-portal"}
        assert process["backendVersion"] == "v2.0.0"
        assert process["snapshotAPIVersion"] == "v1.0.0"

        metadata = store.json("files/file_1.metadata.json")
        assert metadata["md5"] == hashlib.md5(PDF_BYTES).hexdigest()
        assert objects["files/file_1.pdf"].source_path == document.path

        log_text = objects["process.log"].body.decode()
        assert "Session ended - Duration:" in log_text

    @pytest.mark.asyncio
    async def test_unreadable_file_is_described_not_archived(self, session, tmp_path):
        session.add_file(DocumentFile(path=str(tmp_path / "gone.pdf"), original_name="gone.pdf"))
        store = FakeAuditStore()
        await session.save(store)

        objects = store.snapshots[0][2]
        assert "files/file_1.pdf" not in objects
        assert store.json("files/file_1.metadata.json")["md5"] is None
        assert "[WARN] File gone.pdf is not readable" in objects["process.log"].body.decode()

    @pytest.mark.asyncio
    async def test_persisted_exactly_once(self, session):
        store = FakeAuditStore()
        await session.save(store)
        with pytest.raises(SessionStateError):
            await session.save(store)
        assert store.calls == 1

    @pytest.mark.asyncio
    async def test_mutators_refused_after_persistence(self, session):
        await session.save(FakeAuditStore())
        with pytest.raises(SessionStateError):
            session.set_api_response({"late": True})
        # add_log is allowed in every state
        session.add_log("after persistence")

    @pytest.mark.asyncio
    async def test_store_failure_raises_persistence_error(self, session):
        with pytest.raises(PersistenceError) as exc_info:
            await session.save(FakeAuditStore(fail=True))
        assert "bucket unavailable" in exc_info.value.message
        assert session.state != SessionState.PERSISTED

    @pytest.mark.asyncio
    async def test_close_keeps_first_end_time(self, session):
        session.close()
        first = session.ended_at
        await session.save(FakeAuditStore())
        assert session.ended_at == first


class TestReleaseFiles:
    @pytest.mark.asyncio
    async def test_refused_before_persistence(self, session, make_pdf):
        session.add_file(make_pdf())
        with pytest.raises(SessionStateError):
            await session.release_files()
        assert os.path.exists(session.files[0].path)

    @pytest.mark.asyncio
    async def test_deletes_once(self, session, make_pdf):
        document = make_pdf()
        session.add_file(document)
        await session.save(FakeAuditStore())

        failures = await session.release_files()

        assert failures == []
        assert not os.path.exists(document.path)
        assert session.state == SessionState.FINALIZED
        with pytest.raises(SessionStateError):
            await session.release_files()

    @pytest.mark.asyncio
    async def test_allowed_after_failed_persistence(self, session, make_pdf):
        document = make_pdf()
        session.add_file(document)
        with pytest.raises(PersistenceError):
            await session.save(FakeAuditStore(fail=True))

        assert await session.release_files() == []
        assert not os.path.exists(document.path)

    @pytest.mark.asyncio
    async def test_missing_file_is_not_a_failure(self, session, tmp_path):
        session.add_file(DocumentFile(path=str(tmp_path / "never.pdf"), original_name="never.pdf"))
        await session.save(FakeAuditStore())
        assert await session.release_files() == []

    @pytest.mark.asyncio
    async def test_deletion_error_is_returned(self, session, tmp_path):
        directory = tmp_path / "not-a-file"
        directory.mkdir()
        session.add_file(DocumentFile(path=str(directory), original_name="dir.pdf"))
        await session.save(FakeAuditStore())

        failures = await session.release_files()

        assert len(failures) == 1
        assert failures[0].kind.value == "CLEANUP"
        assert json.dumps(failures[0].to_dict())
