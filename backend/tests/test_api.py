"""HTTP surface tests (FastAPI TestClient, components injected on app.state)."""

from __future__ import annotations

import json
from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from gateway.api.deps import get_db
from gateway.core.permissions import PermissionRule, PermissionTable
from gateway.core.security import create_access_token
from gateway.main import app
from gateway.pipeline.models import User
from gateway.pipeline.processor import AnalysisProcessor
from gateway.storage.users import AuthorizationStore

from tests.conftest import PDF_BYTES, FakeAuditStore, FakeSink

TOKEN = create_access_token("publisher-a")


@pytest.fixture
def api_user() -> User:
    return User(
        id="publisher-a",
        token=TOKEN,
        authorized_versions=("v1.0.0", "v2.0.0"),
        default_version="v2.0.0",
        restricted_fields=("debug__internal",),
        report_versions=("r1",),
        default_report_version="r1",
    )


@pytest.fixture
def store() -> FakeAuditStore:
    return FakeAuditStore()


@pytest.fixture
def client(registry, api_user, make_invoker, store, tmp_path) -> TestClient:
    invoker = make_invoker()
    app.state.registry = registry
    app.state.users = AuthorizationStore({api_user.id: api_user})
    app.state.invoker = invoker
    app.state.processor = AnalysisProcessor(
        registry=registry,
        invoker=invoker,
        audit_store=store,
        sink=FakeSink(),
        snapshot_api_version="v1.0.0",
    )
    app.state.upload_dir = str(tmp_path / "uploads")
    app.state.permissions = None
    return TestClient(app)


def auth(token: str = TOKEN) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/v1/versions")
        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/v1/versions", headers=auth("not-a-jwt"))
        assert response.status_code == 401

    def test_valid_jwt_that_is_not_the_stored_token(self, client):
        other = create_access_token("publisher-a", expires_delta=timedelta(hours=1))
        response = client.get("/api/v1/versions", headers=auth(other))
        assert response.status_code == 401

    def test_unknown_subject(self, client):
        response = client.get("/api/v1/versions", headers=auth(create_access_token("nobody")))
        assert response.status_code == 401


class TestAnalysis:
    def test_success(self, client, store, tmp_path):
        response = client.post(
            "/api/v1/analysis",
            headers=auth(),
            files={"file": ("paper.pdf", PDF_BYTES, "application/pdf")},
            data={"options": json.dumps({"article_id": "PONE-123"})},
        )

        assert response.status_code == 200
        names = [f["name"] for f in response.json()["response"]]
        assert "debug__internal" not in names
        request_id = response.headers["X-Request-ID"]
        assert store.snapshots[0][1] == request_id
        assert store.json("request.json")["options"] == json.dumps({"article_id": "PONE-123"})
        assert list((tmp_path / "uploads").iterdir()) == []

    def test_wrong_file_type(self, client, store):
        response = client.post(
            "/api/v1/analysis",
            headers=auth(),
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert "Invalid file extension" in response.json()["error"]
        assert store.calls == 1

    def test_missing_file(self, client, store):
        response = client.post("/api/v1/analysis", headers=auth(), data={"options": "{}"})

        assert response.status_code == 400
        assert store.calls == 1

    def test_backend_error_status_forwarded(self, client, registry, make_invoker, store):
        app.state.processor = AnalysisProcessor(
            registry=registry,
            invoker=make_invoker(status_code=422, payload={"detail": "bad pdf"}),
            audit_store=store,
        )
        response = client.post(
            "/api/v1/analysis",
            headers=auth(),
            files={"file": ("paper.pdf", PDF_BYTES, "application/pdf")},
        )

        assert response.status_code == 422
        assert response.json()["error"] == "Backend returned HTTP 422"

    def test_backend_headers_forwarded(self, client, registry, make_invoker, store):
        app.state.processor = AnalysisProcessor(
            registry=registry,
            invoker=make_invoker(headers={"X-Trace-Id": "trace-1", "Set-Cookie": "session=1"}),
            audit_store=store,
        )
        response = client.post(
            "/api/v1/analysis",
            headers=auth(),
            files={"file": ("paper.pdf", PDF_BYTES, "application/pdf")},
        )

        assert response.status_code == 200
        assert response.headers["x-trace-id"] == "trace-1"
        assert "set-cookie" not in response.headers
        assert response.headers["X-Request-ID"] == store.snapshots[0][1]


class TestVersions:
    def test_lists_authorized_versions(self, client):
        response = client.get("/api/v1/versions", headers=auth())

        assert response.status_code == 200
        assert response.json() == {
            "user_id": "publisher-a",
            "authorized_versions": ["v1.0.0", "v2.0.0"],
            "default_version": "v2.0.0",
            "report_versions": ["r1"],
            "default_report_version": "r1",
        }

    def test_backend_health_for_all_versions(self, client):
        response = client.get("/api/v1/analysis/health", headers=auth())

        assert response.status_code == 200
        versions = response.json()["versions"]
        assert [v["version"] for v in versions] == ["v1.0.0", "v2.0.0"]
        assert all(v["status"] == 200 for v in versions)

    def test_backend_health_for_unauthorized_version(self, client):
        response = client.get("/api/v1/analysis/health", params={"version": "v9.9.9"}, headers=auth())
        assert response.status_code == 403


class TestSubmissions:
    def test_queues_external_submission(self, client, monkeypatch, tmp_path):
        from gateway.tasks import processing_tasks

        queued: list[dict] = []

        class FakeTask:
            def delay(self, submission):
                queued.append(submission)
                return SimpleNamespace(id="task-1")

        monkeypatch.setattr(processing_tasks, "process_submission", FakeTask())

        response = client.post(
            "/api/v1/submissions",
            headers=auth(),
            files={"file": ("paper.pdf", PDF_BYTES, "application/pdf")},
            data={"service": "submission-portal"},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["celery_task_id"] == "task-1"
        assert queued[0]["request_id"] == body["request_id"]
        assert queued[0]["origin"] == "external"
        assert queued[0]["origin_service"] == "submission-portal"
        assert queued[0]["document"]["origin"] == "external"
        # The worker owns the upload from here on
        assert (tmp_path / "uploads" / queued[0]["document"]["path"].split("/")[-1]).exists()

    def test_service_is_required(self, client):
        response = client.post(
            "/api/v1/submissions",
            headers=auth(),
            files={"file": ("paper.pdf", PDF_BYTES, "application/pdf")},
        )
        assert response.status_code == 422

    def test_queue_outage_discards_upload(self, client, monkeypatch, tmp_path):
        from gateway.tasks import processing_tasks

        class FakeTask:
            def delay(self, submission):
                raise ConnectionError("broker unreachable")

        monkeypatch.setattr(processing_tasks, "process_submission", FakeTask())

        response = client.post(
            "/api/v1/submissions",
            headers=auth(),
            files={"file": ("paper.pdf", PDF_BYTES, "application/pdf")},
            data={"service": "submission-portal"},
        )

        assert response.status_code == 503
        assert list((tmp_path / "uploads").iterdir()) == []


def rule(path: str, methods=("GET",), allowed=(), blocked=()) -> PermissionRule:
    return PermissionRule(
        path=path,
        methods=frozenset(methods),
        allowed=frozenset(allowed),
        blocked=frozenset(blocked),
    )


class TestRoutePermissions:
    def test_allowed_user_passes(self, client):
        app.state.permissions = PermissionTable([rule("/api/v1/versions", allowed=["publisher-a"])])
        assert client.get("/api/v1/versions", headers=auth()).status_code == 200

    def test_blocked_user_is_refused(self, client):
        app.state.permissions = PermissionTable([rule("/api/v1/versions", blocked=["publisher-a"])])

        response = client.get("/api/v1/versions", headers=auth())

        assert response.status_code == 403
        assert response.json()["detail"] == "Your account is blocked from accessing this resource"

    def test_user_outside_allow_list_is_refused(self, client):
        app.state.permissions = PermissionTable([rule("/api/v1/versions", allowed=["publisher-b"])])
        assert client.get("/api/v1/versions", headers=auth()).status_code == 403

    def test_route_without_rule_is_404(self, client):
        app.state.permissions = PermissionTable([rule("/api/v1/analysis", ["POST"])])
        assert client.get("/api/v1/versions", headers=auth()).status_code == 404

    def test_method_without_rule_is_405(self, client):
        app.state.permissions = PermissionTable([rule("/api/v1/versions", ["POST"])])
        assert client.get("/api/v1/versions", headers=auth()).status_code == 405

    def test_blocked_user_does_not_reach_the_backend(self, client, store):
        app.state.permissions = PermissionTable([rule("/api/v1/analysis", ["POST"], blocked=["publisher-a"])])

        response = client.post(
            "/api/v1/analysis",
            headers=auth(),
            files={"file": ("paper.pdf", PDF_BYTES, "application/pdf")},
        )

        assert response.status_code == 403
        assert store.calls == 0

    def test_health_is_not_restricted(self, client):
        app.state.permissions = PermissionTable([])
        assert client.get("/health").status_code == 200


class TestRequests:
    @pytest.fixture
    def lookups(self, client, monkeypatch) -> list[dict]:
        from gateway.repositories import requests as request_repository

        calls: list[dict] = []

        async def fake_lookup(db, *, user_id, article_id):
            calls.append({"db": db, "user_id": user_id, "article_id": article_id})
            return ["r-1", "r-2"]

        async def fake_db():
            yield "session"

        monkeypatch.setattr(request_repository, "get_request_ids_by_article", fake_lookup)
        app.dependency_overrides[get_db] = fake_db
        yield calls
        app.dependency_overrides.pop(get_db, None)

    def test_lists_request_ids_for_article(self, client, lookups):
        response = client.get("/api/v1/requests", params={"article_id": "PONE-123"}, headers=auth())

        assert response.status_code == 200
        assert response.json() == {"article_id": "PONE-123", "request_ids": ["r-1", "r-2"]}
        assert lookups == [{"db": "session", "user_id": "publisher-a", "article_id": "PONE-123"}]

    def test_article_id_is_required(self, client, lookups):
        response = client.get("/api/v1/requests", headers=auth())

        assert response.status_code == 422
        assert lookups == []
