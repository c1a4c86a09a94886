"""Tests for the outbound backend call (httpx.MockTransport backends)."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from gateway.pipeline import invoker as invoker_module
from gateway.pipeline.errors import BackendError, InputValidationError
from gateway.pipeline.invoker import BackendResponse
from gateway.pipeline.models import BackendVersionConfig, BackendEndpoint, DocumentFile

from tests.conftest import BACKEND_PAYLOAD


class TestInvoke:
    @pytest.mark.asyncio
    async def test_multipart_request(self, make_invoker, backend_calls, version_v1, make_pdf):
        invoker = make_invoker()
        response = await invoker.invoke(
            version_v1,
            {"article_id": "PONE-1"},
            make_pdf("paper.pdf"),
            make_pdf("data.pdf"),
            request_id="rid",
        )

        assert response.status_code == 200
        assert response.data == BACKEND_PAYLOAD
        assert not response.malformed

        request = backend_calls[0]
        assert request.method == "POST"
        assert str(request.url) == "http://backend.test/v1/process"
        assert request.headers["X-API-Key"] == "key-v1"
        body = request.content.decode("latin-1")
        assert 'name="file"; filename="paper.pdf"' in body
        assert 'name="supplementary_file"; filename="data.pdf"' in body
        assert '"decision_tree_path": true' in body
        assert '"debug": true' in body
        assert '"article_id": "PONE-1"' in body

    @pytest.mark.asyncio
    async def test_documents_are_read_off_the_event_loop(self, monkeypatch, make_invoker, version_v1, make_pdf):
        offloaded = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(invoker_module.asyncio, "to_thread", recording_to_thread)
        document, supplementary = make_pdf("paper.pdf"), make_pdf("data.pdf")

        await make_invoker().invoke(version_v1, {}, document, supplementary)

        assert [func.__self__ for func in offloaded] == [Path(document.path), Path(supplementary.path)]

    @pytest.mark.asyncio
    async def test_no_api_key_header_when_unset(self, make_invoker, backend_calls, make_pdf):
        config = BackendVersionConfig(name="v0.1.0", process=BackendEndpoint(url="http://backend.test/p"))
        await make_invoker().invoke(config, {}, make_pdf())
        assert "X-API-Key" not in backend_calls[0].headers

    @pytest.mark.asyncio
    async def test_error_status_is_a_result(self, make_invoker, version_v1, make_pdf):
        response = await make_invoker(status_code=503, text="Service Unavailable").invoke(
            version_v1, {}, make_pdf(),
        )
        assert response.is_error
        assert response.status_code == 503
        assert response.data == "Service Unavailable"
        assert not response.malformed

    @pytest.mark.asyncio
    async def test_non_json_success_is_malformed(self, make_invoker, version_v1, make_pdf):
        response = await make_invoker(status_code=200, text="<html>oops</html>").invoke(
            version_v1, {}, make_pdf(),
        )
        assert response.malformed
        assert not response.is_error

    @pytest.mark.asyncio
    async def test_transport_failure_raises_backend_error(self, make_invoker, version_v1, make_pdf):
        invoker = make_invoker(error=httpx.ConnectError("connection refused"))
        with pytest.raises(BackendError) as exc_info:
            await invoker.invoke(version_v1, {}, make_pdf(), request_id="rid")

        error = exc_info.value
        assert error.status_code == 500
        assert error.backend_status is None
        assert error.request_id == "rid"
        assert error.context["error_type"] == "ConnectError"
        assert error.error_status.startswith("Backend Error:")

    @pytest.mark.asyncio
    async def test_timeout_raises_backend_error(self, make_invoker, version_v1, make_pdf):
        invoker = make_invoker(error=httpx.ReadTimeout("timed out"))
        with pytest.raises(BackendError):
            await invoker.invoke(version_v1, {}, make_pdf())

    @pytest.mark.asyncio
    async def test_unreadable_document(self, make_invoker, backend_calls, version_v1, tmp_path):
        document = DocumentFile(path=str(tmp_path / "missing.pdf"), original_name="missing.pdf")
        with pytest.raises(InputValidationError):
            await make_invoker().invoke(version_v1, {}, document)
        assert backend_calls == []


class TestBackendResponse:
    def test_accessors(self):
        response = BackendResponse(status_code=200, data=BACKEND_PAYLOAD)
        assert response.field_value("das_presence") == "Yes"
        assert response.field_value("absent") is None
        assert response.graph_value == "policy-graph"
        assert response.version == "v2.0.0"
        assert response.path == ["Path,Score", "A-B,7"]

    def test_accessors_on_text_body(self):
        response = BackendResponse(status_code=500, data="boom")
        assert response.fields is None
        assert response.graph_value == ""
        assert response.path is None

    def test_to_dict(self):
        response = BackendResponse(status_code=201, headers={"a": "b"}, data={"x": 1})
        assert json.loads(json.dumps(response.to_dict())) == {
            "status": 201,
            "headers": {"a": "b"},
            "data": {"x": 1},
        }


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, make_invoker, backend_calls, version_v1):
        result = await make_invoker(payload={"status": "ok"}).check_health(version_v1)
        assert result == {"status": 200, "data": {"status": "ok"}}
        assert backend_calls[0].method == "GET"

    @pytest.mark.asyncio
    async def test_unreachable(self, make_invoker, version_v1):
        result = await make_invoker(error=httpx.ConnectError("refused")).check_health(version_v1)
        assert result["status"] == 500
        assert "refused" in result["error"]

    @pytest.mark.asyncio
    async def test_no_health_endpoint(self, make_invoker):
        config = BackendVersionConfig(name="v0.1.0", process=BackendEndpoint(url="http://backend.test/p"))
        result = await make_invoker().check_health(config)
        assert "No health endpoint" in result["error"]
