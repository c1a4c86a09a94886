"""
BackendInvoker — the single outbound call to an analysis backend.

The document (and optional supplementary file) is sent as multipart
form data together with the JSON-encoded options.  Any HTTP response,
whatever its status, is returned as a BackendResponse so the caller can
capture it verbatim.  Only transport-level failures raise BackendError.

Usage::

    invoker = BackendInvoker(timeout=600)
    response = await invoker.invoke(version_config, options, document)
    session.set_backend_response(response.to_dict())
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from gateway.core.logging import get_logger
from gateway.pipeline.errors import BackendError, InputValidationError
from gateway.pipeline.models import BackendEndpoint, BackendVersionConfig, DocumentFile

logger = get_logger(__name__)

# Default timeout for analysis calls (seconds); large documents are slow
DEFAULT_TIMEOUT = 600.0

# Flags added to every backend request but never shown to clients
REQUEST_ONLY_OPTIONS = {"decision_tree_path": True, "debug": True}


@dataclass
class BackendResponse:
    """Verbatim backend response."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    data: Any = None
    malformed: bool = False

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    @property
    def fields(self) -> list[dict[str, Any]] | None:
        """The `response` list of named fields, if present."""
        if isinstance(self.data, dict) and isinstance(self.data.get("response"), list):
            return self.data["response"]
        return None

    @property
    def path(self) -> Any:
        return self.data.get("path") if isinstance(self.data, dict) else None

    @property
    def version(self) -> str | None:
        return self.data.get("version") if isinstance(self.data, dict) else None

    @property
    def graph_value(self) -> str:
        if not isinstance(self.data, dict):
            return ""
        traversal = self.data.get("graph_policy_traversal_data") or {}
        if not isinstance(traversal, dict):
            return ""
        return traversal.get("graph_type") or ""

    def field_value(self, name: str) -> Any:
        for item in self.fields or []:
            if isinstance(item, dict) and item.get("name") == name:
                return item.get("value")
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialise for the session snapshot."""
        return {
            "status": self.status_code,
            "headers": self.headers,
            "data": self.data,
        }


class BackendInvoker:
    """
    Sends analysis requests to a backend version.

    Args:
        timeout: Seconds before an analysis call is abandoned.
        health_timeout: Seconds before a health check is abandoned.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        health_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._health_timeout = health_timeout
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    @staticmethod
    def _headers(endpoint: BackendEndpoint) -> dict[str, str]:
        return {"X-API-Key": endpoint.api_key} if endpoint.api_key else {}

    @staticmethod
    def request_options(options: dict[str, Any]) -> dict[str, Any]:
        """Options with the request-only flags added."""
        return {**options, **REQUEST_ONLY_OPTIONS}

    async def invoke(
        self,
        version_config: BackendVersionConfig,
        options: dict[str, Any],
        document: DocumentFile,
        supplementary: DocumentFile | None = None,
        *,
        request_id: str | None = None,
    ) -> BackendResponse:
        """
        Perform the analysis call.

        Returns:
            BackendResponse for any HTTP status.

        Raises:
            BackendError: Connection refused, timeout or protocol error.
            InputValidationError: A local file could not be opened.
        """
        endpoint = version_config.process
        log = logger.bind(
            request_id=request_id,
            version=version_config.name,
            method=endpoint.method.value,
            url=endpoint.url,
        )

        try:
            files = {"file": await self._read_part(document)}
            if supplementary is not None:
                files["supplementary_file"] = await self._read_part(supplementary)
        except OSError as exc:
            raise InputValidationError(
                f"Could not read file: {exc}",
                request_id=request_id,
            ) from exc

        log.info("Sending backend request", has_supplementary=supplementary is not None)

        try:
            async with self._client(self._timeout) as client:
                response = await client.request(
                    endpoint.method.value,
                    endpoint.url,
                    files=files,
                    data={"options": json.dumps(self.request_options(options))},
                    headers=self._headers(endpoint),
                )
        except httpx.RequestError as exc:
            log.error("Backend request failed", error=str(exc), error_type=type(exc).__name__)
            raise BackendError(
                f"Backend request failed: {exc or type(exc).__name__}",
                request_id=request_id,
                context={
                    "version": version_config.name,
                    "url": endpoint.url,
                    "error_type": type(exc).__name__,
                },
            ) from exc

        result = self._to_backend_response(response)
        log.info(
            "Backend response received",
            status_code=result.status_code,
            malformed=result.malformed,
            backend_reported_version=result.version,
        )
        return result

    @staticmethod
    async def _read_part(document: DocumentFile) -> tuple[str, bytes, str]:
        """Multipart tuple for a document, read in a worker thread."""
        content = await asyncio.to_thread(Path(document.path).read_bytes)
        return document.original_name, content, document.mime_type

    @staticmethod
    def _to_backend_response(response: httpx.Response) -> BackendResponse:
        try:
            data = response.json()
            malformed = False
        except ValueError:
            data = response.text
            # Error pages are often plain text; only a success body must be JSON
            malformed = response.status_code < 400

        return BackendResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            data=data,
            malformed=malformed,
        )

    async def check_health(self, version_config: BackendVersionConfig) -> dict[str, Any]:
        """Call the version's health endpoint; never raises."""
        endpoint = version_config.health
        if endpoint is None:
            return {"error": f"No health endpoint configured for {version_config.name}"}

        try:
            async with self._client(self._health_timeout) as client:
                response = await client.request(
                    endpoint.method.value,
                    endpoint.url,
                    headers={"Content-Type": "application/json", **self._headers(endpoint)},
                )
        except httpx.RequestError as exc:
            logger.warning("Health check failed", version=version_config.name, error=str(exc))
            return {"error": str(exc) or type(exc).__name__, "status": 500}

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text
        return {"status": response.status_code, "data": data}
