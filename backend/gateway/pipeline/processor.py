"""
AnalysisProcessor — runs one inbound request end to end.

Responsibilities:
    - Open a ProcessingSession and capture the API request and files
    - Resolve the backend version and validate the upload
    - Apply the user's option policy
    - Invoke the backend and capture its response verbatim
    - Build the client-visible payload through the ResponseFilter
    - On every exit path: emit the summary row, persist the session,
      release the temporary files (each step guarded on its own)
    - Return a ProcessingOutcome for the HTTP layer or the worker

Usage::

    processor = AnalysisProcessor(
        registry=registry,
        invoker=BackendInvoker(timeout=600),
        audit_store=S3AuditStore.from_settings(settings),
        sink=SheetsSink(settings.GOOGLE_SHEETS_CREDENTIALS_PATH),
    )
    outcome = await processor.run(submission, user)
    return JSONResponse(outcome.body, status_code=outcome.status_code)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from gateway.core.constants import NO_ERROR, LogLevel
from gateway.core.logging import get_logger
from gateway.pipeline.errors import BackendError, GatewayError, SessionStateError
from gateway.pipeline.invoker import BackendInvoker, BackendResponse
from gateway.pipeline.models import (
    AnalysisOptions,
    BackendVersionConfig,
    SheetDestination,
    Submission,
    User,
    VersionRegistry,
)
from gateway.pipeline.options import OptionsTransformer
from gateway.pipeline.response_filter import filter_response_for_user
from gateway.pipeline.session import AuditStore, ProcessingSession, generate_request_id
from gateway.pipeline.summary import build_summary_row, build_user_row
from gateway.pipeline.validation import parse_options, validate_pdf
from gateway.pipeline.version_resolver import resolve_report_version, resolve_version

logger = get_logger(__name__)

# Backend headers never copied onto the client response (hop-by-hop,
# or describing a body the gateway re-encodes)
UNFORWARDED_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "content-length",
    "content-encoding",
    "content-type",
    "date",
    "server",
    "set-cookie",
    "x-request-id",
})


def forwardable_headers(headers: dict[str, str]) -> dict[str, str]:
    """Backend response headers that may be passed on to the client."""
    return {k: v for k, v in headers.items() if k.lower() not in UNFORWARDED_HEADERS}


class TabularSink(Protocol):
    """Receives summary rows."""

    async def append_row(self, destination: SheetDestination, row: list[str]) -> None:
        ...


class LinkRecorder(Protocol):
    """Records which request analysed which article."""

    async def record(self, user_id: str, article_id: str, request_id: str) -> None:
        ...


@dataclass
class ProcessingOutcome:
    """What the caller gets back for one request."""

    request_id: str
    status_code: int
    body: dict[str, Any]
    error: GatewayError | None = None
    session_state: str = ""
    warnings: list[str] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "status_code": self.status_code,
            "body": self.body,
            "error": self.error.to_dict() if self.error else None,
            "session_state": self.session_state,
            "warnings": self.warnings,
        }


@dataclass
class _RunState:
    """Values gathered while a request runs, read by the terminal steps."""

    version: str = ""
    version_config: BackendVersionConfig | None = None
    report_version: str = ""
    submitted: AnalysisOptions = field(default_factory=AnalysisOptions)
    options: AnalysisOptions | None = None
    response: BackendResponse | None = None
    filtered: list[dict[str, Any]] | None = None
    error: GatewayError | None = None


class AnalysisProcessor:
    """
    Orchestrates version resolution, option policy, the backend call and
    the audit trail for a single request.

    Args:
        registry: Configured backend versions.
        invoker: Performs the outbound backend call.
        audit_store: Durable home of session snapshots.
        sink: Tabular sink for summary rows; None disables rows.
        link_recorder: Stores article ↔ request links; None disables them.
        transformer: Option policy; defaults to constraints only.
        snapshot_api_version: This service's version, stamped on sessions.
        max_document_bytes: Upload size limit.
    """

    def __init__(
        self,
        registry: VersionRegistry,
        invoker: BackendInvoker,
        audit_store: AuditStore,
        sink: TabularSink | None = None,
        link_recorder: LinkRecorder | None = None,
        transformer: OptionsTransformer | None = None,
        snapshot_api_version: str = "",
        max_document_bytes: int = 200 * 1024 * 1024,
    ) -> None:
        self.registry = registry
        self.invoker = invoker
        self.audit_store = audit_store
        self.sink = sink
        self.link_recorder = link_recorder
        self.transformer = transformer or OptionsTransformer()
        self.snapshot_api_version = snapshot_api_version
        self.max_document_bytes = max_document_bytes

    def open_session(self, submission: Submission) -> ProcessingSession:
        request_id = submission.request_id or generate_request_id()
        return ProcessingSession(
            user_id=submission.user_id,
            request_id=request_id,
            snapshot_url=self.audit_store.snapshot_url(submission.user_id, request_id),
        )

    async def run(self, submission: Submission, user: User) -> ProcessingOutcome:
        """
        Process one submission.  Never raises: every failure is captured
        in the session and reflected in the outcome's status code.
        """
        session = self.open_session(submission)
        state = _RunState()
        log = logger.bind(
            request_id=session.request_id,
            user_id=user.id,
            origin=submission.origin.value,
        )
        log.info("Request started", files=len(submission.files))

        try:
            await self._process(submission, user, session, state, log)
        except GatewayError as exc:
            exc.request_id = exc.request_id or session.request_id
            state.error = exc
            log.warning(
                "Request failed",
                error_kind=exc.kind.value,
                error=exc.message,
                status_code=exc.status_code,
                context=exc.context,
            )
        except Exception as exc:
            state.error = GatewayError(
                f"Internal error: {exc}",
                request_id=session.request_id,
                context={"error_type": type(exc).__name__},
            )
            log.exception("Unexpected error while processing request", error=str(exc))

        if state.error is not None:
            session.set_error(state.error)
            session.set_api_response(self._error_body(state.error))

        warnings = await self._finalize(submission, user, session, state, log)

        outcome = self._outcome(session, state, warnings)
        log.info(
            "Request finished",
            status_code=outcome.status_code,
            duration_ms=session.duration_ms,
            session_state=session.state.value,
            warnings=len(warnings),
        )
        return outcome

    async def reject(self, submission: Submission, error: GatewayError) -> ProcessingOutcome:
        """
        Audit a submission that cannot be processed at all, e.g. one
        queued for a user who has since been removed.  The request still
        gets its snapshot, summary row and file cleanup.
        """
        session = self.open_session(submission)
        state = _RunState(error=error)
        user = User(id=submission.user_id)
        log = logger.bind(
            request_id=session.request_id,
            user_id=submission.user_id,
            origin=submission.origin.value,
        )
        error.request_id = error.request_id or session.request_id
        log.warning("Request rejected", error_kind=error.kind.value, error=error.message)

        try:
            self._capture_request(submission, session)
        except Exception as exc:
            log.exception("Could not capture rejected request", error=str(exc))
        session.set_error(error)
        session.set_api_response(self._error_body(error))

        warnings = await self._finalize(submission, user, session, state, log)
        return self._outcome(session, state, warnings)

    # ═══════════════════════════════════════════════════════════
    #  Main flow
    # ═══════════════════════════════════════════════════════════

    def _capture_request(self, submission: Submission, session: ProcessingSession) -> None:
        session.set_origin(submission.origin, submission.origin_service)
        session.set_snapshot_api_version(self.snapshot_api_version)
        session.set_api_request(submission.api_request or {
            "user_id": submission.user_id,
            "options": submission.options,
        })
        for document in submission.files:
            session.add_file(document)

    async def _process(
        self,
        submission: Submission,
        user: User,
        session: ProcessingSession,
        state: _RunState,
        log: structlog.BoundLogger,
    ) -> None:
        self._capture_request(submission, session)

        # ── Resolve versions ──────────────────────
        state.submitted = parse_options(submission.options)
        requested = state.submitted.backend_version
        state.version = resolve_version(requested, user, self.registry)
        if requested and requested != state.version:
            session.add_log(
                f"Requested backend version {requested} not available for user; "
                f"using {state.version}",
                LogLevel.WARN,
            )
        session.set_backend_version(state.version)
        state.report_version = resolve_report_version(state.submitted.report, user)

        # ── Validate input ────────────────────────
        validate_pdf(submission.document, self.max_document_bytes)
        state.version_config = self.registry.require(state.version)

        # ── Option policy ─────────────────────────
        state.options = self.transformer.transform(state.submitted, user, session)
        backend_options = state.options.to_backend_dict()
        endpoint = state.version_config.process
        session.set_backend_request({
            "url": endpoint.url,
            "method": endpoint.method.value,
            "options": self.invoker.request_options(backend_options),
            "files": [f.original_name for f in submission.files],
        })

        # ── Backend call ──────────────────────────
        response = await self.invoker.invoke(
            state.version_config,
            backend_options,
            submission.document,
            submission.supplementary,
            request_id=session.request_id,
        )
        state.response = response
        session.set_backend_response(response.to_dict())

        if response.version and response.version != state.version:
            session.add_log(
                f"Backend reported version {response.version}, "
                f"expected {state.version}",
                LogLevel.WARN,
            )
        if response.graph_value:
            session.add_log(f"Graph value: {response.graph_value}")

        self._check_response(response, state.version, session.request_id)

        # ── Article link ──────────────────────────
        article_id = response.field_value("article_id")
        if article_id:
            await self._record_link(user.id, str(article_id), session, log)

        # ── Client payload ────────────────────────
        state.filtered = filter_response_for_user(response.fields, user)
        session.set_api_response({
            "status": response.status_code,
            "body": {"response": state.filtered},
        })

    @staticmethod
    def _check_response(response: BackendResponse, version: str, request_id: str) -> None:
        """Turn error statuses and unusable payloads into BackendError."""
        if response.is_error:
            raise BackendError(
                f"Backend returned HTTP {response.status_code}",
                backend_status=response.status_code,
                request_id=request_id,
                context={"version": version},
            )
        if response.malformed:
            raise BackendError(
                "Backend returned a non-JSON response body",
                request_id=request_id,
                context={"version": version, "status": response.status_code},
            )
        if response.field_value("action_required") == "":
            raise BackendError(
                "Backend response has an empty action_required value",
                request_id=request_id,
                context={"version": version},
            )

    async def _record_link(
        self,
        user_id: str,
        article_id: str,
        session: ProcessingSession,
        log: structlog.BoundLogger,
    ) -> None:
        if self.link_recorder is None:
            return
        try:
            await self.link_recorder.record(user_id, article_id, session.request_id)
            session.add_log(f"Request linked to article {article_id}")
        except Exception as exc:
            session.add_log(f"Could not link request to article {article_id}: {exc}", LogLevel.WARN)
            log.warning("Article link failed", article_id=article_id, error=str(exc))

    # ═══════════════════════════════════════════════════════════
    #  Terminal steps
    # ═══════════════════════════════════════════════════════════

    async def _finalize(
        self,
        submission: Submission,
        user: User,
        session: ProcessingSession,
        state: _RunState,
        log: structlog.BoundLogger,
    ) -> list[str]:
        """Summary row, user row, persistence, file release; none blocks another."""
        warnings: list[str] = []
        session.close()

        # ── Summary row ───────────────────────────
        try:
            await self._emit_summary_row(submission, user, session, state)
        except Exception as exc:
            warnings.append(f"Summary row not written: {exc}")
            session.add_log(f"Error writing summary row: {exc}", LogLevel.ERROR)
            log.error("Summary row failed", error=str(exc))

        # ── User row (success only) ───────────────
        if state.error is None and user.user_sheet is not None:
            try:
                await self._emit_user_row(submission, user, session, state)
            except Exception as exc:
                warnings.append(f"User row not written: {exc}")
                session.add_log(f"Error writing user row: {exc}", LogLevel.ERROR)
                log.error("User row failed", error=str(exc))

        # ── Persist ───────────────────────────────
        try:
            await session.save(self.audit_store)
        except (GatewayError, SessionStateError) as exc:
            warnings.append(f"Session not persisted: {exc}")
            log.error("Session persistence failed", error=str(exc))

        # ── Release temporary files ───────────────
        try:
            failures = await session.release_files()
        except SessionStateError as exc:
            warnings.append(f"Files not released: {exc}")
            log.error("File release refused", error=str(exc))
        else:
            warnings.extend(failure.message for failure in failures)

        return warnings

    def _row_config(self, state: _RunState) -> BackendVersionConfig | None:
        return state.version_config or self.registry.get_or_default(state.version)

    @staticmethod
    def _article_id(state: _RunState, submission: Submission) -> str:
        if state.response is not None:
            value = state.response.field_value("article_id")
            if value:
                return str(value)
        return state.submitted.article_id or ""

    async def _emit_summary_row(
        self,
        submission: Submission,
        user: User,
        session: ProcessingSession,
        state: _RunState,
    ) -> None:
        config = self._row_config(state)
        if self.sink is None or config is None or config.sheet is None or not config.sheet.enabled:
            session.add_log("No summary sheet configured, row skipped")
            return

        response = state.response
        row = build_summary_row(
            request_id=session.request_id,
            timestamp=session.started_at,
            version_config=config,
            snapshot_url=session.url,
            snapshot_api_version=session.snapshot_api_version,
            backend_version=session.backend_version,
            error_status=state.error.error_status if state.error else NO_ERROR,
            duration_ms=session.duration_ms,
            user_id=user.id,
            filename=submission.document.original_name if submission.document else "N/A",
            report_version=state.report_version,
            graph_value=response.graph_value if response else "",
            article_id=self._article_id(state, submission),
            response_fields=response.fields if response else None,
            path_data=response.path if response else None,
        )
        await self.sink.append_row(config.sheet, row)
        session.add_log(f"Summary row written to sheet {config.sheet.sheet_name}")

    async def _emit_user_row(
        self,
        submission: Submission,
        user: User,
        session: ProcessingSession,
        state: _RunState,
    ) -> None:
        if self.sink is None or user.user_sheet is None or not user.user_sheet.enabled:
            return

        row = build_user_row(
            request_id=session.request_id,
            timestamp=session.started_at,
            filename=submission.document.original_name if submission.document else "N/A",
            backend_version=session.backend_version,
            report_version=state.report_version,
            graph_value=state.response.graph_value if state.response else "",
            article_id=self._article_id(state, submission),
            filtered_fields=state.filtered,
        )
        await self.sink.append_row(user.user_sheet, row)
        session.add_log(f"User row written to sheet {user.user_sheet.sheet_name}")

    # ═══════════════════════════════════════════════════════════
    #  Outcome
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _error_body(error: GatewayError) -> dict[str, Any]:
        return {"status": error.status_code, "body": {"error": error.message}}

    @staticmethod
    def _outcome(
        session: ProcessingSession,
        state: _RunState,
        warnings: list[str],
    ) -> ProcessingOutcome:
        if state.error is not None:
            return ProcessingOutcome(
                request_id=session.request_id,
                status_code=state.error.status_code,
                body={"error": state.error.message, "request_id": session.request_id},
                error=state.error,
                session_state=session.state.value,
                warnings=warnings,
            )
        return ProcessingOutcome(
            request_id=session.request_id,
            status_code=state.response.status_code if state.response else 200,
            body={"response": state.filtered},
            session_state=session.state.value,
            warnings=warnings,
            headers=forwardable_headers(state.response.headers) if state.response else {},
        )
