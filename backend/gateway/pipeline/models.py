"""
Immutable configuration and request types shared by the pipeline.

Users and backend versions are loaded once (see gateway.storage) and
passed explicitly into each component; nothing here is mutated while a
request is being handled.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from gateway.core.constants import APIRequestMethod, RequestOrigin
from gateway.pipeline.errors import ConfigurationError


# ═══════════════════════════════════════════════════════════
#  Backend versions
# ═══════════════════════════════════════════════════════════

class BackendEndpoint(BaseModel):
    """One callable endpoint of an analysis backend."""

    model_config = ConfigDict(frozen=True)

    url: str
    method: APIRequestMethod = APIRequestMethod.POST
    api_key: str | None = None


class SheetDestination(BaseModel):
    """A spreadsheet tab that receives summary rows."""

    model_config = ConfigDict(frozen=True)

    spreadsheet_id: str
    sheet_name: str
    enabled: bool = True


class BackendVersionConfig(BaseModel):
    """
    Configuration of one deployed analysis backend version.

    Args:
        name: Version alias used by clients, e.g. "v2.1.0".
        process: Endpoint receiving the multipart analysis request.
        health: Optional health-check endpoint.
        response_mapping: Response field name → summary column index
            (relative to the first dynamic column).
        path_labels: Ordered labels of the decision-path columns.
        sheet: Where this version's summary rows are appended.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    process: BackendEndpoint
    health: BackendEndpoint | None = None
    response_mapping: dict[str, int] = Field(default_factory=dict)
    path_labels: tuple[str, ...] = ()
    sheet: SheetDestination | None = None

    @property
    def response_width(self) -> int:
        """Number of response columns in a summary row."""
        if not self.response_mapping:
            return 0
        return max(self.response_mapping.values()) + 1


class VersionRegistry:
    """Read-only set of configured backend versions plus the global default."""

    def __init__(
        self,
        default_version: str,
        versions: Mapping[str, BackendVersionConfig],
    ) -> None:
        self._default_version = default_version
        self._versions = MappingProxyType(dict(versions))

    @property
    def default_version(self) -> str:
        return self._default_version

    @property
    def versions(self) -> Mapping[str, BackendVersionConfig]:
        return self._versions

    def __contains__(self, name: object) -> bool:
        return name in self._versions

    def get(self, name: str | None) -> BackendVersionConfig | None:
        if not name:
            return None
        return self._versions.get(name)

    def require(self, name: str) -> BackendVersionConfig:
        """Return the version config or raise ConfigurationError."""
        config = self.get(name)
        if config is None:
            raise ConfigurationError(
                f"Requested backend version '{name}' is not configured.",
                context={"version": name, "configured": sorted(self._versions)},
            )
        return config

    def get_or_default(self, name: str | None) -> BackendVersionConfig | None:
        """Version config for `name`, falling back to the default version."""
        return self.get(name) or self.get(self._default_version)


# ═══════════════════════════════════════════════════════════
#  Users
# ═══════════════════════════════════════════════════════════

class OptionConstraint(BaseModel):
    """Allowed values for one request option, with its fallback."""

    model_config = ConfigDict(frozen=True)

    available: tuple[str, ...]
    default: str


class User(BaseModel):
    """Authorization record for one API caller."""

    model_config = ConfigDict(frozen=True)

    id: str
    token: str = ""
    rate_limit: dict[str, Any] = Field(default_factory=dict)

    # ── Backend routing ──────────────────────
    authorized_versions: tuple[str, ...] = ()
    default_version: str | None = None

    # ── Response redaction ───────────────────
    available_fields: tuple[str, ...] = ()
    restricted_fields: tuple[str, ...] = ()
    field_order: tuple[str, ...] = ()

    # ── Request options policy ───────────────
    option_constraints: dict[str, OptionConstraint] = Field(default_factory=dict)

    # ── Reports ───────────────────────────────
    report_versions: tuple[str, ...] = ()
    default_report_version: str = ""

    # ── Per-user summary sheet ───────────────
    user_sheet: SheetDestination | None = None


# ═══════════════════════════════════════════════════════════
#  Requests
# ═══════════════════════════════════════════════════════════

class AnalysisOptions(BaseModel):
    """
    Options submitted with a document.

    Known fields are declared; anything else the client sends is kept
    in the extension map (`model_extra`) and forwarded to the backend.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    backend_version: str | None = None
    report: str | None = None
    article_id: str | None = None
    document_type: str | None = None
    article_title: str | None = None
    journal_name: str | None = None
    editorial_policy: str | None = None

    def to_backend_dict(self) -> dict[str, Any]:
        """Options as sent to the backend (routing keys removed)."""
        data = self.model_dump(exclude_none=True)
        data.pop("backend_version", None)
        return data


class DocumentFile(BaseModel):
    """A temporary file attached to a request."""

    model_config = ConfigDict(frozen=True)

    path: str
    original_name: str
    mime_type: str = "application/octet-stream"
    size: int = 0
    origin: str = "api"


class Submission(BaseModel):
    """
    Everything the pipeline needs to process one inbound request.

    `options` is the raw `options` form field (JSON text or an already
    decoded object); it is parsed inside the session so that malformed
    options are audited like any other input error.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    document: DocumentFile | None = None
    supplementary: DocumentFile | None = None
    options: str | dict[str, Any] | None = None
    origin: RequestOrigin = RequestOrigin.DIRECT
    origin_service: str | None = None
    request_id: str | None = None
    api_request: dict[str, Any] = Field(default_factory=dict)

    @property
    def files(self) -> list[DocumentFile]:
        return [f for f in (self.document, self.supplementary) if f is not None]
