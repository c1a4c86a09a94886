"""Analysis request/response schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class VersionsResponse(BaseModel):
    """Backend versions the caller may use."""

    user_id: str
    authorized_versions: list[str]
    default_version: str
    report_versions: list[str] = Field(default_factory=list)
    default_report_version: str = ""


class VersionHealth(BaseModel):
    """Health of one backend version."""

    version: str
    status: int | None = None
    data: Any = None
    error: str | None = None


class HealthResponse(BaseModel):
    """Health of every version checked for the caller."""

    versions: list[VersionHealth]


class SubmissionAccepted(BaseModel):
    """Returned when an external submission has been queued."""

    message: str = "Submission queued"
    request_id: str
    celery_task_id: str
    status: str = "PENDING"
