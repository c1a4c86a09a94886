"""
Backend version discovery.
"""

from fastapi import APIRouter, Depends

from gateway.api.deps import get_current_user, get_registry
from gateway.api.schemas.analysis import VersionsResponse
from gateway.pipeline.models import User, VersionRegistry
from gateway.pipeline.version_resolver import resolve_report_version, resolve_version

router = APIRouter(prefix="/versions", tags=["Versions"])


@router.get("", response_model=VersionsResponse)
async def list_versions(
    user: User = Depends(get_current_user),
    registry: VersionRegistry = Depends(get_registry),
) -> VersionsResponse:
    """Versions the caller may request, and what they get by default."""
    return VersionsResponse(
        user_id=user.id,
        authorized_versions=[v for v in user.authorized_versions if v in registry],
        default_version=resolve_version(None, user, registry),
        report_versions=list(user.report_versions),
        default_report_version=resolve_report_version(None, user),
    )
