"""
VersionResolver — picks the backend version (and report version) for a request.

Resolution is a pure function of its inputs and never raises.  Whether
the resolved name is actually configured is checked separately with
VersionRegistry.require(), which raises ConfigurationError.
"""

from __future__ import annotations

from gateway.pipeline.models import User, VersionRegistry


def resolve_version(
    requested: str | None,
    user: User,
    registry: VersionRegistry,
) -> str:
    """
    Return the backend version to use.

    Lookup order (first match wins):
        1. The requested version, if the user is authorized for it
        2. The user's default version
        3. The user's first authorized version
        4. The global default version
    """
    if requested and requested in user.authorized_versions:
        return requested
    if user.default_version:
        return user.default_version
    if user.authorized_versions:
        return user.authorized_versions[0]
    return registry.default_version


def resolve_report_version(requested: str | None, user: User) -> str:
    """Requested report version if authorized, else the user's default (may be "")."""
    if requested and requested in user.report_versions:
        return requested
    return user.default_report_version or ""
