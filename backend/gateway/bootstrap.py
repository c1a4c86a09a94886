"""
Component wiring shared by the API process and the Celery worker.

Everything is built once from Settings and passed explicitly; nothing
here is mutated while requests are handled.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.core.config import Settings
from gateway.core.logging import get_logger
from gateway.core.permissions import PermissionTable, load_permissions
from gateway.pipeline.invoker import BackendInvoker
from gateway.pipeline.models import VersionRegistry
from gateway.pipeline.options import OptionsTransformer, load_rules
from gateway.pipeline.processor import AnalysisProcessor
from gateway.repositories.requests import RequestLinkRecorder
from gateway.storage.audit_store import S3AuditStore
from gateway.storage.sheets import SheetsSink
from gateway.storage.users import AuthorizationStore, load_users
from gateway.storage.versions import load_registry

logger = get_logger(__name__)


@dataclass
class Components:
    registry: VersionRegistry
    users: AuthorizationStore
    invoker: BackendInvoker
    processor: AnalysisProcessor
    permissions: PermissionTable | None = None


def build_components(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> Components:
    """Load configuration files and build the processor and its collaborators."""
    registry = load_registry(settings.VERSIONS_CONFIG_PATH)
    users = load_users(settings.USERS_CONFIG_PATH)
    permissions = load_permissions(settings.PERMISSIONS_CONFIG_PATH)
    invoker = BackendInvoker(
        timeout=settings.BACKEND_TIMEOUT_SECONDS,
        health_timeout=settings.BACKEND_HEALTH_TIMEOUT_SECONDS,
    )
    processor = AnalysisProcessor(
        registry=registry,
        invoker=invoker,
        audit_store=S3AuditStore.from_settings(settings),
        sink=SheetsSink(settings.GOOGLE_SHEETS_CREDENTIALS_PATH),
        link_recorder=RequestLinkRecorder(session_factory) if session_factory else None,
        transformer=OptionsTransformer(rules=load_rules(settings.POLICY_CONFIG_PATH)),
        snapshot_api_version=settings.SNAPSHOT_API_VERSION,
        max_document_bytes=settings.MAX_DOCUMENT_BYTES,
    )
    logger.info(
        "Components built",
        versions=len(registry.versions),
        users=len(users),
        links_enabled=session_factory is not None,
        permission_rules=len(permissions) if permissions is not None else None,
    )
    return Components(
        registry=registry,
        users=users,
        invoker=invoker,
        processor=processor,
        permissions=permissions,
    )
