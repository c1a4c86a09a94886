"""Shared dependencies for API routes."""

from __future__ import annotations

from typing import Any, AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.config import settings
from gateway.core.logging import get_logger
from gateway.core.permissions import PermissionDenied, PermissionTable
from gateway.core.security import decode_access_token
from gateway.db.session import get_db as _get_db
from gateway.pipeline.invoker import BackendInvoker
from gateway.pipeline.models import User, VersionRegistry
from gateway.pipeline.processor import AnalysisProcessor
from gateway.storage.users import AuthorizationStore

logger = get_logger(__name__)

security_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session."""
    async for session in _get_db():
        yield session


def get_registry(request: Request) -> VersionRegistry:
    return request.app.state.registry


def get_user_store(request: Request) -> AuthorizationStore:
    return request.app.state.users


def get_invoker(request: Request) -> BackendInvoker:
    return request.app.state.invoker


def get_processor(request: Request) -> AnalysisProcessor:
    return request.app.state.processor


def get_permissions(request: Request) -> PermissionTable | None:
    return getattr(request.app.state, "permissions", None)


def get_upload_dir(request: Request) -> str:
    return getattr(request.app.state, "upload_dir", settings.UPLOAD_TMP_DIR)


async def get_current_token_payload(
    credentials: HTTPAuthorizationCredentials | None = Depends(security_scheme),
) -> dict[str, Any]:
    """Extract and validate JWT payload from bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials were not provided",
        )

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_current_user(
    users: AuthorizationStore = Depends(get_user_store),
    token_payload: dict[str, Any] = Depends(get_current_token_payload),
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
) -> User:
    """Resolve the caller from the JWT subject and their stored token."""
    subject = token_payload.get("sub")
    user = users.get(subject) if isinstance(subject, str) else None
    if user is None or user.token != credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked token",
        )
    return user


async def check_route_permissions(
    request: Request,
    user: User = Depends(get_current_user),
    permissions: PermissionTable | None = Depends(get_permissions),
) -> User:
    """Apply the route permission table to the authenticated caller."""
    if permissions is None:
        return user
    try:
        permissions.check(request.url.path, request.method, user.id)
    except PermissionDenied as exc:
        logger.info(
            "Route permission denied",
            user_id=user.id,
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
        )
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return user
