"""
Request-link repository containing all data-access operations for the
request_links table.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.core.logging import get_logger
from gateway.db.models.request_link import RequestLink
from gateway.db.models.base import utcnow

logger = get_logger(__name__)


async def get_link(
    db: AsyncSession,
    *,
    user_id: str,
    article_id: str,
    request_id: str,
) -> RequestLink | None:
    """Fetch one link by its natural key."""
    stmt = select(RequestLink).where(
        RequestLink.user_id == user_id,
        RequestLink.article_id == article_id,
        RequestLink.request_id == request_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def add_or_update_link(
    db: AsyncSession,
    *,
    user_id: str,
    article_id: str,
    request_id: str,
) -> RequestLink:
    """Insert the link, or refresh its timestamp when it already exists."""
    link = await get_link(db, user_id=user_id, article_id=article_id, request_id=request_id)
    if link is None:
        link = RequestLink(user_id=user_id, article_id=article_id, request_id=request_id)
        db.add(link)
    else:
        link.updated_at = utcnow()
    await db.flush()
    return link


async def get_request_ids_by_article(
    db: AsyncSession,
    *,
    user_id: str,
    article_id: str,
) -> list[str]:
    """Request IDs that analysed `article_id` for `user_id`, oldest first."""
    stmt = (
        select(RequestLink.request_id)
        .where(RequestLink.user_id == user_id, RequestLink.article_id == article_id)
        .order_by(RequestLink.created_at, RequestLink.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


class RequestLinkRecorder:
    """Stores article ↔ request links in their own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, user_id: str, article_id: str, request_id: str) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await add_or_update_link(
                    db, user_id=user_id, article_id=article_id, request_id=request_id,
                )
        logger.info("Request linked", user_id=user_id, article_id=article_id, request_id=request_id)
