"""
Request lookup — which requests analysed an article.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.api.deps import get_current_user, get_db
from gateway.api.schemas.requests import ArticleRequestsResponse
from gateway.pipeline.models import User
from gateway.repositories import requests as request_repository

router = APIRouter(prefix="/requests", tags=["Requests"])


@router.get("", response_model=ArticleRequestsResponse)
async def list_article_requests(
    article_id: str = Query(..., min_length=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ArticleRequestsResponse:
    """Request IDs linked to `article_id` for the calling user, oldest first."""
    request_ids = await request_repository.get_request_ids_by_article(
        db, user_id=user.id, article_id=article_id,
    )
    return ArticleRequestsResponse(article_id=article_id, request_ids=request_ids)
