"""Request-lookup schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ArticleRequestsResponse(BaseModel):
    """Requests that analysed one of the caller's articles."""

    article_id: str
    request_ids: list[str] = Field(default_factory=list)
