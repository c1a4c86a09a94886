"""
RequestLink — one row per (user, article, request).

Written when a backend response names an `article_id`, so every analysis
of an article can be traced back to its audit snapshot.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from gateway.db.models.base import Base, utcnow


class RequestLink(Base):
    """Links an article to the requests that analysed it."""

    __tablename__ = "request_links"
    __table_args__ = (
        UniqueConstraint("user_id", "article_id", "request_id", name="uq_request_links_user_article_request"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    # ── Identity ──────────────────────────────
    user_id = Column(String(255), nullable=False, index=True)
    article_id = Column(String(255), nullable=False, index=True)
    request_id = Column(String(64), nullable=False, index=True)

    # ── Timestamps ────────────────────────────
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<RequestLink user={self.user_id} article={self.article_id} request={self.request_id}>"
