"""
Authorization store — read-only map of user ID to User.

Loaded once from a JSON file shaped like::

    {
      "publisher-a": {
        "token": "<jwt>",
        "rate_limit": {"window_ms": 60000, "max": 30},
        "authorized_versions": ["v1.2.0", "v2.0.0"],
        "default_version": "v2.0.0",
        "available_fields": [],
        "restricted_fields": ["debug__internal"]
      }
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from gateway.core.logging import get_logger
from gateway.pipeline.models import User

logger = get_logger(__name__)


class AuthorizationStore:
    """Lookup of users by ID or bearer token."""

    def __init__(self, users: Mapping[str, User]) -> None:
        self._users = MappingProxyType(dict(users))

    def __len__(self) -> int:
        return len(self._users)

    def get(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def get_by_token(self, token: str) -> User | None:
        if not token:
            return None
        for user in self._users.values():
            if user.token and user.token == token:
                return user
        return None


def load_users(path: str | Path) -> AuthorizationStore:
    """Parse the users file.  Each key becomes the user's `id`."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    users = {
        user_id: User.model_validate({**record, "id": user_id})
        for user_id, record in raw.items()
    }
    logger.info("Users loaded", path=str(path), users=len(users))
    return AuthorizationStore(users)
