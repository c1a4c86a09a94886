"""
Route permissions — which users may call which endpoint.

Rules are an ordered list; the first rule whose path and method both
match decides, so overlapping patterns resolve by declaration order.

Permissions file::

    {"rules": [
        {"path": "/api/v1/analysis", "methods": ["POST"], "blocked": ["publisher-x"]},
        {"path": "/api/v1/requests", "methods": ["GET"], "allowed": ["publisher-a"]},
        {"path": "/api/v1/versions", "methods": ["*"]}
    ]}

`{name}` path segments match any single segment.  A path no rule knows
is refused with 404, a known path without a rule for the method with 405.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from gateway.core.logging import get_logger

logger = get_logger(__name__)

ANY_METHOD = "*"

_PARAM_SEGMENT = re.compile(r"^(\{\w+\}|:\w+)$")


class PermissionDenied(Exception):
    """The caller may not use this route."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


def normalize_path(path: str) -> str:
    return path if path == "/" else path.rstrip("/")


def compile_path(path: str) -> re.Pattern[str]:
    """Regex for a rule path; parameter segments match one segment."""
    parts = [
        "[^/]+" if _PARAM_SEGMENT.match(segment) else re.escape(segment)
        for segment in normalize_path(path).split("/")
    ]
    return re.compile("/".join(parts))


@dataclass(frozen=True)
class PermissionRule:
    """Access rule for one route pattern and a set of methods."""

    path: str
    methods: frozenset[str]
    allowed: frozenset[str] = frozenset()
    blocked: frozenset[str] = frozenset()
    pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", compile_path(self.path))

    def matches_path(self, path: str) -> bool:
        return self.pattern.fullmatch(path) is not None

    def matches_method(self, method: str) -> bool:
        return ANY_METHOD in self.methods or method.upper() in self.methods

    def authorize(self, user_id: str | None) -> None:
        if not user_id:
            raise PermissionDenied(401, "Authentication required")
        if user_id in self.blocked:
            raise PermissionDenied(403, "Your account is blocked from accessing this resource")
        if self.allowed and user_id not in self.allowed:
            raise PermissionDenied(403, "Your account is not allowed to access this resource")


class PermissionTable:
    """Ordered permission rules."""

    def __init__(self, rules: Sequence[PermissionRule]) -> None:
        self._rules = tuple(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def check(self, path: str, method: str, user_id: str | None) -> PermissionRule:
        """
        Return the deciding rule, or raise PermissionDenied.

        Raises:
            PermissionDenied: 404 unknown path, 405 method not configured,
                401 no user, 403 blocked or not on the allow-list.
        """
        path = normalize_path(path)
        path_known = False
        for rule in self._rules:
            if not rule.matches_path(path):
                continue
            path_known = True
            if rule.matches_method(method):
                rule.authorize(user_id)
                return rule
        if path_known:
            raise PermissionDenied(405, "Method not allowed")
        raise PermissionDenied(404, "Not found")


def load_permissions(path: str | Path) -> PermissionTable | None:
    """Parse the permissions file.  A missing file disables route permissions."""
    path = Path(path)
    if not path.is_file():
        logger.info("No permissions file, route permissions disabled", path=str(path))
        return None

    raw = json.loads(path.read_text(encoding="utf-8"))
    rules = [
        PermissionRule(
            path=item["path"],
            methods=frozenset(m.upper() for m in item.get("methods", [ANY_METHOD])),
            allowed=frozenset(item.get("allowed", [])),
            blocked=frozenset(item.get("blocked", [])),
        )
        for item in raw.get("rules", [])
    ]
    logger.info("Route permissions loaded", path=str(path), rules=len(rules))
    return PermissionTable(rules)
