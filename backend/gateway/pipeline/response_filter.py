"""
ResponseFilter — builds the client-visible copy of a backend payload.

The backend returns a list of ``{"name": ..., "value": ...}`` fields.
Fields are redacted per user, sorted by the user's preferred order and
stripped of internal ``__qualifier`` suffixes.  The input list is never
modified; every function works on a deep copy.
"""

from __future__ import annotations

import copy
import re
from typing import Any

from gateway.pipeline.models import User

FieldList = list[dict[str, Any]]

_SUFFIX = re.compile(r"__.*$")


def filter_response(
    fields: FieldList | None,
    available_fields: tuple[str, ...] | list[str] = (),
    restricted_fields: tuple[str, ...] | list[str] = (),
) -> FieldList | None:
    """
    Redact fields by name.

    The allow-list wins when both lists are non-empty; otherwise the
    deny-list applies; with neither, a copy of everything is returned.
    """
    if fields is None:
        return None

    data = copy.deepcopy(fields)
    if not isinstance(data, list):
        return data

    if available_fields:
        allowed = set(available_fields)
        return [item for item in data if _name(item) in allowed]
    if restricted_fields:
        denied = set(restricted_fields)
        return [item for item in data if _name(item) not in denied]
    return data


def sort_response(fields: FieldList, field_order: tuple[str, ...] | list[str]) -> FieldList:
    """Order fields by `field_order`; unlisted fields keep their order at the end."""
    data = copy.deepcopy(fields)
    if not field_order:
        return data

    rank = {name: index for index, name in enumerate(field_order)}
    unranked = len(rank)
    # sorted() is stable, so equal ranks keep their original order
    return sorted(data, key=lambda item: rank.get(_name(item), unranked))


def clean_field_names(fields: FieldList) -> FieldList:
    """Remove ``__qualifier`` suffixes from field names."""
    data = copy.deepcopy(fields)
    for item in data:
        if isinstance(item, dict) and isinstance(item.get("name"), str):
            item["name"] = _SUFFIX.sub("", item["name"])
    return data


def filter_response_for_user(fields: FieldList | None, user: User) -> FieldList | None:
    """Redact, sort and clean a backend payload for `user`."""
    filtered = filter_response(fields, user.available_fields, user.restricted_fields)
    if not isinstance(filtered, list):
        return filtered
    return clean_field_names(sort_response(filtered, user.field_order))


def _name(item: Any) -> Any:
    return item.get("name") if isinstance(item, dict) else None
