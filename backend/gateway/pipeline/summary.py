"""
SummaryRowBuilder — flattens one request into a column-stable row.

A summary row is a fixed block of audit columns followed by the
version-specific response and decision-path columns declared in the
version's BackendVersionConfig.  Every value is sanitised to a trimmed
string.  Row construction runs on success and failure paths alike, so
nothing in this module raises on bad or missing data.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from gateway.core.constants import NO_ERROR, UNSERIALIZABLE
from gateway.pipeline.models import BackendVersionConfig

SUMMARY_BASE_HEADERS = [
    "Request ID",
    "Snapshot API Version",
    "Backend Version",
    "Error",
    "Date",
    "Time",
    "Duration",
    "User ID",
    "Filename",
    "Report Version",
    "Report URL",
    "Graph Value",
    "Article ID",
]

USER_BASE_HEADERS = [
    "Request ID",
    "Date",
    "Time",
    "Filename",
    "Backend Version",
    "Report Version",
    "Report URL",
    "Graph Value",
    "Article ID",
]


# ═══════════════════════════════════════════════════════════
#  Value helpers
# ═══════════════════════════════════════════════════════════

def sanitize(value: Any) -> str:
    """
    Convert any value to a trimmed cell string.

        None            → ""
        list / tuple    → newline-joined items
        dict            → compact JSON (or the unserialisable marker)
        anything else   → str()
    """
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "\n".join(sanitize(item) for item in value).strip()
    if isinstance(value, dict):
        try:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False).strip()
        except (TypeError, ValueError):
            return UNSERIALIZABLE
    try:
        return str(value).strip()
    except Exception:
        return UNSERIALIZABLE


def sheets_date(value: datetime) -> str:
    return f"=DATE({value.year},{value.month},{value.day})"


def sheets_time(value: datetime) -> str:
    return f"=TIME({value.hour},{value.minute},{value.second})"


def sheets_duration(milliseconds: int | float | None) -> str:
    """Duration as a sheets TIME formula; negative or missing → zero."""
    try:
        total = max(int(milliseconds or 0), 0)
    except (TypeError, ValueError):
        total = 0
    hours, total = divmod(total, 3_600_000)
    minutes, total = divmod(total, 60_000)
    seconds = total // 1000
    return f"=TIME({hours},{minutes},{seconds})"


def hyperlink(url: str, label: str) -> str:
    if not url:
        return label
    return f'=HYPERLINK("{url}","{label}")'


# ═══════════════════════════════════════════════════════════
#  Dynamic columns
# ═══════════════════════════════════════════════════════════

def response_columns(fields: Any, version_config: BackendVersionConfig | None) -> list[str]:
    """Place each mapped response field at its declared column index."""
    if version_config is None:
        return []

    columns = [""] * version_config.response_width
    if not isinstance(fields, list):
        return columns

    for item in fields:
        if not isinstance(item, dict):
            continue
        index = version_config.response_mapping.get(item.get("name"))
        if isinstance(index, int) and 0 <= index < len(columns):
            columns[index] = sanitize(item.get("value"))
    return columns


def path_columns(path: Any, version_config: BackendVersionConfig | None) -> list[str]:
    """
    Split the decision path into one column per declared label.

    The backend sends ``[label, "v1,v2,..."]``.  Values are padded or
    truncated to the label count; "Score" columns become integers when
    they parse as such.
    """
    if version_config is None:
        return []

    labels = version_config.path_labels
    columns = [""] * len(labels)
    if not isinstance(path, (list, tuple)) or len(path) != 2 or not isinstance(path[1], str):
        return columns

    values = path[1].split(",")
    for index, label in enumerate(labels):
        if index >= len(values):
            break
        value: Any = values[index]
        if "Score" in label:
            try:
                value = int(value)
            except ValueError:
                pass
        columns[index] = sanitize(value)
    return columns


# ═══════════════════════════════════════════════════════════
#  Rows
# ═══════════════════════════════════════════════════════════

def build_summary_row(
    *,
    request_id: str,
    timestamp: datetime,
    version_config: BackendVersionConfig | None,
    snapshot_url: str = "",
    snapshot_api_version: str = "",
    backend_version: str = "",
    error_status: str = NO_ERROR,
    duration_ms: int = 0,
    user_id: str = "",
    filename: str = "N/A",
    report_version: str = "",
    report_url: str = "",
    graph_value: str = "",
    article_id: str = "",
    response_fields: Any = None,
    path_data: Any = None,
) -> list[str]:
    """Summary row for the version's audit sheet."""
    base = [
        hyperlink(sanitize(snapshot_url), sanitize(request_id)),
        snapshot_api_version,
        backend_version,
        error_status,
        sheets_date(timestamp),
        sheets_time(timestamp),
        sheets_duration(duration_ms),
        user_id,
        filename or "N/A",
        report_version,
        report_url,
        graph_value,
        article_id,
    ]
    row = [sanitize(value) for value in base]
    row.extend(response_columns(response_fields, version_config))
    row.extend(path_columns(path_data, version_config))
    return row


def summary_headers(version_config: BackendVersionConfig | None) -> list[str]:
    """Header row matching build_summary_row() for a version."""
    headers = list(SUMMARY_BASE_HEADERS)
    if version_config is None:
        return headers

    response_headers = [""] * version_config.response_width
    for name, index in version_config.response_mapping.items():
        if 0 <= index < len(response_headers):
            response_headers[index] = name
    return headers + response_headers + list(version_config.path_labels)


def build_user_row(
    *,
    request_id: str,
    timestamp: datetime,
    filename: str = "N/A",
    backend_version: str = "",
    report_version: str = "",
    report_url: str = "",
    graph_value: str = "",
    article_id: str = "",
    filtered_fields: Any = None,
) -> list[str]:
    """Row for a user's own sheet: fixed block plus the values the user may see."""
    row = [
        sanitize(request_id),
        sheets_date(timestamp),
        sheets_time(timestamp),
        sanitize(filename) or "N/A",
        sanitize(backend_version),
        sanitize(report_version),
        sanitize(report_url),
        sanitize(graph_value),
        sanitize(article_id),
    ]
    if isinstance(filtered_fields, list):
        for item in filtered_fields:
            if isinstance(item, dict) and "name" in item and "value" in item:
                row.append(sanitize(item["value"]))
    return row


def user_row_headers(filtered_fields: Any = None) -> list[str]:
    headers = list(USER_BASE_HEADERS)
    if isinstance(filtered_fields, list):
        for item in filtered_fields:
            if isinstance(item, dict) and "name" in item and "value" in item:
                headers.append(sanitize(item["name"]))
    return headers
