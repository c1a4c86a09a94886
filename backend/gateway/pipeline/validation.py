"""Input validation for uploaded documents and submitted options."""

from __future__ import annotations

import json
import os
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from gateway.pipeline.errors import InputValidationError
from gateway.pipeline.models import AnalysisOptions, DocumentFile

PDF_SIGNATURE = b"%PDF-"
PDF_VERSION = re.compile(rb"%PDF-(\d+\.\d+)")


def validate_pdf(document: DocumentFile | None, max_bytes: int) -> None:
    """
    Check that `document` is a readable PDF no larger than `max_bytes`.

    Raises:
        InputValidationError: With a human-readable reason.
    """
    if document is None:
        raise InputValidationError('Required "file" missing.')

    extension = os.path.splitext(document.original_name)[1].lower()
    if extension != ".pdf":
        raise InputValidationError(
            f'Invalid file extension: "{extension}". Expected ".pdf"',
            context={"filename": document.original_name},
        )

    try:
        size = os.path.getsize(document.path)
        with open(document.path, "rb") as f:
            header = f.read(10)
    except OSError as exc:
        raise InputValidationError(
            f"Could not read file: {exc}",
            context={"filename": document.original_name},
        ) from exc

    if size == 0:
        raise InputValidationError("File is empty")
    if size > max_bytes:
        raise InputValidationError(
            f"File is too large ({size} bytes, limit {max_bytes})",
            context={"size": size, "limit": max_bytes},
        )
    if not header.startswith(PDF_SIGNATURE):
        signature = header[:5].decode("ascii", errors="replace")
        raise InputValidationError(
            f'File does not appear to be a valid PDF (invalid file signature: "{signature}")'
        )
    if PDF_VERSION.match(header) is None:
        raise InputValidationError("File has PDF signature but missing valid version number")


def parse_options(raw: str | dict[str, Any] | None) -> AnalysisOptions:
    """
    Parse the `options` form field (a JSON object string).

    Raises:
        InputValidationError: If it is not a JSON object or has bad types.
    """
    if raw is None or raw == "":
        return AnalysisOptions()

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InputValidationError(f"Malformed options: {exc.msg}") from exc

    if not isinstance(raw, dict):
        raise InputValidationError("Malformed options: expected a JSON object")

    try:
        return AnalysisOptions.model_validate(raw)
    except PydanticValidationError as exc:
        raise InputValidationError(
            f"Malformed options: {exc.error_count()} invalid field(s)",
            context={"errors": exc.errors(include_url=False)},
        ) from exc
