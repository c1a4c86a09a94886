"""
Backend version configuration loader.

The versions file is shaped like::

    {
      "default_version": "v2.0.0",
      "versions": {
        "v2.0.0": {
          "process": {"url": "https://backend/v2/process", "method": "POST", "api_key": "..."},
          "health": {"url": "https://backend/v2/health", "method": "GET"},
          "response_mapping": {"article_id": 0, "das_presence": 1},
          "path_labels": ["Path", "Score"],
          "sheet": {"spreadsheet_id": "...", "sheet_name": "v2"}
        }
      }
    }
"""

from __future__ import annotations

import json
from pathlib import Path

from gateway.core.logging import get_logger
from gateway.pipeline.errors import ConfigurationError
from gateway.pipeline.models import BackendVersionConfig, VersionRegistry

logger = get_logger(__name__)


def load_registry(path: str | Path) -> VersionRegistry:
    """
    Parse the versions file into a VersionRegistry.

    Raises:
        ConfigurationError: If the default version is not among the versions.
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    versions = {
        name: BackendVersionConfig.model_validate({**config, "name": name})
        for name, config in raw.get("versions", {}).items()
    }
    default_version = raw.get("default_version", "")

    if default_version not in versions:
        raise ConfigurationError(
            f"Default backend version '{default_version}' is not configured",
            context={"path": str(path), "configured": sorted(versions)},
        )

    logger.info(
        "Backend versions loaded",
        path=str(path),
        versions=sorted(versions),
        default_version=default_version,
    )
    return VersionRegistry(default_version=default_version, versions=versions)
