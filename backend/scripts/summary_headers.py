"""
Print the summary-sheet header row for a backend version.

Paste the output into row 1 of a new version sheet so that columns line
up with the rows the gateway appends.

Run: python -m scripts.summary_headers v2.0.0 [--tsv]  (from backend/)
"""

import argparse
import sys

from gateway.core.config import settings
from gateway.pipeline.errors import ConfigurationError
from gateway.pipeline.summary import summary_headers
from gateway.storage.versions import load_registry


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("version", nargs="?", help="Backend version (default: global default)")
    parser.add_argument("--config", default=settings.VERSIONS_CONFIG_PATH, help="Versions file")
    parser.add_argument("--tsv", action="store_true", help="Tab-separated output")
    args = parser.parse_args(argv)

    registry = load_registry(args.config)
    name = args.version or registry.default_version
    try:
        config = registry.require(name)
    except ConfigurationError as exc:
        print(exc.message, file=sys.stderr)
        return 1

    headers = summary_headers(config)
    print(("\t" if args.tsv else "\n").join(headers))
    return 0


if __name__ == "__main__":
    sys.exit(main())
