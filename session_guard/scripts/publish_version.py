#!/usr/bin/env python3
"""Show, publish or clear the deployed version marker read by open sessions."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.app_version import APP_VERSION
from services.version_store import JsonVersionMarkerStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--marker-path",
        default=None,
        help="Path of the version marker file; defaults to SESSION_GUARD_DATA_DIR/app_version.json.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("show", help="Print the published version.")
    publish = sub.add_parser("publish", help="Publish a new version; open sessions older than it reload.")
    publish.add_argument("version", nargs="?", default=None, help=f"Version to publish (default: {APP_VERSION}).")
    sub.add_parser("clear", help="Remove the marker; no session will be asked to reload.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    store = JsonVersionMarkerStore(args.marker_path)

    if args.command == "show":
        print(f"published={store.read() or '-'} running={APP_VERSION}")
        return 0
    if args.command == "publish":
        version = (args.version or APP_VERSION).strip()
        if not version:
            parser.error("version must not be empty")
        previous = store.read()
        store.write(version)
        print(f"OK published={version} previous={previous or '-'}")
        return 0
    store.clear()
    print("OK cleared")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
