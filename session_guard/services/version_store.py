from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Protocol


_BASE_DIR = Path(__file__).resolve().parent.parent
VERSION_MARKER_FILENAME = "app_version.json"


def default_data_dir() -> Path:
    return Path(os.environ.get("SESSION_GUARD_DATA_DIR") or (_BASE_DIR / "data"))


class VersionMarkerStore(Protocol):
    def read(self) -> str | None: ...

    def write(self, version: str) -> None: ...


class JsonVersionMarkerStore:
    """Last published build version, kept in a small JSON file."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else default_data_dir() / VERSION_MARKER_FILENAME
        self._lock = threading.Lock()

    def read(self) -> str | None:
        with self._lock:
            return self._read_unlocked()

    def write(self, version: str) -> None:
        trimmed = str(version or "").strip()
        if not trimmed:
            raise ValueError("Version must not be empty.")
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps({"version": trimmed}, ensure_ascii=True, indent=2), encoding="utf-8")

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()

    def _read_unlocked(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, ValueError):
            return None
        if not isinstance(payload, dict):
            return None
        version = str(payload.get("version") or "").strip()
        return version or None
