"""Persisted key/value settings backed by a small JSON file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

API_KEY_FIELD = "geminiApiKey"


class SettingsStore(Protocol):
    """Storage for the generative service API key."""

    def read_key(self) -> str | None: ...

    def write_key(self, api_key: str) -> None: ...


class JsonSettingsStore:
    """Stores settings as a JSON object at ``path``."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read_key(self) -> str | None:
        value = self._load().get(API_KEY_FIELD)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def write_key(self, api_key: str) -> None:
        data = self._load()
        data[API_KEY_FIELD] = api_key
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read settings from %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object settings file at %s", self._path)
            return {}
        return data
