"""
Rate Limiter Persistence Sinks

A sink lets a limiter survive process restarts. The limiter works without
one; persistence never affects admission decisions.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Dict, List, Protocol

if TYPE_CHECKING:
    from .limiter import RateLimitEntry


class RateLimitSink(Protocol):
    """Load/save interface for limiter state, keyed by limiter name."""

    def load(self, name: str) -> List["RateLimitEntry"]:
        ...

    def save(self, name: str, entries: List["RateLimitEntry"]) -> None:
        ...


class JsonFileSink:
    """
    Stores the state of every limiter in one JSON document.

    Layout::

        {"chat": {"<identifier>": {...entry...}}, "embedding": {...}}
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path)
        self._lock = RLock()

    def load(self, name: str) -> List["RateLimitEntry"]:
        from .limiter import RateLimitEntry

        with self._lock:
            data = self._read()
        return [RateLimitEntry(**raw) for raw in data.get(name, {}).values()]

    def save(self, name: str, entries: List["RateLimitEntry"]) -> None:
        with self._lock:
            data = self._read()
            data[name] = {entry.identifier: asdict(entry) for entry in entries}

            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(data, f)
            tmp_path.replace(self._path)

    def _read(self) -> Dict[str, Dict[str, dict]]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            return json.load(f)
