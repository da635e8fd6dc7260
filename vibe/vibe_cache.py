"""
The synthesis cache: fingerprint key -> previously synthesized code.

There is no eviction; entries are small text fragments. Reads never raise
(an unreadable entry is a miss), writes raise ``CacheIOError`` which the
orchestrator absorbs.
"""
from __future__ import annotations

import os
import json
import shutil
import logging
import datetime
from abc import ABC, abstractmethod
from typing import Dict, Optional

from vibe.vibe_datatypes import SynthesizedUnit, CacheIOError
from vibe.vibe_executor import build_source

logger = logging.getLogger(__name__)


class SynthesisCache(ABC):
    """Keyed get/put/clear over synthesized units."""

    @abstractmethod
    async def get(self, key: str) -> Optional[SynthesizedUnit]: raise NotImplementedError
    @abstractmethod
    async def put(self, key: str, unit: SynthesizedUnit) -> None: raise NotImplementedError
    @abstractmethod
    async def clear(self) -> None: raise NotImplementedError


class MemoryCache(SynthesisCache):
    """Process-local cache, for tests and throwaway sessions."""

    def __init__(self):
        self._units: Dict[str, SynthesizedUnit] = {}

    async def get(self, key: str) -> Optional[SynthesizedUnit]:
        return self._units.get(key)

    async def put(self, key: str, unit: SynthesizedUnit) -> None:
        self._units[key] = unit

    async def clear(self) -> None:
        self._units.clear()

    def __len__(self):
        return len(self._units)


def render_unit(unit: SynthesizedUnit) -> str:
    """A human-reviewable Python rendering of a cached unit (not authoritative)."""
    created = datetime.datetime.fromtimestamp(unit.created_at, tz=datetime.timezone.utc)
    lines = [
        f"# vibe function: {unit.name}",
        f"# fingerprint: {unit.fingerprint}",
        f"# created: {created.isoformat()}",
        "",
        build_source(unit.code),
    ]
    return "\n".join(lines)


class FileCache(SynthesisCache):
    """One ``<key>.json`` file per unit, plus a ``<key>.py`` view for humans."""

    def __init__(self, cache_dir: str):
        self.cache_dir = str(cache_dir)

    def _path(self, key: str, ext: str = ".json") -> str:
        return os.path.join(self.cache_dir, f"{key}{ext}")

    async def get(self, key: str) -> Optional[SynthesizedUnit]:
        path = self._path(key)
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return SynthesizedUnit.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("cache entry %s unreadable, treating as miss: %s", key, e)
            return None

    async def put(self, key: str, unit: SynthesizedUnit) -> None:
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            with open(self._path(key), "w", encoding="utf-8") as f:
                json.dump(unit.to_dict(), f, ensure_ascii=False, indent=2)
        except OSError as e:
            raise CacheIOError(f"failed to write cache entry {key}: {e}") from e
        try:
            with open(self._path(key, ".py"), "w", encoding="utf-8") as f:
                f.write(render_unit(unit))
        except OSError as e:
            logger.warning("could not write code view for %s: %s", key, e)

    async def clear(self) -> None:
        if not os.path.isdir(self.cache_dir):
            return
        try:
            shutil.rmtree(self.cache_dir)
        except OSError as e:
            raise CacheIOError(f"failed to clear cache at {self.cache_dir}: {e}") from e


__all__ = [
    "SynthesisCache",
    "MemoryCache",
    "FileCache",
    "render_unit",
]
