"""
Append-only activity log: one record per resolved call, partitioned by UTC
calendar day as JSON Lines (``vibe-YYYY-MM-DD.jsonl``).
"""
from __future__ import annotations

import os
import json
import shutil
import logging
import datetime
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from vibe.vibe_datatypes import ActivityRecord, CacheIOError

logger = logging.getLogger(__name__)


def day_of(timestamp: float) -> str:
    return datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc).date().isoformat()


def today() -> str:
    return datetime.datetime.now(tz=datetime.timezone.utc).date().isoformat()


def log_filename(day: str) -> str:
    return f"vibe-{day}.jsonl"


class ActivityLog(ABC):

    @abstractmethod
    async def append(self, record: ActivityRecord) -> None: raise NotImplementedError
    @abstractmethod
    async def read(self, date: Optional[str] = None) -> List[Dict[str, Any]]: raise NotImplementedError
    @abstractmethod
    async def clear(self) -> None: raise NotImplementedError


class MemoryActivityLog(ActivityLog):
    """Keeps serialized records in memory, partitioned by day like the file log."""

    def __init__(self):
        self._days: Dict[str, List[Dict[str, Any]]] = {}

    async def append(self, record: ActivityRecord) -> None:
        self._days.setdefault(day_of(record.timestamp), []).append(record.to_dict())

    async def read(self, date: Optional[str] = None) -> List[Dict[str, Any]]:
        return list(self._days.get(date or today(), []))

    async def clear(self) -> None:
        self._days.clear()

    @property
    def records(self) -> List[Dict[str, Any]]:
        """All records, oldest day first."""
        return [r for day in sorted(self._days) for r in self._days[day]]


class FileActivityLog(ActivityLog):

    def __init__(self, log_dir: str):
        self.log_dir = str(log_dir)

    def _path(self, day: str) -> str:
        return os.path.join(self.log_dir, log_filename(day))

    async def append(self, record: ActivityRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False, default=repr)
        try:
            os.makedirs(self.log_dir, exist_ok=True)
            with open(self._path(day_of(record.timestamp)), "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise CacheIOError(f"failed to append activity record: {e}") from e

    async def read(self, date: Optional[str] = None) -> List[Dict[str, Any]]:
        path = self._path(date or today())
        if not os.path.isfile(path):
            return []
        out: List[Dict[str, Any]] = []
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for n, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    out.append(json.loads(line))
                except ValueError:
                    logger.warning("skipping undecodable log line %d in %s", n, path)
        return out

    async def clear(self) -> None:
        if os.path.isdir(self.log_dir):
            shutil.rmtree(self.log_dir, ignore_errors=True)


__all__ = [
    "ActivityLog",
    "MemoryActivityLog",
    "FileActivityLog",
    "day_of",
    "today",
    "log_filename",
]
