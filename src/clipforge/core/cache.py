"""
Content-Addressed Media Cache for ClipForge

Stores resolved MediaReferences keyed by the derived cache key so a
generation is paid for once and reused across runs.

Layout (flat, one JSON file per key):
    <cache_dir>/<sha256 of key>.json
    {"value": {...MediaReference...}, "expiresAt": 1767225600000 | null}

Cache semantics:
- Missing, expired or unreadable entries are misses, never errors
- Failed writes are logged and reported as False, never raised
- No eviction; size management is a deployment concern

Usage:
    from clipforge.core.cache import FileCache

    cache = FileCache(Path(".clipforge/cache"), ttl_hours=24)
    if (ref := cache.get(key)) is None:
        ref = produce()
        cache.set(key, ref)
"""

import json
import os
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import CacheIOError
from ..logger import logger
from .cache_key import key_digest
from .models import MediaReference


# =============================================================================
# Constants
# =============================================================================

ENTRY_SUFFIX = ".json"
MEDIA_DIRNAME = "media"


class MediaCache(ABC):
    """get/set store for resolved media keyed by derived cache keys."""

    @abstractmethod
    def get(self, key: List[Any]) -> Optional[MediaReference]:
        ...

    @abstractmethod
    def set(self, key: List[Any], value: MediaReference) -> bool:
        ...


class MemoryCache(MediaCache):
    """In-process cache; nothing survives the interpreter."""

    def __init__(self, ttl_hours: float = 0):
        self.ttl_hours = ttl_hours
        self._entries: Dict[str, Tuple[MediaReference, Optional[float]]] = {}

    def get(self, key: List[Any]) -> Optional[MediaReference]:
        entry = self._entries.get(key_digest(key))
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.time() >= expires_at:
            self._entries.pop(key_digest(key), None)
            return None
        return value

    def set(self, key: List[Any], value: MediaReference) -> bool:
        expires_at = time.time() + self.ttl_hours * 3600 if self.ttl_hours > 0 else None
        self._entries[key_digest(key)] = (value, expires_at)
        return True

    def __len__(self) -> int:
        return len(self._entries)


class FileCache(MediaCache):
    """
    Durable JSON-per-key cache.

    Writes go through a temporary file and ``os.replace`` so a concurrent
    reader never sees a half-written record.
    """

    def __init__(self, cache_dir: Path, ttl_hours: float = 0, enabled: bool = True):
        """
        Args:
            cache_dir: Flat directory holding one JSON file per key
            ttl_hours: Entry lifetime in hours, 0 for no expiry
            enabled: When False every lookup misses and nothing is written
        """
        self.cache_dir = Path(cache_dir)
        self.ttl_hours = ttl_hours
        self.enabled = enabled

    def path_for(self, key: List[Any]) -> Path:
        return self.cache_dir / f"{key_digest(key)}{ENTRY_SUFFIX}"

    def _read_record(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CacheIOError(f"Cannot read cache entry {path.name}: {e}", path=str(path)) from e
        if not isinstance(record, dict) or "value" not in record:
            raise CacheIOError(f"Malformed cache entry {path.name}", path=str(path))
        return record

    def _write_record(self, path: Path, record: Dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=ENTRY_SUFFIX)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(record, f, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CacheIOError(f"Cannot write cache entry {path.name}: {e}", path=str(path)) from e

    def get(self, key: List[Any]) -> Optional[MediaReference]:
        """Return the cached reference, or None on miss/expiry/read failure."""
        if not self.enabled:
            return None

        path = self.path_for(key)
        if not path.exists():
            return None

        try:
            record = self._read_record(path)
            expires_at = record.get("expiresAt")
            if expires_at is not None and time.time() * 1000 >= float(expires_at):
                logger.debug(f"Cache expired: {path.name}")
                return None
            return MediaReference.from_dict(record["value"])
        except CacheIOError as e:
            logger.debug(f"Cache read failed, treating as miss: {e}")
            return None
        except (KeyError, ValueError, TypeError) as e:
            logger.debug(f"Cache entry {path.name} invalid, treating as miss: {e}")
            return None

    def set(self, key: List[Any], value: MediaReference) -> bool:
        """Persist ``value``. Returns False (and logs) if the write failed."""
        if not self.enabled:
            return False

        expires_at = None
        if self.ttl_hours > 0:
            expires_at = int((time.time() + self.ttl_hours * 3600) * 1000)

        path = self.path_for(key)
        try:
            self._write_record(path, {"value": value.to_dict(), "expiresAt": expires_at})
        except CacheIOError as e:
            logger.warning(f"Failed to save cache entry: {e}")
            return False

        logger.debug(f"Cached {value.id} -> {path.name}")
        return True

    def clear(self) -> int:
        """
        Remove all entries and the media files generated for them.

        Returns the number of entries deleted.
        """
        if not self.cache_dir.exists():
            return 0
        removed = 0
        for path in self.cache_dir.glob(f"*{ENTRY_SUFFIX}"):
            if self._remove(path):
                removed += 1

        media_dir = self.cache_dir / MEDIA_DIRNAME
        if media_dir.is_dir():
            media = [p for p in media_dir.iterdir() if p.is_file()]
            media_removed = sum(1 for p in media if self._remove(p))
            logger.debug(f"Removed {media_removed} media files from {media_dir}")
        return removed

    @staticmethod
    def _remove(path: Path) -> bool:
        try:
            path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")
            return False
        return True

    def __len__(self) -> int:
        if not self.cache_dir.exists():
            return 0
        return sum(1 for _ in self.cache_dir.glob(f"*{ENTRY_SUFFIX}"))
