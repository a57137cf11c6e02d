"""Durable key → JSON document store with TTL-based expiration.

Layout:
    <root>/<data_type>/<entry_key>.json

Each document is the caller's payload plus a `cachedAt` epoch-millisecond
timestamp. Unknown fields are preserved on read. The store is best-effort:
write failures are logged and swallowed, and unreadable or malformed documents
read as absent. Expired documents are deleted lazily on read.
"""

from __future__ import annotations

import glob
import json
import logging
import os
import tempfile
import threading
import time
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

from annocache.exceptions import CacheIOError
from annocache.models import Interval
from annocache.services.keys import key_chrom, normalize_chrom, parse_cache_key

logger = logging.getLogger(__name__)

CACHED_AT_FIELD = "cachedAt"


class KeyedStore:
    """File-per-entry JSON cache, one subdirectory per data type.

    Thread-safe for concurrent readers/writers on different keys. Writes to
    the same key race with last-write-wins semantics (atomic rename).
    """

    def __init__(self, root: Path, *, clock: Callable[[], float] = time.time) -> None:
        self._root = root
        self._clock = clock
        self._dir_lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def _type_dir(self, data_type: str) -> Path:
        """Return <root>/<data_type>, creating it on first use."""
        path = self._root / data_type
        if not path.is_dir():
            with self._dir_lock:
                try:
                    path.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise CacheIOError(f"Cannot create cache dir {path}: {e}") from e
        return path

    def _path(self, data_type: str, key: str) -> Path:
        return self._type_dir(data_type) / f"{key}.json"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ── Public API ──

    def put(self, data_type: str, key: str, payload: dict) -> None:
        """Write payload + cachedAt, replacing any prior entry. Never raises."""
        try:
            path = self._path(data_type, key)
            document = {**payload, CACHED_AT_FIELD: self._now_ms()}
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            logger.debug("put: %s/%s", data_type, key)
        except (CacheIOError, OSError, TypeError, ValueError) as e:
            logger.warning("Cache write failed for %s/%s: %s", data_type, key, e)

    def get(self, data_type: str, key: str, ttl: timedelta) -> dict | None:
        """Return the payload if present and fresh, else None (stale entries are deleted)."""
        try:
            path = self._path(data_type, key)
        except CacheIOError as e:
            logger.warning("Cache read failed for %s/%s: %s", data_type, key, e)
            return None
        return self._read_fresh(path, ttl)

    def find_containing(
        self,
        data_type: str,
        chrom: str,
        interval: Interval,
        ttl: timedelta,
        *,
        suffix: str | None = None,
    ) -> tuple[Interval, dict] | None:
        """Find a fresh entry for `chrom` whose key bounds contain `interval`.

        Linear scan over the data type directory; keys are parsed back into
        (chrom, bounds, suffix) and only an identical suffix matches.
        """
        try:
            type_dir = self._type_dir(data_type)
            pattern = f"{glob.escape(key_chrom(chrom))}_*.json"
            names = sorted(p.stem for p in type_dir.glob(pattern))
        except (CacheIOError, OSError) as e:
            logger.warning("Cache scan failed for %s: %s", data_type, e)
            return None

        want_chrom = normalize_chrom(chrom)
        for name in names:
            parsed = parse_cache_key(name)
            if parsed is None:
                continue
            entry_chrom, bounds, key_suffix = parsed
            if entry_chrom != want_chrom or key_suffix != suffix:
                continue
            if not bounds.contains(interval):
                continue
            payload = self._read_fresh(type_dir / f"{name}.json", ttl)
            if payload is not None:
                logger.debug("find_containing: %s/%s covers %s", data_type, name, interval)
                return bounds, payload
        return None

    def clear(self, data_type: str) -> int:
        """Delete every entry of one data type. Returns the number of files removed."""
        type_dir = self._root / data_type
        if not type_dir.is_dir():
            return 0
        removed = 0
        for path in type_dir.glob("*.json"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Cache delete failed for %s: %s", path, e)
        logger.info("Cleared %d cached entries for %s", removed, data_type)
        return removed

    def clear_all(self) -> int:
        if not self._root.is_dir():
            return 0
        return sum(self.clear(p.name) for p in sorted(self._root.iterdir()) if p.is_dir())

    def stats(self) -> dict:
        """File count and size, total and per data type."""
        per_type: dict[str, dict[str, int]] = {}
        if self._root.is_dir():
            for type_dir in sorted(self._root.iterdir()):
                if not type_dir.is_dir():
                    continue
                files = [p for p in type_dir.glob("*.json") if p.is_file()]
                per_type[type_dir.name] = {
                    "files": len(files),
                    "bytes": sum(p.stat().st_size for p in files),
                }
        return {
            "root": str(self._root),
            "files": sum(t["files"] for t in per_type.values()),
            "bytes": sum(t["bytes"] for t in per_type.values()),
            "data_types": per_type,
        }

    # ── Internal ──

    def _read_fresh(self, path: Path, ttl: timedelta) -> dict | None:
        try:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", path, e)
            return None

        if not isinstance(document, dict):
            logger.warning("Ignoring malformed cache file %s: not an object", path)
            return None

        cached_at = document.get(CACHED_AT_FIELD)
        if not isinstance(cached_at, (int, float)) or isinstance(cached_at, bool):
            logger.warning("Ignoring cache file %s: missing %s", path, CACHED_AT_FIELD)
            return None

        age_ms = self._now_ms() - cached_at
        if age_ms > ttl.total_seconds() * 1000:
            logger.debug("Expired cache entry %s (age %.0fs)", path.name, age_ms / 1000)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Cache delete failed for %s: %s", path, e)
            return None

        return document
