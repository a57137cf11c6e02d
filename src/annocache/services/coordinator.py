"""Memory → disk → network lookup orchestration.

One FetchCoordinator per process. It owns the in-memory tiers (bounded
per-data-type maps for single-shot lookups, one RangeCache per range data
type), the shared FailureLedger and the in-flight table; the KeyedStore is
passed in.

Lookup order for every entry point:
  1. failure ledger: an exhausted rounded region (or identifier) fails fast,
     silently, without I/O
  2. memory tier
  3. disk tier (TTL-checked)
  4. network via the caller's fetch_fn; success writes both tiers, failure
     bumps the ledger and is never cached

Nothing raises past this boundary: every call ends in Success, Empty or
Failure. Memory-tier locks are never held across an await; disk I/O runs in
worker threads.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, TypeVar

from annocache.adapters.base import Codec
from annocache.exceptions import NetworkError, ParseError
from annocache.models import (
    Empty,
    Failure,
    FailureKind,
    Interval,
    SampleSlice,
    Success,
)
from annocache.services.failure_ledger import FailureLedger
from annocache.services.keyed_store import KeyedStore
from annocache.services.keys import (
    cache_key,
    entity_key,
    normalize_chrom,
    region_key,
)
from annocache.services.range_cache import DEFAULT_MAX_SAMPLES, RangeCache, build_slice

logger = logging.getLogger(__name__)

T = TypeVar("T")

REGION_UNAVAILABLE = "Region unavailable"
ENTRY_UNAVAILABLE = "Entry unavailable"
CONNECTION_ERROR = "Connection error"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def widen(interval: Interval, buffer: int, max_span: int | None = None) -> Interval:
    """Grow a request by a buffer on both sides, capped at max_span from its start.

    The buffer never exceeds the request length: 100-200 with buffer 10_000
    fetches 1-300. Coordinates stay 1-based.
    """
    pad = min(buffer, interval.length)
    start = max(1, interval.start - pad)
    end = interval.end + pad
    if max_span is not None:
        end = min(end, interval.start + max_span)
    return Interval(start, max(end, interval.end))


def _samples_to_document(interval: Interval, samples: dict[int, float]) -> dict:
    return {
        "start": interval.start,
        "end": interval.end,
        "data": [{"pos": pos, "value": samples[pos]} for pos in sorted(samples)],
    }


def _samples_from_document(document: dict) -> tuple[Interval, dict[int, float]]:
    interval = Interval(int(document["start"]), int(document["end"]))
    samples: dict[int, float] = {}
    for point in document.get("data") or []:
        samples[int(point["pos"])] = float(point["value"])
    return interval, samples


class FetchCoordinator:
    """Cache-before-network lookups with per-region retry budgets."""

    def __init__(
        self,
        store: KeyedStore,
        ledger: FailureLedger,
        *,
        ttl: timedelta = timedelta(days=7),
        failure_grid: int = 10_000,
        memory_entries: int = 100,
        range_max_samples: int = DEFAULT_MAX_SAMPLES,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._ttl = ttl
        self._failure_grid = failure_grid
        self._memory_entries = memory_entries
        self._range_max_samples = range_max_samples

        self._memory: dict[str, OrderedDict[str, Any]] = {}
        self._ranges: dict[str, RangeCache] = {}
        self._lock = threading.Lock()
        self._inflight: dict[tuple[asyncio.AbstractEventLoop, str], asyncio.Task] = {}

    @property
    def store(self) -> KeyedStore:
        return self._store

    @property
    def ledger(self) -> FailureLedger:
        return self._ledger

    # ── Public API ──

    async def fetch(
        self,
        codec: Codec[T],
        chrom: str,
        interval: Interval,
        fetch_fn: Callable[[], Awaitable[T]],
        *,
        variant: str | None = None,
        force_refresh: bool = False,
    ) -> Success[T] | Empty | Failure:
        """Single-shot region lookup keyed by (chrom, interval, variant)."""
        entry_key = cache_key(chrom, interval.start, interval.end, variant)
        ledger_key = region_key(codec.data_type, chrom, interval, self._failure_grid)
        return await self._single_shot(
            codec, entry_key, ledger_key, fetch_fn, force_refresh, REGION_UNAVAILABLE
        )

    async def fetch_entity(
        self,
        codec: Codec[T],
        identifier: str,
        fetch_fn: Callable[[], Awaitable[T]],
        *,
        force_refresh: bool = False,
    ) -> Success[T] | Empty | Failure:
        """Identifier-keyed lookup (accession, gene). Retry budget is per identifier."""
        entry_key = _UNSAFE_KEY_CHARS.sub("_", identifier)
        ledger_key = entity_key(codec.data_type, identifier)
        return await self._single_shot(
            codec, entry_key, ledger_key, fetch_fn, force_refresh, ENTRY_UNAVAILABLE
        )

    async def fetch_range(
        self,
        data_type: str,
        chrom: str,
        interval: Interval,
        fetch_fn: Callable[[Interval], Awaitable[dict[int, float]]],
        *,
        variant: str | None = None,
        buffer: int = 0,
        max_span: int | None = None,
        force_refresh: bool = False,
    ) -> Success[SampleSlice] | Empty | Failure:
        """Range-mergeable lookup answered from a RangeCache partition.

        fetch_fn receives the widened interval actually requested upstream and
        returns position → value samples. Both tiers are written under the
        widened interval; the answer is re-derived for the original request.
        """
        partition = normalize_chrom(chrom)
        ledger_key = region_key(data_type, chrom, interval, self._failure_grid)
        if self._ledger.is_exhausted(ledger_key):
            return Failure(FailureKind.UNAVAILABLE, REGION_UNAVAILABLE)

        cache = self._range_cache(data_type)
        if not force_refresh:
            sl = cache.query(partition, interval.start, interval.end)
            if sl is not None:
                return self._wrap_slice(sl, from_cache=True)

            found = await asyncio.to_thread(
                self._load_range_document, data_type, partition, interval, variant
            )
            if found is not None:
                bounds, samples = found
                cache.insert(partition, bounds.start, bounds.end, samples)
                logger.debug("%s: loaded %s %s from disk", data_type, partition, bounds)
                sl = cache.query(partition, interval.start, interval.end)
                if sl is None:
                    sl = build_slice(samples, interval.start, interval.end)
                return self._wrap_slice(sl, from_cache=True)

        fetch_interval = widen(interval, buffer, max_span)
        entry_key = cache_key(partition, fetch_interval.start, fetch_interval.end, variant)

        async def load() -> dict[int, float] | Failure:
            try:
                samples = await fetch_fn(fetch_interval)
            except Exception as e:
                return self._record_failure(data_type, ledger_key, e)
            self._ledger.record_success(ledger_key)
            cache.insert(partition, fetch_interval.start, fetch_interval.end, samples)
            await asyncio.to_thread(
                self._store.put,
                data_type,
                entry_key,
                _samples_to_document(fetch_interval, samples),
            )
            return samples

        outcome = await self._single_flight(f"{data_type}/{entry_key}", load)
        if isinstance(outcome, Failure):
            return outcome
        sl = cache.query(partition, interval.start, interval.end)
        if sl is None:
            # Evicted by a concurrent insert between store and re-read
            sl = build_slice(outcome, interval.start, interval.end)
        return self._wrap_slice(sl, from_cache=False)

    def clear(self, data_type: str) -> int:
        """Drop both tiers for one data type. Returns the number of disk entries removed."""
        with self._lock:
            self._memory.pop(data_type, None)
            cache = self._ranges.get(data_type)
        if cache is not None:
            cache.clear()
        return self._store.clear(data_type)

    def clear_memory(self) -> None:
        with self._lock:
            self._memory.clear()
            caches = list(self._ranges.values())
        for cache in caches:
            cache.clear()

    def memory_stats(self) -> dict:
        with self._lock:
            entries = {name: len(m) for name, m in self._memory.items()}
            ranges = dict(self._ranges)
        return {
            "entries": entries,
            "ranges": {
                name: {p: cache.sample_count(p) for p in cache.partitions()}
                for name, cache in ranges.items()
            },
            "exhausted": self._ledger.exhausted_keys(),
        }

    # ── Internal: single-shot ──

    async def _single_shot(
        self,
        codec: Codec[T],
        entry_key: str,
        ledger_key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        force_refresh: bool,
        unavailable_reason: str,
    ) -> Success[T] | Empty | Failure:
        data_type = codec.data_type
        if self._ledger.is_exhausted(ledger_key):
            return Failure(FailureKind.UNAVAILABLE, unavailable_reason)

        if not force_refresh:
            found, value = self._memory_get(data_type, entry_key)
            if found:
                return self._wrap(codec, value, from_cache=True)

            document = await asyncio.to_thread(self._store.get, data_type, entry_key, self._ttl)
            if document is not None:
                try:
                    value = codec.from_document(document)
                except (ParseError, KeyError, TypeError, ValueError) as e:
                    logger.warning("Ignoring malformed %s cache entry %s: %s", data_type, entry_key, e)
                else:
                    self._memory_put(data_type, entry_key, value)
                    logger.debug("%s: loaded %s from disk", data_type, entry_key)
                    return self._wrap(codec, value, from_cache=True)

        async def load() -> Success[T] | Empty | Failure:
            try:
                value = await fetch_fn()
            except Exception as e:
                return self._record_failure(data_type, ledger_key, e)
            self._ledger.record_success(ledger_key)
            self._memory_put(data_type, entry_key, value)
            try:
                document = codec.to_document(value)
            except (TypeError, ValueError) as e:
                logger.warning("Cannot serialize %s entry %s: %s", data_type, entry_key, e)
            else:
                await asyncio.to_thread(self._store.put, data_type, entry_key, document)
            return self._wrap(codec, value, from_cache=False)

        return await self._single_flight(f"{data_type}/{entry_key}", load)

    def _memory_get(self, data_type: str, key: str) -> tuple[bool, Any]:
        with self._lock:
            entries = self._memory.get(data_type)
            if entries is None or key not in entries:
                return False, None
            entries.move_to_end(key)
            return True, entries[key]

    def _memory_put(self, data_type: str, key: str, value: Any) -> None:
        with self._lock:
            entries = self._memory.setdefault(data_type, OrderedDict())
            entries[key] = value
            entries.move_to_end(key)
            while len(entries) > self._memory_entries:
                entries.popitem(last=False)

    @staticmethod
    def _wrap(codec: Codec[T], value: T, *, from_cache: bool) -> Success[T] | Empty:
        if codec.is_empty(value):
            return Empty(from_cache=from_cache)
        return Success(value, from_cache=from_cache)

    # ── Internal: ranges ──

    def _range_cache(self, data_type: str) -> RangeCache:
        with self._lock:
            cache = self._ranges.get(data_type)
            if cache is None:
                cache = RangeCache(max_samples=self._range_max_samples)
                self._ranges[data_type] = cache
            return cache

    def _load_range_document(
        self, data_type: str, chrom: str, interval: Interval, variant: str | None
    ) -> tuple[Interval, dict[int, float]] | None:
        """Exact key first, then any fresh entry whose bounds contain the interval."""
        documents = []
        exact = self._store.get(
            data_type, cache_key(chrom, interval.start, interval.end, variant), self._ttl
        )
        if exact is not None:
            documents.append(exact)
        else:
            found = self._store.find_containing(data_type, chrom, interval, self._ttl, suffix=variant)
            if found is not None:
                documents.append(found[1])

        for document in documents:
            try:
                return _samples_from_document(document)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Ignoring malformed %s range entry: %s", data_type, e)
        return None

    @staticmethod
    def _wrap_slice(sl: SampleSlice, *, from_cache: bool) -> Success[SampleSlice] | Empty:
        if not sl.has_data:
            return Empty(from_cache=from_cache)
        return Success(sl, from_cache=from_cache)

    # ── Internal: failures, single-flight ──

    def _record_failure(self, data_type: str, ledger_key: str, error: Exception) -> Failure:
        count = self._ledger.record_failure(ledger_key)
        if isinstance(error, NetworkError):
            failure = Failure(error.kind, error.reason)
        elif isinstance(error, ParseError):
            failure = Failure(FailureKind.MALFORMED_RESPONSE, error.reason)
        else:
            failure = Failure(FailureKind.REMOTE_ERROR, CONNECTION_ERROR)
        logger.warning(
            "%s fetch failed for %s (%d/%d): %s",
            data_type,
            ledger_key,
            count,
            self._ledger.max_failures,
            error,
        )
        return failure

    async def _single_flight(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Share one in-progress load between concurrent callers of the same key."""
        loop = asyncio.get_running_loop()
        slot = (loop, key)
        task = self._inflight.get(slot)
        if task is None:
            task = loop.create_task(factory())
            self._inflight[slot] = task

            def _release(done: asyncio.Task, slot=slot) -> None:
                if self._inflight.get(slot) is done:
                    del self._inflight[slot]

            task.add_done_callback(_release)
        else:
            logger.debug("Joining in-flight fetch %s", key)
        # A cancelled caller must not cancel the shared load
        return await asyncio.shield(task)
