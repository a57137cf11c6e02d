"""In-memory range-merging sample cache.

One RangeCache per data type; inside it, one partition per partition key
(chromosome). A partition holds:

  - samples: position → value, only for positions inside a covered interval
  - covered: sorted, non-overlapping, non-adjacent [start, end) intervals

A query is answered only when it lies wholly inside one covered interval.
Partial answers are never returned: a slice with silent gaps would render as
"no data" where data simply was not fetched yet.
"""

from __future__ import annotations

import logging
import threading
from bisect import bisect_right
from collections.abc import Mapping

from annocache.models import SampleSlice

logger = logging.getLogger(__name__)

DEFAULT_MAX_SAMPLES = 500_000


def build_slice(samples: Mapping[int, float], start: int, end: int) -> SampleSlice:
    """Dense [start, end) view over a sparse position → value mapping."""
    scores = [0.0] * (end - start)
    present = [False] * (end - start)
    low = high = None
    for pos in range(start, end):
        value = samples.get(pos)
        if value is None:
            continue
        i = pos - start
        scores[i] = value
        present[i] = True
        low = value if low is None else min(low, value)
        high = value if high is None else max(high, value)
    return SampleSlice(
        start=start,
        end=end,
        scores=scores,
        present=present,
        min_score=low if low is not None else 0.0,
        max_score=high if high is not None else 0.0,
    )


class _Partition:
    __slots__ = ("lock", "samples", "starts", "ends")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.samples: dict[int, float] = {}
        # Parallel sorted lists: covered[i] = [starts[i], ends[i])
        self.starts: list[int] = []
        self.ends: list[int] = []

    def covering(self, start: int, end: int) -> int | None:
        """Index of the covered interval containing [start, end), if any."""
        i = bisect_right(self.starts, start) - 1
        if i >= 0 and self.ends[i] >= end:
            return i
        return None

    def merge(self, start: int, end: int) -> None:
        """Merge [start, end) into the covered set, absorbing touching neighbours."""
        i = bisect_right(self.starts, start) - 1
        if i >= 0 and self.ends[i] >= start - 1:
            start = self.starts[i]
            end = max(end, self.ends[i])
            del self.starts[i]
            del self.ends[i]
        else:
            i += 1

        while i < len(self.starts) and self.starts[i] <= end + 1:
            end = max(end, self.ends[i])
            del self.starts[i]
            del self.ends[i]

        self.starts.insert(i, start)
        self.ends.insert(i, end)

    def evict_lower_half(self) -> int:
        positions = sorted(self.samples)
        drop = positions[: len(positions) // 2]
        for pos in drop:
            del self.samples[pos]
        self.starts.clear()
        self.ends.clear()
        return len(drop)


class RangeCache:
    """Per-partition covered ranges + samples with containment queries."""

    def __init__(self, *, max_samples: int = DEFAULT_MAX_SAMPLES) -> None:
        self._max_samples = max_samples
        self._partitions: dict[str, _Partition] = {}
        self._lock = threading.Lock()

    def _partition(self, key: str) -> _Partition:
        with self._lock:
            part = self._partitions.get(key)
            if part is None:
                part = _Partition()
                self._partitions[key] = part
            return part

    def query(self, partition: str, start: int, end: int) -> SampleSlice | None:
        """Return the slice for [start, end) or None unless wholly covered."""
        if start >= end:
            return None
        with self._lock:
            part = self._partitions.get(partition)
        if part is None:
            return None

        with part.lock:
            if part.covering(start, end) is None:
                return None
            return build_slice(part.samples, start, end)

    def insert(self, partition: str, start: int, end: int, samples: dict[int, float]) -> None:
        """Add samples for [start, end) and merge the interval into the covered set.

        Samples outside [start, end) are ignored. Only positions not already
        cached count toward max_samples. When the partition would exceed it, the
        lowest-numbered half of its samples is evicted, the covered set is reset
        to the new interval, and surviving samples outside that interval are
        dropped as well.
        """
        if start >= end:
            return
        part = self._partition(partition)
        inside = {pos: value for pos, value in samples.items() if start <= pos < end}

        with part.lock:
            added = len(inside.keys() - part.samples.keys())
            if len(part.samples) + added > self._max_samples:
                dropped = part.evict_lower_half()
                # Survivors are only kept where the new interval re-covers them.
                for pos in [p for p in part.samples if not start <= p < end]:
                    del part.samples[pos]
                logger.info(
                    "Range cache %s over %d samples: evicted %d, covered ranges reset",
                    partition,
                    self._max_samples,
                    dropped,
                )
            part.samples.update(inside)
            part.merge(start, end)

    def covered(self, partition: str) -> list[tuple[int, int]]:
        with self._lock:
            part = self._partitions.get(partition)
        if part is None:
            return []
        with part.lock:
            return list(zip(part.starts, part.ends))

    def sample_count(self, partition: str) -> int:
        with self._lock:
            part = self._partitions.get(partition)
        if part is None:
            return 0
        with part.lock:
            return len(part.samples)

    def partitions(self) -> list[str]:
        with self._lock:
            return sorted(self._partitions)

    def clear(self) -> None:
        with self._lock:
            self._partitions.clear()
