"""Per-region consecutive failure tracking.

Many nearby queries into one broken upstream region share a single counter
(keys are built from rounded regions, see keys.region_key). Once a key reaches
the cap it stays exhausted for the rest of the process: there is no TTL, so a
failing upstream region is not hammered for the session. A success resets the
count. The ledger is never persisted.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class FailureLedger:
    """In-memory key → consecutive failure count."""

    def __init__(self, *, max_failures: int = 2) -> None:
        self._max_failures = max_failures
        self._counts: dict[str, int] = {}
        self._lock = threading.RLock()

    @property
    def max_failures(self) -> int:
        return self._max_failures

    def record_failure(self, key: str) -> int:
        """Increment the counter for key. Returns the new count."""
        with self._lock:
            count = self._counts.get(key, 0) + 1
            self._counts[key] = count
        if count == self._max_failures:
            logger.warning("Giving up on %s after %d consecutive failures", key, count)
        else:
            logger.debug("record_failure: %s count=%d", key, count)
        return count

    def record_success(self, key: str) -> None:
        """Clear the counter for a key that succeeded."""
        with self._lock:
            if self._counts.pop(key, None) is not None:
                logger.debug("record_success: %s cleared", key)

    def count(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def is_exhausted(self, key: str) -> bool:
        with self._lock:
            return self._counts.get(key, 0) >= self._max_failures

    def exhausted_keys(self) -> list[str]:
        with self._lock:
            return sorted(k for k, c in self._counts.items() if c >= self._max_failures)

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
