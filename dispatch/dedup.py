"""
In-memory duplicate suppression.

CRM webhooks are delivered at-least-once; retries carry the same
correlation id. Keys live for a short TTL and are purged by a daemon sweeper.
Nothing is persisted: a restart forgets every key.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DedupKey = Tuple[str, str, str]


class Deduplicator:
    def __init__(
        self,
        ttl_seconds: float = 60.0,
        sweep_interval_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._seen: Dict[DedupKey, float] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    @staticmethod
    def _key(correlation_id: Optional[str], entity_id: Optional[str], event_type: str) -> Optional[DedupKey]:
        if not correlation_id or not entity_id:
            return None
        return (str(correlation_id), str(entity_id), event_type)

    def _is_fresh(self, key: DedupKey, now: float) -> bool:
        seen_at = self._seen.get(key)
        return seen_at is not None and now - seen_at < self.ttl_seconds

    def should_process(self, correlation_id: Optional[str], entity_id: Optional[str], event_type: str) -> bool:
        """False when the same key was marked within the TTL."""
        key = self._key(correlation_id, entity_id, event_type)
        if key is None:
            return True
        with self._lock:
            return not self._is_fresh(key, self._clock())

    def mark_processed(self, correlation_id: Optional[str], entity_id: Optional[str], event_type: str) -> None:
        key = self._key(correlation_id, entity_id, event_type)
        if key is None:
            return
        with self._lock:
            self._seen[key] = self._clock()

    def check_and_mark(self, correlation_id: Optional[str], entity_id: Optional[str], event_type: str) -> bool:
        """
        Atomic should_process + mark_processed.

        Returns True exactly once per key per TTL window, even when two
        workers threads race on the same delivery.
        """
        key = self._key(correlation_id, entity_id, event_type)
        if key is None:
            return True
        with self._lock:
            now = self._clock()
            if self._is_fresh(key, now):
                return False
            self._seen[key] = now
            return True

    def forget(self, correlation_id: Optional[str], entity_id: Optional[str], event_type: str) -> None:
        """Release a key so a retry of a failed dispatch is not suppressed."""
        key = self._key(correlation_id, entity_id, event_type)
        if key is None:
            return
        with self._lock:
            self._seen.pop(key, None)

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, seen_at in self._seen.items() if now - seen_at >= self.ttl_seconds]
            for key in expired:
                del self._seen[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired dedup keys")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_seconds):
            try:
                self.purge_expired()
            except Exception as e:
                logger.error(f"Dedup sweep failed: {e}", exc_info=True)

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="dedup-sweeper", daemon=True)
        self._sweeper.start()
        logger.info(f"Dedup sweeper started (ttl={self.ttl_seconds}s, interval={self.sweep_interval_seconds}s)")

    def stop_sweeper(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=timeout)
            self._sweeper = None
