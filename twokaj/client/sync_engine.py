# Queue draining

"""
Sync Engine: delivers the operation queue to /sync-batch, one operation per
request, strictly in enqueue order.

A later operation may depend on an earlier one (a message about a listing
created in the same offline session), so the first transient failure ends the
cycle. Permanent failures are dead-lettered and reported through listeners;
the cycle then moves on.
"""
import asyncio
import logging
import random
from datetime import timedelta
from typing import Callable, List, Optional

from twokaj.client.local_store import LocalStore
from twokaj.client.operations import DeadLetter, Operation, utcnow
from twokaj.core.errors import PermanentSyncError, StorageError, TransientSyncError, TwokajError

logger = logging.getLogger(__name__)

RETRY_LIMIT_REASON = "retry limit exceeded"


class SyncReport:
    """Outcome of one drain cycle."""

    def __init__(self):
        self.delivered: List[str] = []
        self.dead_lettered: List[DeadLetter] = []
        self.stopped: Optional[str] = None  # offline | backoff | transient | storage | busy
        self.error: Optional[str] = None
        self.remaining = 0

    @property
    def completed(self) -> bool:
        return self.stopped is None

    def __repr__(self):
        return (f"SyncReport(delivered={len(self.delivered)}, dead={len(self.dead_lettered)}, "
                f"stopped={self.stopped!r}, remaining={self.remaining})")


class SyncEngine:
    def __init__(self, store: LocalStore, api, monitor=None,
                 backoff_base: float = 2.0, backoff_max: float = 300.0,
                 max_attempts: int = 8, clock: Callable = utcnow):
        self.store = store
        self.api = api
        self.monitor = monitor
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.max_attempts = max_attempts
        self._clock = clock
        self._lock = asyncio.Lock()
        self._failure_listeners: List[Callable[[DeadLetter], None]] = []

    @classmethod
    def from_settings(cls, store: LocalStore, api, settings, monitor=None) -> "SyncEngine":
        return cls(
            store, api, monitor=monitor,
            backoff_base=settings.BACKOFF_BASE_SECONDS,
            backoff_max=settings.BACKOFF_MAX_SECONDS,
            max_attempts=settings.MAX_ATTEMPTS,
        )

    def close(self):
        self.store.close()

    def on_permanent_failure(self, listener: Callable[[DeadLetter], None]):
        """Called with each dead-lettered operation."""
        self._failure_listeners.append(listener)

    def backoff_delay(self, attempts: int) -> float:
        """Exponential backoff with up to 10% jitter, capped at backoff_max."""
        delay = self.backoff_base * (2 ** max(attempts - 1, 0))
        delay *= 1 + random.uniform(0, 0.1)
        return min(delay, self.backoff_max)

    def next_attempt_delay(self) -> Optional[float]:
        """Seconds until the head of the queue may be sent; None when the queue is empty."""
        queue = self.store.list_queue()
        if not queue:
            return None
        head = queue[0]
        if head.next_attempt_at is None:
            return 0.0
        return max((head.next_attempt_at - self._clock()).total_seconds(), 0.0)

    async def drain(self) -> SyncReport:
        """Run one sync cycle. A cycle already in progress absorbs this call."""
        if self._lock.locked():
            report = SyncReport()
            report.stopped = "busy"
            return report
        async with self._lock:
            report = await self._drain()
        logger.info("Sync cycle finished: %r", report)
        return report

    async def _drain(self) -> SyncReport:
        report = SyncReport()
        try:
            queue = self.store.list_queue()
        except StorageError as e:
            report.stopped, report.error = "storage", str(e)
            return report

        for operation in queue:
            if self.monitor is not None and not self.monitor.is_online:
                report.stopped = "offline"
                break
            if operation.next_attempt_at and operation.next_attempt_at > self._clock():
                report.stopped = "backoff"
                break

            try:
                advance = await self._deliver(operation, report)
            except StorageError as e:
                logger.error("Storage failure while syncing %s: %s", operation.id, e)
                report.stopped, report.error = "storage", str(e)
                break
            if not advance:
                break

        try:
            report.remaining = len(self.store.list_queue())
        except StorageError as e:
            report.error = str(e)
        return report

    async def _deliver(self, operation: Operation, report: SyncReport) -> bool:
        """Submit one operation. Returns False when the cycle must stop."""
        try:
            result = await self.api.sync_batch(operation.to_batch())
        except TransientSyncError as e:
            return self._retry_later(operation, str(e), report)
        except PermanentSyncError as e:
            self._dead_letter(operation, str(e), report)
            return True

        if operation.entity_id in result.get("applied", {}).get(operation.group, []):
            self.store.dequeue(operation.id)
            self._apply_authoritative(operation, result)
            report.delivered.append(operation.id)
            return True

        failure = next(
            (f for f in result.get("failed", [])
             if f.get("id") == operation.entity_id and f.get("group") == operation.group),
            None,
        )
        if failure is not None and not failure.get("retryable", False):
            self._dead_letter(operation, failure.get("error", "rejected"), report)
            return True

        reason = failure.get("error") if failure else "not acknowledged"
        return self._retry_later(operation, reason, report)

    def _retry_later(self, operation: Operation, error: str, report: SyncReport) -> bool:
        attempts = operation.attempt_count + 1
        next_attempt_at = self._clock() + timedelta(seconds=self.backoff_delay(attempts))
        attempts = self.store.record_failure(operation.id, error, next_attempt_at)
        logger.warning(
            "Sync of %s %s failed (attempt %d): %s",
            operation.kind.value, operation.entity_id, attempts, error,
        )
        if attempts >= self.max_attempts:
            self._dead_letter(operation, f"{RETRY_LIMIT_REASON}: {error}", report)
        report.stopped, report.error = "transient", error
        return False

    def _dead_letter(self, operation: Operation, reason: str, report: SyncReport):
        letter = self.store.dead_letter(operation.id, reason)
        if letter is None:
            return
        report.dead_lettered.append(letter)
        for listener in self._failure_listeners:
            try:
                listener(letter)
            except Exception:
                logger.exception("Permanent-failure listener raised")

    def _apply_authoritative(self, operation: Operation, result: dict):
        """Replace the optimistic cache entry with the server's copy if it differs."""
        for entity in result.get("entities", {}).get(operation.group, []):
            if entity.get("id") != operation.entity_id:
                continue
            local = self.store.get(operation.collection, operation.entity_id) or {}
            merged = {**local, **entity}
            if merged != local:
                self.store.put(operation.collection, merged)

    async def run(self, signal, refresher=None):
        """
        Consume sync signals forever: drain, then refresh read-only views.
        """
        while True:
            reasons = await signal.wait()
            if self.monitor is not None and not self.monitor.is_online:
                continue
            logger.debug("Sync triggered by %s", sorted(reasons))
            try:
                await self.drain()
                if refresher is not None:
                    await refresher.refresh_all()
            except TwokajError as e:
                logger.error("Sync cycle aborted: %s", e)
