# Background sync trigger

"""
Background Trigger: a separate execution context (its own thread and event
loop) that wakes up when connectivity returns, even if no foreground instance
is running a sync loop.

It talks to open instances only through SyncChannel, which carries a single
message kind, SYNC_REQUIRED, with no payload.
"""
import asyncio
import logging
import threading
from typing import Callable, List, Optional, Set, Tuple

from twokaj.core.errors import TwokajError

logger = logging.getLogger(__name__)

SYNC_REQUIRED = "SYNC_REQUIRED"
DEFAULT_TAG = "sync-twokaj"


class SyncChannel:
    """Broadcast channel from the background context to open instances."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []

    def subscribe(self) -> asyncio.Queue:
        """Register the running loop; must be called from inside it."""
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._subscribers.append((asyncio.get_running_loop(), queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        with self._lock:
            self._subscribers = [(l, q) for l, q in self._subscribers if q is not queue]

    def broadcast(self) -> int:
        """Send SYNC_REQUIRED to every subscriber; returns how many got it."""
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for loop, queue in subscribers:
            if loop.is_closed():
                self.unsubscribe(queue)
                continue
            loop.call_soon_threadsafe(queue.put_nowait, SYNC_REQUIRED)
            delivered += 1
        return delivered

    async def listen(self, signal):
        """Forward every SYNC_REQUIRED to a foreground SyncSignal."""
        queue = self.subscribe()
        try:
            while True:
                message = await queue.get()
                if message == SYNC_REQUIRED:
                    signal.notify("background")
        finally:
            self.unsubscribe(queue)


class BackgroundTrigger:
    """
    Deferred sync registration that outlives the foreground loop.

    Args:
        channel: where SYNC_REQUIRED is broadcast
        api_factory: builds an ApiClient inside the background loop
        engine_factory: optional, builds a SyncEngine from that ApiClient so
            the background context can drain the queue itself
        check_interval: seconds between connectivity checks while pending
    """

    def __init__(self, channel: SyncChannel, api_factory: Callable,
                 engine_factory: Optional[Callable] = None, check_interval: float = 15.0):
        self.channel = channel
        self._api_factory = api_factory
        self._engine_factory = engine_factory
        self._check_interval = check_interval

        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake: Optional[asyncio.Event] = None
        self._stopping = False
        self._pending: Set[str] = set()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._ready.clear()
        self._stopping = False
        self._thread = threading.Thread(target=self._run, name="twokaj-background-sync", daemon=True)
        self._thread.start()
        self._ready.wait(timeout=5)

    def stop(self, timeout: float = 5.0):
        if not self.running:
            return
        self._loop.call_soon_threadsafe(self._request_stop)
        self._thread.join(timeout)

    def register(self, tag: str = DEFAULT_TAG) -> bool:
        """
        Ask for a sync once the network is back.

        Best effort: returns False when the background context is not running.
        """
        if not self.running or self._loop is None:
            logger.debug("Background sync registration declined: trigger not running")
            return False
        self._loop.call_soon_threadsafe(self._add_pending, tag)
        return True

    # -- inside the background loop -------------------------------------

    def _add_pending(self, tag: str):
        self._pending.add(tag)
        self._wake.set()

    def _request_stop(self):
        self._stopping = True
        self._wake.set()

    def _run(self):
        asyncio.run(self._main())

    async def _sleep(self, timeout: Optional[float]):
        try:
            await asyncio.wait_for(self._wake.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def _main(self):
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._ready.set()

        api = self._api_factory()
        engine = self._engine_factory(api) if self._engine_factory else None
        try:
            while not self._stopping:
                if not self._pending:
                    await self._sleep(None)
                    continue
                if not await api.ping():
                    await self._sleep(self._check_interval)
                    continue
                await self._fire(engine)
        finally:
            await api.aclose()
            if engine is not None:
                engine.close()

    async def _fire(self, engine):
        tags = set(self._pending)
        self._pending.clear()
        self.runs += 1

        retry_in = self._check_interval
        if engine is not None:
            try:
                report = await engine.drain()
                if report.stopped not in (None, "busy"):
                    # work is left over; stay registered until the queue is empty
                    self._pending |= tags
                    if report.stopped == "backoff":
                        retry_in = engine.next_attempt_delay() or 0.0
            except TwokajError as e:
                logger.error("Background sync failed: %s", e)
                self._pending |= tags
                await self._sleep(self._check_interval)
                return

        delivered = self.channel.broadcast()
        logger.info("Background sync for %s; notified %d instance(s)", sorted(tags), delivered)
        if self._pending:
            await self._sleep(retry_in)
