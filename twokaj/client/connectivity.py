# Online/offline detection

"""
Connectivity Monitor and the "attempt sync" signal it feeds.

Platform callbacks never touch the queue or the cache: they only flip the
online flag and put a reason on the SyncSignal, which the sync engine
consumes from its own loop.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

logger = logging.getLogger(__name__)


class SyncSignal:
    """Coalescing "attempt sync" signal consumed by the sync engine."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Remember the consumer loop so other threads can notify it."""
        self._loop = loop or asyncio.get_running_loop()

    def notify(self, reason: str = "manual"):
        self._queue.put_nowait(reason)

    def notify_threadsafe(self, reason: str = "manual"):
        if self._loop is None:
            raise RuntimeError("SyncSignal is not bound to a loop")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, reason)

    def pending(self) -> bool:
        return not self._queue.empty()

    async def wait(self) -> Set[str]:
        """Block until at least one notification; return all pending reasons."""
        if self._loop is None:
            self.bind()
        reasons = {await self._queue.get()}
        while not self._queue.empty():
            reasons.add(self._queue.get_nowait())
        return reasons


class ConnectivityMonitor:
    """
    Tracks whether the device is online.

    `set_online` is the entry point for platform signals; a transition to
    online schedules a sync attempt.
    """

    def __init__(self, signal: SyncSignal, online: bool = False):
        self._signal = signal
        self._online = online
        self._listeners: List[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]):
        self._listeners.append(listener)

    def set_online(self, online: bool):
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in self._listeners:
            listener(online)
        if online:
            self._signal.notify("online")

    def set_online_threadsafe(self, loop: asyncio.AbstractEventLoop, online: bool):
        loop.call_soon_threadsafe(self.set_online, online)

    async def watch(self, check: Callable[[], Awaitable[bool]], interval: float):
        """Poll `check` forever and feed the result into set_online."""
        while True:
            self.set_online(await check())
            await asyncio.sleep(interval)

    async def tick(self, interval: float):
        """Periodic sync attempt while online."""
        while True:
            await asyncio.sleep(interval)
            if self._online:
                self._signal.notify("timer")
