from __future__ import annotations

import asyncio

from secretmangler.mangler.models import ObjectRef
from secretmangler.queue.models import QueueShutdown


class InMemoryWorkQueue:
    """Deduplicating asyncio work queue for reconcile requests.

    An identity is queued at most once while waiting and is never handed
    to two workers at the same time: adds during processing are parked
    until ``done`` is called for it.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ObjectRef | None] = asyncio.Queue()
        self._dirty: set[ObjectRef] = set()
        self._processing: set[ObjectRef] = set()
        self._requeues: dict[ObjectRef, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def add(self, ref: ObjectRef) -> bool:
        """Queue ``ref``. Returns False if it was already waiting."""
        if self._shutting_down or ref in self._dirty:
            return False
        self._dirty.add(ref)
        if ref not in self._processing:
            self._queue.put_nowait(ref)
        return True

    def add_after(self, ref: ObjectRef, delay: float) -> None:
        """Queue ``ref`` once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(ref)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def fire() -> None:
            self._timers.discard(handle)
            self.add(ref)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, ref: ObjectRef, base: float, cap: float) -> float:
        """Requeue ``ref`` with exponential backoff. Returns the delay used."""
        attempts = self._requeues.get(ref, 0)
        self._requeues[ref] = attempts + 1
        delay = min(base * (2**attempts), cap)
        self.add_after(ref, delay)
        return delay

    def num_requeues(self, ref: ObjectRef) -> int:
        return self._requeues.get(ref, 0)

    def forget(self, ref: ObjectRef) -> None:
        """Reset the backoff of ``ref``."""
        self._requeues.pop(ref, None)

    async def get(self) -> ObjectRef:
        """Wait for the next identity and mark it as processing."""
        ref = await self._queue.get()
        if ref is None:
            # Wake up the next waiting worker as well
            self._queue.put_nowait(None)
            raise QueueShutdown()
        self._dirty.discard(ref)
        self._processing.add(ref)
        return ref

    def done(self, ref: ObjectRef) -> None:
        """Finish processing ``ref``; re-queue it if it was added meanwhile."""
        self._processing.discard(ref)
        if ref in self._dirty and not self._shutting_down:
            self._queue.put_nowait(ref)

    def shutdown(self) -> None:
        """Stop handing out work and cancel pending delayed adds."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._queue.put_nowait(None)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def size(self) -> int:
        """Number of identities waiting to be processed."""
        return len(self._dirty)

    def processing(self) -> int:
        return len(self._processing)
