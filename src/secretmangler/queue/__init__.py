"""
Work queue for reconcile requests.

The controller depends on WorkQueue; InMemoryWorkQueue is the asyncio
implementation used in-process.
"""

from __future__ import annotations

from typing import Protocol

from secretmangler.mangler.models import ObjectRef
from secretmangler.queue.memory import InMemoryWorkQueue
from secretmangler.queue.models import QueueShutdown


class WorkQueue(Protocol):
    def add(self, ref: ObjectRef) -> bool: ...

    def add_after(self, ref: ObjectRef, delay: float) -> None: ...

    def add_rate_limited(self, ref: ObjectRef, base: float, cap: float) -> float: ...

    def num_requeues(self, ref: ObjectRef) -> int: ...

    def forget(self, ref: ObjectRef) -> None: ...

    async def get(self) -> ObjectRef: ...

    def done(self, ref: ObjectRef) -> None: ...

    def shutdown(self) -> None: ...

    @property
    def shutting_down(self) -> bool: ...

    def size(self) -> int: ...


__all__ = ["InMemoryWorkQueue", "QueueShutdown", "WorkQueue"]
