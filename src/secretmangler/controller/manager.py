"""
SecretMangler controller.

Wires the store's watches to the work queue and runs the workers that
invoke the reconciler:

- SecretMangler events enqueue the changed object
- Secret events enqueue the controlling SecretMangler (owner reference)
  and every SecretMangler whose mappings reference the secret
- an optional periodic resync enqueues every SecretMangler

Store failures are retried with exponential backoff; configuration errors
are logged and dropped until the template changes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from typing import Any

import structlog

from secretmangler.config.settings import Settings
from secretmangler.core.errors import StoreError
from secretmangler.logging import bind_context
from secretmangler.mangler.indexer import ReferenceIndex, affected_templates
from secretmangler.mangler.models import ObjectRef, Secret, SecretMangler
from secretmangler.mangler.reconciler import ReconcileResult, SecretManglerReconciler
from secretmangler.queue import InMemoryWorkQueue, WorkQueue
from secretmangler.queue.models import QueueShutdown
from secretmangler.store.base import EventType, SecretStore, WatchEvent

logger = structlog.get_logger()


class SecretManglerController:
    """Event-driven driver around SecretManglerReconciler."""

    def __init__(
        self,
        store: SecretStore,
        settings: Settings,
        queue: WorkQueue | None = None,
        reconciler: SecretManglerReconciler | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.queue: WorkQueue = queue or InMemoryWorkQueue()
        self.reconciler = reconciler or SecretManglerReconciler(store)
        self.index: ReferenceIndex | None = ReferenceIndex() if settings.use_reference_index else None
        self._tasks: list[asyncio.Task[Any]] = []

    # Event mapping

    async def sync_all(self) -> int:
        """List every SecretMangler, refresh the index and enqueue them all."""
        manglers = await self.store.list_manglers(self.settings.namespace)
        if self.index is not None:
            self.index.rebuild(manglers)
        for mangler in manglers:
            self.queue.add(mangler.ref)
        logger.info("secretmanglers_synced", count=len(manglers))
        return len(manglers)

    def handle_mangler_event(self, event: WatchEvent[SecretMangler]) -> None:
        if event.type is EventType.DELETED:
            if self.index is not None:
                self.index.remove(event.ref)
            # The owned secret is garbage collected through its owner reference
            logger.info("secretmangler_deleted", mangler=str(event.ref))
            return

        if self.index is not None:
            self.index.upsert(event.obj)
        self.queue.add(event.ref)

    async def affected_by(self, secret: ObjectRef) -> set[ObjectRef]:
        """SecretManglers whose mappings reference ``secret``."""
        if self.index is not None:
            return self.index.lookup(secret)
        manglers = await self.store.list_manglers(self.settings.namespace)
        return affected_templates(secret, manglers)

    async def handle_secret_event(self, event: WatchEvent[Secret]) -> set[ObjectRef]:
        requests = await self.affected_by(event.ref)

        owner = event.obj.controller_owner
        if (
            owner is not None
            and owner.kind == self.settings.crd_kind
            and owner.api_version == self.settings.api_version
        ):
            requests.add(ObjectRef(event.ref.namespace, owner.name))

        if requests:
            logger.info(
                "secret_changed",
                secret=str(event.ref),
                event=event.type.value,
                requests=sorted(str(ref) for ref in requests),
            )
        for ref in requests:
            self.queue.add(ref)
        return requests

    # Workers

    async def process(self, ref: ObjectRef) -> ReconcileResult | None:
        """Reconcile one SecretMangler and schedule a retry on store failures."""
        try:
            result = await self.reconciler.reconcile(ref)
        except StoreError as e:
            delay = self.queue.add_rate_limited(
                ref, self.settings.retry_backoff_base, self.settings.retry_backoff_max
            )
            logger.warning(
                "reconcile_requeued",
                mangler=str(ref),
                error=e.message,
                retry_in=delay,
                attempts=self.queue.num_requeues(ref),
                **e.details,
            )
            return None
        except Exception:
            delay = self.queue.add_rate_limited(
                ref, self.settings.retry_backoff_base, self.settings.retry_backoff_max
            )
            logger.exception("reconcile_crashed", mangler=str(ref), retry_in=delay)
            return None

        self.queue.forget(ref)
        logger.info(
            "reconcile_finished",
            mangler=str(ref),
            outcome=result.outcome,
            label=result.label,
        )
        return result

    async def _worker(self, worker_id: int) -> None:
        log = bind_context(worker=worker_id)
        log.debug("worker_started")
        while True:
            try:
                ref = await self.queue.get()
            except QueueShutdown:
                log.debug("worker_stopped")
                return
            try:
                await self.process(ref)
            finally:
                self.queue.done(ref)

    # Watches

    async def _watch_loop(
        self,
        kind: str,
        stream: Callable[[], AsyncIterator[WatchEvent[Any]]],
        handler: Callable[[WatchEvent[Any]], Awaitable[Any]],
        before_watch: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        while not self.queue.shutting_down:
            try:
                if before_watch is not None:
                    await before_watch()
                logger.debug("watch_started", kind=kind)
                async with aclosing(stream()) as events:
                    async for event in events:
                        await handler(event)
                logger.debug("watch_expired", kind=kind)
            except StoreError as e:
                logger.warning("watch_failed", kind=kind, error=e.message)
                await asyncio.sleep(self.settings.watch_retry_delay)

    async def _on_mangler_event(self, event: WatchEvent[SecretMangler]) -> None:
        self.handle_mangler_event(event)

    async def _resync_loop(self) -> None:
        while not self.queue.shutting_down:
            await asyncio.sleep(self.settings.resync_interval)
            try:
                await self.sync_all()
            except StoreError as e:
                logger.warning("resync_failed", error=e.message)

    # Lifecycle

    def start(self) -> None:
        """Start watch, worker and resync tasks on the running loop."""
        if self._tasks:
            return
        # Listing before each mangler watch also recovers events missed while it was down
        self._tasks.append(
            asyncio.create_task(
                self._watch_loop(
                    "SecretMangler",
                    self.store.watch_manglers,
                    self._on_mangler_event,
                    before_watch=self.sync_all,
                )
            )
        )
        self._tasks.append(
            asyncio.create_task(
                self._watch_loop("Secret", self.store.watch_secrets, self.handle_secret_event)
            )
        )
        for worker_id in range(max(1, self.settings.workers)):
            self._tasks.append(asyncio.create_task(self._worker(worker_id)))
        if self.settings.resync_interval > 0:
            self._tasks.append(asyncio.create_task(self._resync_loop()))
        logger.info(
            "controller_started",
            store=self.store.name,
            workers=self.settings.workers,
            namespace=self.settings.namespace,
            reference_index=self.index is not None,
        )

    async def stop(self) -> None:
        """Shut the queue down and wait for all tasks to end."""
        self.queue.shutdown()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("controller_stopped")

    async def run(self) -> None:
        """Run until cancelled."""
        self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()
