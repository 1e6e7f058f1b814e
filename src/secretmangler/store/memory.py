from __future__ import annotations

import asyncio
import copy
import uuid
from collections.abc import AsyncIterator
from typing import Any

from secretmangler.core.errors import ConflictError, NotFoundError
from secretmangler.mangler.models import ObjectRef, Secret, SecretMangler
from secretmangler.store.base import EventType, SecretStore, StoreHealth, WatchEvent

_CLOSED = object()


def _same_content(left: Secret, right: Secret) -> bool:
    return (
        left.data == right.data
        and left.type == right.type
        and left.labels == right.labels
        and left.annotations == right.annotations
        and left.owner_references == right.owner_references
    )


class InMemorySecretStore(SecretStore):
    """Dict-backed store for tests and local rendering.

    Mirrors the API server semantics the reconciler depends on: resource
    versions, optimistic-concurrency conflicts, owner-based garbage
    collection and watch events.
    """

    def __init__(self) -> None:
        self._secrets: dict[ObjectRef, Secret] = {}
        self._manglers: dict[ObjectRef, SecretMangler] = {}
        self._version = 0
        self._secret_watchers: list[asyncio.Queue[Any]] = []
        self._mangler_watchers: list[asyncio.Queue[Any]] = []
        self.operations: list[tuple[str, ObjectRef]] = []

    @property
    def name(self) -> str:
        return "memory"

    @property
    def watching(self) -> bool:
        """True once both a secret and a mangler watch are listening."""
        return bool(self._secret_watchers) and bool(self._mangler_watchers)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _emit(self, watchers: list[asyncio.Queue[Any]], event: WatchEvent[Any]) -> None:
        for queue in watchers:
            queue.put_nowait(event)

    # Seeding helpers (no concurrency checks, like an external writer)

    def put_secret(self, secret: Secret) -> Secret:
        stored = copy.deepcopy(secret)
        current = self._secrets.get(stored.ref)
        if current is not None and _same_content(current, stored):
            # The API server does not bump versions for no-op writes
            return copy.deepcopy(current)
        existed = current is not None
        stored.resource_version = self._next_version()
        self._secrets[stored.ref] = stored
        event_type = EventType.MODIFIED if existed else EventType.ADDED
        self._emit(self._secret_watchers, WatchEvent(event_type, stored.ref, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    def remove_secret(self, ref: ObjectRef) -> None:
        stored = self._secrets.pop(ref, None)
        if stored is not None:
            self._emit(self._secret_watchers, WatchEvent(EventType.DELETED, ref, stored))

    def put_mangler(self, mangler: SecretMangler) -> SecretMangler:
        stored = copy.deepcopy(mangler)
        existing = self._manglers.get(stored.ref)
        if stored.uid is None:
            stored.uid = existing.uid if existing else str(uuid.uuid4())
        stored.resource_version = self._next_version()
        self._manglers[stored.ref] = stored
        event_type = EventType.MODIFIED if existing else EventType.ADDED
        self._emit(self._mangler_watchers, WatchEvent(event_type, stored.ref, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    def remove_mangler(self, ref: ObjectRef) -> None:
        stored = self._manglers.pop(ref, None)
        if stored is None:
            return
        self._emit(self._mangler_watchers, WatchEvent(EventType.DELETED, ref, stored))
        # Garbage collect secrets controlled by the removed mangler
        for secret in list(self._secrets.values()):
            owner = secret.controller_owner
            if owner is not None and owner.uid == stored.uid:
                self.remove_secret(secret.ref)

    def close(self) -> None:
        """End all running watches."""
        for queue in self._secret_watchers + self._mangler_watchers:
            queue.put_nowait(_CLOSED)

    # SecretStore

    async def get_secret(self, ref: ObjectRef) -> Secret | None:
        self.operations.append(("get_secret", ref))
        stored = self._secrets.get(ref)
        return copy.deepcopy(stored) if stored is not None else None

    async def create_secret(self, secret: Secret) -> Secret:
        self.operations.append(("create_secret", secret.ref))
        if secret.ref in self._secrets:
            raise ConflictError(f"secret {secret.ref} already exists", details={"secret": str(secret.ref)})
        return self.put_secret(secret)

    async def update_secret(self, secret: Secret) -> Secret:
        self.operations.append(("update_secret", secret.ref))
        stored = self._secrets.get(secret.ref)
        if stored is None:
            raise NotFoundError(f"secret {secret.ref} not found", details={"secret": str(secret.ref)})
        if secret.resource_version and secret.resource_version != stored.resource_version:
            raise ConflictError(
                f"secret {secret.ref} was modified concurrently",
                details={"expected": secret.resource_version, "actual": stored.resource_version},
            )
        return self.put_secret(secret)

    async def delete_secret(self, secret: Secret) -> None:
        self.operations.append(("delete_secret", secret.ref))
        if secret.ref not in self._secrets:
            raise NotFoundError(f"secret {secret.ref} not found", details={"secret": str(secret.ref)})
        self.remove_secret(secret.ref)

    async def get_mangler(self, ref: ObjectRef) -> SecretMangler | None:
        self.operations.append(("get_mangler", ref))
        stored = self._manglers.get(ref)
        return copy.deepcopy(stored) if stored is not None else None

    async def list_manglers(self, namespace: str | None = None) -> list[SecretMangler]:
        return [
            copy.deepcopy(mangler)
            for ref, mangler in sorted(self._manglers.items())
            if namespace is None or ref.namespace == namespace
        ]

    async def update_mangler_status(self, mangler: SecretMangler) -> SecretMangler:
        self.operations.append(("update_mangler_status", mangler.ref))
        stored = self._manglers.get(mangler.ref)
        if stored is None:
            raise NotFoundError(f"SecretMangler {mangler.ref} not found", details={"object": str(mangler.ref)})
        if mangler.resource_version and mangler.resource_version != stored.resource_version:
            raise ConflictError(
                f"SecretMangler {mangler.ref} was modified concurrently",
                details={"expected": mangler.resource_version, "actual": stored.resource_version},
            )
        if mangler.status == stored.status:
            return copy.deepcopy(stored)
        updated = copy.deepcopy(stored)
        updated.status = copy.deepcopy(mangler.status)
        return self.put_mangler(updated)

    async def _watch(self, watchers: list[asyncio.Queue[Any]]) -> AsyncIterator[WatchEvent[Any]]:
        queue: asyncio.Queue[Any] = asyncio.Queue()
        watchers.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            watchers.remove(queue)

    def watch_manglers(self) -> AsyncIterator[WatchEvent[SecretMangler]]:
        return self._watch(self._mangler_watchers)

    def watch_secrets(self) -> AsyncIterator[WatchEvent[Secret]]:
        return self._watch(self._secret_watchers)

    async def health_check(self) -> StoreHealth:
        return StoreHealth(
            healthy=True,
            message=f"{len(self._manglers)} manglers, {len(self._secrets)} secrets",
            latency_ms=0.0,
        )
