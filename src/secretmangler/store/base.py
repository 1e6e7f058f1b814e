"""
Base class for secret stores.

A store holds SecretMangler objects and secrets and delivers change
events for both. The reconciler only talks to this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from secretmangler.mangler.models import ObjectRef, Secret, SecretMangler

T = TypeVar("T")


class EventType(str, Enum):
    """Kind of change reported by a watch."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class WatchEvent(Generic[T]):
    """A single change of a watched object."""

    type: EventType
    ref: ObjectRef
    obj: T


@dataclass
class StoreHealth:
    """Health status of a store."""

    healthy: bool
    message: str
    latency_ms: float | None = None


class SecretStore(ABC):
    """
    Abstract base class for stores.

    Conventions:
    - get_* return None for objects that do not exist
    - mutations raise NotFoundError / ConflictError for missing objects
      and optimistic-concurrency conflicts
    - every other backend failure raises StoreError
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name for identification."""

    @abstractmethod
    async def get_secret(self, ref: ObjectRef) -> Secret | None:
        """Fetch a secret."""

    @abstractmethod
    async def create_secret(self, secret: Secret) -> Secret:
        """Create a secret. Raises ConflictError if it already exists."""

    @abstractmethod
    async def update_secret(self, secret: Secret) -> Secret:
        """Replace a secret, honouring ``secret.resource_version`` when set."""

    @abstractmethod
    async def delete_secret(self, secret: Secret) -> None:
        """Delete a secret. Raises NotFoundError if it does not exist."""

    @abstractmethod
    async def get_mangler(self, ref: ObjectRef) -> SecretMangler | None:
        """Fetch a SecretMangler."""

    @abstractmethod
    async def list_manglers(self, namespace: str | None = None) -> list[SecretMangler]:
        """List SecretManglers, optionally restricted to one namespace."""

    @abstractmethod
    async def update_mangler_status(self, mangler: SecretMangler) -> SecretMangler:
        """Persist ``mangler.status``."""

    @abstractmethod
    def watch_manglers(self) -> AsyncIterator[WatchEvent[SecretMangler]]:
        """Stream SecretMangler changes until the watch expires."""

    @abstractmethod
    def watch_secrets(self) -> AsyncIterator[WatchEvent[Secret]]:
        """Stream secret changes until the watch expires."""

    @abstractmethod
    async def health_check(self) -> StoreHealth:
        """Check store connectivity."""

    async def read_secret_data(self, ref: ObjectRef) -> dict[str, bytes] | None:
        """Lookup callable used by the resolver."""
        secret = await self.get_secret(ref)
        if secret is None:
            return None
        return secret.data
