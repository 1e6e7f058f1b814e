"""
Stores for SecretMangler objects and secrets.

The reconciler depends only on SecretStore. InMemorySecretStore backs tests
and local rendering; KubernetesSecretStore talks to a cluster.
"""

from secretmangler.store.base import EventType, SecretStore, StoreHealth, WatchEvent
from secretmangler.store.memory import InMemorySecretStore

__all__ = [
    "EventType",
    "SecretStore",
    "StoreHealth",
    "WatchEvent",
    "InMemorySecretStore",
]
