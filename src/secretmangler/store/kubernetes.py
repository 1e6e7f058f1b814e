"""
Kubernetes store.

Reads and writes core/v1 Secrets and SecretMangler custom resources
through the official kubernetes client. Blocking client calls run in the
default executor; each watch is pumped from its own daemon thread into
asyncio.

Environment variables (via Settings):
    SECRETMANGLER_KUBECONFIG: kubeconfig path (falls back to KUBECONFIG)
    SECRETMANGLER_CONTEXT: kubeconfig context
    SECRETMANGLER_NAMESPACE: restrict watches and lists to one namespace
"""

from __future__ import annotations

import asyncio
import base64
import os
import threading
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import structlog
from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException

from secretmangler.config.settings import Settings
from secretmangler.core.errors import ConflictError, NotFoundError, StoreError
from secretmangler.mangler.models import ObjectRef, OwnerReference, Secret, SecretMangler
from secretmangler.store.base import EventType, SecretStore, StoreHealth, WatchEvent

logger = structlog.get_logger()

_DONE = object()


def secret_from_api(obj: Any) -> Secret:
    """Convert a V1Secret into a Secret, decoding base64 data."""
    metadata = obj.metadata
    owners = tuple(
        OwnerReference(
            api_version=owner.api_version,
            kind=owner.kind,
            name=owner.name,
            uid=owner.uid,
            controller=bool(owner.controller),
            block_owner_deletion=bool(owner.block_owner_deletion),
        )
        for owner in (metadata.owner_references or [])
    )
    return Secret(
        name=metadata.name,
        namespace=metadata.namespace,
        data={key: base64.b64decode(value) for key, value in (obj.data or {}).items()},
        type=obj.type or "Opaque",
        labels=dict(metadata.labels or {}),
        annotations=dict(metadata.annotations or {}),
        owner_references=owners,
        resource_version=metadata.resource_version,
    )


def secret_to_api(secret: Secret) -> client.V1Secret:
    """Convert a Secret into a V1Secret, encoding data as base64."""
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(
            name=secret.name,
            namespace=secret.namespace,
            labels=dict(secret.labels) or None,
            annotations=dict(secret.annotations) or None,
            resource_version=secret.resource_version,
            owner_references=[
                client.V1OwnerReference(
                    api_version=owner.api_version,
                    kind=owner.kind,
                    name=owner.name,
                    uid=owner.uid,
                    controller=owner.controller,
                    block_owner_deletion=owner.block_owner_deletion,
                )
                for owner in secret.owner_references
            ]
            or None,
        ),
        data={key: base64.b64encode(value).decode("ascii") for key, value in secret.data.items()},
        type=secret.type,
    )


def _close_response(watcher: watch.Watch) -> None:
    """Close the HTTP response a watch is reading from, if any."""
    resp = getattr(watcher, "_resp", None)
    if resp is None:
        return
    try:
        resp.close()
        resp.release_conn()
    except Exception as e:
        logger.debug("watch_close_failed", error=str(e))


def translate_api_error(exc: ApiException, action: str, ref: ObjectRef) -> StoreError:
    """Map an ApiException onto the store error taxonomy."""
    details = {"action": action, "object": str(ref), "status": exc.status}
    message = f"{action} {ref} failed: {exc.reason}"
    if exc.status == 404:
        return NotFoundError(message, details=details)
    if exc.status == 409:
        return ConflictError(message, details=details)
    return StoreError(message, details=details)


@dataclass
class KubernetesSecretStore(SecretStore):
    """
    Store backed by the Kubernetes API.

    Configuration:
        namespace: Namespace to watch and list (None = all namespaces)
        kubeconfig: Path to kubeconfig file (optional)
        context: Kubeconfig context to use (optional)
        timeout: API request timeout in seconds
        watch_timeout: Server-side watch timeout in seconds
    """

    namespace: str | None = None
    kubeconfig: str | None = field(default_factory=lambda: os.environ.get("KUBECONFIG"))
    context: str | None = None
    timeout: float = 30.0
    watch_timeout: int = 300
    group: str = "secret-mangler.wreiner.at"
    version: str = "v1alpha1"
    plural: str = "secretmanglers"

    # Internal state
    _api_client: Any = field(default=None, repr=False, compare=False)
    _initialized: bool = field(default=False, repr=False, compare=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> KubernetesSecretStore:
        kwargs: dict[str, Any] = {}
        if settings.kubeconfig:
            kwargs["kubeconfig"] = settings.kubeconfig
        return cls(
            namespace=settings.namespace,
            context=settings.context,
            timeout=settings.request_timeout,
            watch_timeout=settings.watch_timeout,
            group=settings.crd_group,
            version=settings.crd_version,
            plural=settings.crd_plural,
            **kwargs,
        )

    @property
    def name(self) -> str:
        return "kubernetes"

    def _ensure_initialized(self) -> None:
        """Initialize Kubernetes client if not already done."""
        if self._initialized:
            return

        # Try in-cluster config first, then kubeconfig
        try:
            config.load_incluster_config()
        except config.ConfigException:
            try:
                config.load_kube_config(
                    config_file=self.kubeconfig,
                    context=self.context,
                )
            except config.ConfigException as e:
                raise StoreError(f"Failed to load Kubernetes config: {e}") from e

        self._api_client = client.ApiClient()
        self._initialized = True

    def _get_core_api(self) -> Any:
        """Get CoreV1Api client."""
        self._ensure_initialized()
        return client.CoreV1Api(self._api_client)

    def _get_custom_api(self) -> Any:
        """Get CustomObjectsApi client."""
        self._ensure_initialized()
        return client.CustomObjectsApi(self._api_client)

    async def _run_sync(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run synchronous kubernetes API call in executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def _call(self, action: str, ref: ObjectRef, func: Any, *args: Any, **kwargs: Any) -> Any:
        kwargs.setdefault("_request_timeout", self.timeout)
        try:
            return await self._run_sync(func, *args, **kwargs)
        except ApiException as e:
            raise translate_api_error(e, action, ref) from e
        except Exception as e:
            raise StoreError(
                f"{action} {ref} failed: {e}",
                details={"action": action, "object": str(ref)},
            ) from e

    # Secrets

    async def get_secret(self, ref: ObjectRef) -> Secret | None:
        core_api = self._get_core_api()
        try:
            obj = await self._call("get secret", ref, core_api.read_namespaced_secret, ref.name, ref.namespace)
        except NotFoundError:
            return None
        return secret_from_api(obj)

    async def create_secret(self, secret: Secret) -> Secret:
        core_api = self._get_core_api()
        obj = await self._call(
            "create secret",
            secret.ref,
            core_api.create_namespaced_secret,
            secret.namespace,
            secret_to_api(secret),
        )
        return secret_from_api(obj)

    async def update_secret(self, secret: Secret) -> Secret:
        core_api = self._get_core_api()
        obj = await self._call(
            "update secret",
            secret.ref,
            core_api.replace_namespaced_secret,
            secret.name,
            secret.namespace,
            secret_to_api(secret),
        )
        return secret_from_api(obj)

    async def delete_secret(self, secret: Secret) -> None:
        core_api = self._get_core_api()
        await self._call(
            "delete secret",
            secret.ref,
            core_api.delete_namespaced_secret,
            secret.name,
            secret.namespace,
        )

    # SecretManglers

    async def get_mangler(self, ref: ObjectRef) -> SecretMangler | None:
        custom_api = self._get_custom_api()
        try:
            obj = await self._call(
                "get SecretMangler",
                ref,
                custom_api.get_namespaced_custom_object,
                self.group,
                self.version,
                ref.namespace,
                self.plural,
                ref.name,
            )
        except NotFoundError:
            return None
        return SecretMangler.from_dict(obj)

    async def list_manglers(self, namespace: str | None = None) -> list[SecretMangler]:
        custom_api = self._get_custom_api()
        namespace = namespace or self.namespace
        scope = ObjectRef(namespace or "*", self.plural)
        if namespace:
            result = await self._call(
                "list SecretManglers",
                scope,
                custom_api.list_namespaced_custom_object,
                self.group,
                self.version,
                namespace,
                self.plural,
            )
        else:
            result = await self._call(
                "list SecretManglers",
                scope,
                custom_api.list_cluster_custom_object,
                self.group,
                self.version,
                self.plural,
            )
        return self._parse_manglers(result.get("items", []))

    def _parse_manglers(self, items: list[dict[str, Any]]) -> list[SecretMangler]:
        manglers = []
        for item in items:
            try:
                manglers.append(SecretMangler.from_dict(item))
            except Exception as e:
                metadata = item.get("metadata") or {}
                logger.warning(
                    "invalid_secretmangler",
                    mangler=f"{metadata.get('namespace')}/{metadata.get('name')}",
                    error=str(e),
                )
        return manglers

    async def update_mangler_status(self, mangler: SecretMangler) -> SecretMangler:
        custom_api = self._get_custom_api()
        obj = await self._call(
            "update SecretMangler status",
            mangler.ref,
            custom_api.replace_namespaced_custom_object_status,
            self.group,
            self.version,
            mangler.namespace,
            self.plural,
            mangler.name,
            mangler.to_dict(),
        )
        return SecretMangler.from_dict(obj)

    # Watches

    async def _stream(self, func: Callable[..., Any], *args: Any) -> AsyncIterator[dict[str, Any]]:
        """
        Pump a blocking watch stream into the event loop.

        The stream is read on its own daemon thread so a long-lived watch
        never occupies the executor used by API calls. Closing the generator
        closes the HTTP response, which unblocks and ends the thread.
        """
        self._ensure_initialized()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Any] = asyncio.Queue()
        watcher = watch.Watch()
        stopped = threading.Event()

        def emit(item: Any) -> None:
            if stopped.is_set():
                return
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed
                stopped.set()

        def pump() -> None:
            try:
                for event in watcher.stream(func, *args, timeout_seconds=self.watch_timeout):
                    if stopped.is_set():
                        break
                    emit(event)
            except Exception as e:
                emit(e)
            finally:
                emit(_DONE)

        thread = threading.Thread(
            target=pump,
            name=f"watch-{getattr(func, '__name__', 'stream')}",
            daemon=True,
        )
        thread.start()
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    return
                if isinstance(item, Exception):
                    raise StoreError(f"watch failed: {item}") from item
                if item.get("type") == "ERROR":
                    raise StoreError("watch returned an error event", details={"object": str(item.get("object"))})
                yield item
        finally:
            stopped.set()
            watcher.stop()
            _close_response(watcher)

    async def watch_manglers(self) -> AsyncIterator[WatchEvent[SecretMangler]]:
        custom_api = self._get_custom_api()
        if self.namespace:
            stream = self._stream(
                custom_api.list_namespaced_custom_object,
                self.group,
                self.version,
                self.namespace,
                self.plural,
            )
        else:
            stream = self._stream(
                custom_api.list_cluster_custom_object,
                self.group,
                self.version,
                self.plural,
            )
        async with aclosing(stream) as events:
            async for event in events:
                obj = event["object"]
                metadata = obj.get("metadata") or {}
                ref = ObjectRef(metadata.get("namespace", ""), metadata.get("name", ""))
                try:
                    mangler = SecretMangler.from_dict(obj)
                except Exception as e:
                    logger.warning("invalid_secretmangler", mangler=str(ref), error=str(e))
                    continue
                yield WatchEvent(EventType(event["type"]), ref, mangler)

    async def watch_secrets(self) -> AsyncIterator[WatchEvent[Secret]]:
        core_api = self._get_core_api()
        if self.namespace:
            stream = self._stream(core_api.list_namespaced_secret, self.namespace)
        else:
            stream = self._stream(core_api.list_secret_for_all_namespaces)
        async with aclosing(stream) as events:
            async for event in events:
                secret = secret_from_api(event["object"])
                yield WatchEvent(EventType(event["type"]), secret.ref, secret)

    async def health_check(self) -> StoreHealth:
        """Check Kubernetes API connectivity."""
        start = time.time()

        try:
            core_api = self._get_core_api()
            await self._run_sync(core_api.get_api_resources)
            latency = (time.time() - start) * 1000

            return StoreHealth(
                healthy=True,
                message="Connected to Kubernetes API",
                latency_ms=latency,
            )

        except StoreError as e:
            return StoreHealth(
                healthy=False,
                message=str(e),
            )
        except Exception as e:
            return StoreHealth(
                healthy=False,
                message=f"Kubernetes connection failed: {e}",
            )
