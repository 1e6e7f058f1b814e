"""Tests for the Kubernetes store."""

import base64
import threading
from unittest.mock import ANY, AsyncMock, MagicMock, patch

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException
from kubernetes.config import ConfigException

from secretmangler.config.settings import Settings
from secretmangler.core.errors import ConflictError, NotFoundError, StoreError
from secretmangler.mangler.models import ObjectRef, OwnerReference, Secret, SecretMangler
from secretmangler.store.base import EventType
from secretmangler.store.kubernetes import (
    KubernetesSecretStore,
    secret_from_api,
    secret_to_api,
    translate_api_error,
)


def b64(value):
    return base64.b64encode(value.encode()).decode()


def api_secret(name="creds", namespace="default", **data):
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            resource_version="7",
            labels={"team": "platform"},
            owner_references=[
                client.V1OwnerReference(
                    api_version="secret-mangler.wreiner.at/v1alpha1",
                    kind="SecretMangler",
                    name="owner",
                    uid="uid-1",
                    controller=True,
                )
            ],
        ),
        data={key: b64(value) for key, value in data.items()},
        type="Opaque",
    )


MANGLER_OBJECT = {
    "apiVersion": "secret-mangler.wreiner.at/v1alpha1",
    "kind": "SecretMangler",
    "metadata": {"name": "app", "namespace": "default", "uid": "uid-1", "resourceVersion": "3"},
    "spec": {
        "secretTemplate": {
            "name": "app-secret",
            "namespace": "default",
            "mappings": {"USER": "<creds:user>"},
            "cascadeMode": "RemoveLostSync",
        }
    },
    "status": {"secretCreated": True, "lastAction": "Create"},
}


class TestConversions:
    """Tests for API object conversion."""

    def test_secret_from_api_decodes_data(self):
        secret = secret_from_api(api_secret(user="admin"))

        assert secret.ref == ObjectRef("default", "creds")
        assert secret.data == {"user": b"admin"}
        assert secret.resource_version == "7"
        assert secret.labels == {"team": "platform"}
        assert secret.controller_owner.name == "owner"

    def test_secret_from_api_without_data(self):
        obj = client.V1Secret(metadata=client.V1ObjectMeta(name="empty", namespace="default"))

        secret = secret_from_api(obj)

        assert secret.data == {}
        assert secret.owner_references == ()
        assert secret.type == "Opaque"

    def test_secret_to_api_encodes_data_and_owner(self):
        secret = Secret(
            name="out",
            namespace="default",
            data={"key": b"value"},
            owner_references=(
                OwnerReference(api_version="secret-mangler.wreiner.at/v1alpha1", kind="SecretMangler", name="m", uid="u"),
            ),
            resource_version="9",
        )

        body = secret_to_api(secret)

        assert body.data == {"key": b64("value")}
        assert body.metadata.resource_version == "9"
        assert body.metadata.owner_references[0].controller is True
        assert body.metadata.owner_references[0].uid == "u"

    @pytest.mark.parametrize(
        "status,error_type",
        [(404, NotFoundError), (409, ConflictError), (500, StoreError), (403, StoreError)],
    )
    def test_translate_api_error(self, status, error_type):
        error = translate_api_error(ApiException(status=status, reason="boom"), "get secret", ObjectRef("ns", "a"))

        assert type(error) is error_type
        assert error.retryable
        assert error.details["status"] == status


class TestKubernetesStoreInit:
    """Tests for store configuration."""

    def test_from_settings(self):
        settings = Settings(namespace="team-a", context="kind", request_timeout=5.0, kubeconfig="/tmp/kubeconfig")

        store = KubernetesSecretStore.from_settings(settings)

        assert store.name == "kubernetes"
        assert store.namespace == "team-a"
        assert store.context == "kind"
        assert store.timeout == 5.0
        assert store.kubeconfig == "/tmp/kubeconfig"
        assert store.plural == "secretmanglers"

    def test_kubeconfig_from_environment(self, monkeypatch):
        monkeypatch.setenv("KUBECONFIG", "/path/to/kubeconfig")

        store = KubernetesSecretStore()

        assert store.kubeconfig == "/path/to/kubeconfig"

    def test_falls_back_to_kubeconfig(self):
        store = KubernetesSecretStore(kubeconfig="/path/to/kubeconfig", context="dev")

        with patch("secretmangler.store.kubernetes.config.load_incluster_config") as mock_incluster:
            mock_incluster.side_effect = ConfigException("not in cluster")
            with patch("secretmangler.store.kubernetes.config.load_kube_config") as mock_kube:
                with patch("secretmangler.store.kubernetes.client.ApiClient"):
                    store._ensure_initialized()

        mock_kube.assert_called_once_with(config_file="/path/to/kubeconfig", context="dev")
        assert store._initialized

    def test_missing_config_raises_store_error(self):
        store = KubernetesSecretStore()

        with patch("secretmangler.store.kubernetes.config.load_incluster_config", side_effect=ConfigException("no")):
            with patch("secretmangler.store.kubernetes.config.load_kube_config", side_effect=ConfigException("no")):
                with pytest.raises(StoreError):
                    store._ensure_initialized()


class TestKubernetesStoreSecrets:
    """Tests for secret calls."""

    @pytest.mark.asyncio
    async def test_get_secret(self):
        store = KubernetesSecretStore()
        mock_core = MagicMock()

        with patch.object(store, "_get_core_api", return_value=mock_core):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.return_value = api_secret(user="admin")

                secret = await store.get_secret(ObjectRef("default", "creds"))

        assert secret.data == {"user": b"admin"}
        mock_run.assert_awaited_once_with(
            mock_core.read_namespaced_secret, "creds", "default", _request_timeout=30.0
        )

    @pytest.mark.asyncio
    async def test_get_missing_secret_returns_none(self):
        store = KubernetesSecretStore()

        with patch.object(store, "_get_core_api", return_value=MagicMock()):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.side_effect = ApiException(status=404, reason="Not Found")

                assert await store.get_secret(ObjectRef("default", "missing")) is None

    @pytest.mark.asyncio
    async def test_update_secret_replaces(self):
        store = KubernetesSecretStore()
        mock_core = MagicMock()
        secret = Secret(name="out", namespace="default", data={"a": b"1"}, resource_version="4")

        with patch.object(store, "_get_core_api", return_value=mock_core):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.return_value = api_secret(name="out", a="1")

                await store.update_secret(secret)

        mock_run.assert_awaited_once_with(
            mock_core.replace_namespaced_secret, "out", "default", ANY, _request_timeout=30.0
        )
        body = mock_run.await_args.args[3]
        assert body.metadata.resource_version == "4"

    @pytest.mark.asyncio
    async def test_create_conflict(self):
        store = KubernetesSecretStore()

        with patch.object(store, "_get_core_api", return_value=MagicMock()):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.side_effect = ApiException(status=409, reason="AlreadyExists")

                with pytest.raises(ConflictError):
                    await store.create_secret(Secret(name="out", namespace="default"))

    @pytest.mark.asyncio
    async def test_delete_missing_raises_not_found(self):
        store = KubernetesSecretStore()

        with patch.object(store, "_get_core_api", return_value=MagicMock()):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.side_effect = ApiException(status=404, reason="Not Found")

                with pytest.raises(NotFoundError):
                    await store.delete_secret(Secret(name="out", namespace="default"))

    @pytest.mark.asyncio
    async def test_transport_errors_become_store_errors(self):
        store = KubernetesSecretStore()

        with patch.object(store, "_get_core_api", return_value=MagicMock()):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.side_effect = ConnectionError("connection refused")

                with pytest.raises(StoreError) as exc_info:
                    await store.get_secret(ObjectRef("default", "creds"))

        assert exc_info.value.details["object"] == "default/creds"


class TestKubernetesStoreManglers:
    """Tests for SecretMangler calls."""

    @pytest.mark.asyncio
    async def test_get_mangler(self):
        store = KubernetesSecretStore()
        mock_custom = MagicMock()

        with patch.object(store, "_get_custom_api", return_value=mock_custom):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.return_value = MANGLER_OBJECT

                mangler = await store.get_mangler(ObjectRef("default", "app"))

        assert mangler.uid == "uid-1"
        assert mangler.template.mappings == {"USER": "<creds:user>"}
        assert mangler.status.last_action == "Create"
        mock_run.assert_awaited_once_with(
            mock_custom.get_namespaced_custom_object,
            "secret-mangler.wreiner.at",
            "v1alpha1",
            "default",
            "secretmanglers",
            "app",
            _request_timeout=30.0,
        )

    @pytest.mark.asyncio
    async def test_list_all_namespaces_skips_invalid(self):
        store = KubernetesSecretStore()
        mock_custom = MagicMock()
        invalid = {"metadata": {"name": "bad", "namespace": "default"}, "spec": {}}

        with patch.object(store, "_get_custom_api", return_value=mock_custom):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.return_value = {"items": [MANGLER_OBJECT, invalid]}

                manglers = await store.list_manglers()

        assert [m.name for m in manglers] == ["app"]
        assert mock_run.await_args.args[0] is mock_custom.list_cluster_custom_object

    @pytest.mark.asyncio
    async def test_list_single_namespace(self):
        store = KubernetesSecretStore(namespace="team-a")
        mock_custom = MagicMock()

        with patch.object(store, "_get_custom_api", return_value=mock_custom):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.return_value = {"items": []}

                await store.list_manglers()

        assert mock_run.await_args.args[0] is mock_custom.list_namespaced_custom_object
        assert mock_run.await_args.args[3] == "team-a"

    @pytest.mark.asyncio
    async def test_update_status_sends_full_object(self):
        store = KubernetesSecretStore()
        mock_custom = MagicMock()

        with patch.object(store, "_get_custom_api", return_value=mock_custom):
            with patch.object(store, "_run_sync", new_callable=AsyncMock) as mock_run:
                mock_run.return_value = MANGLER_OBJECT
                mangler = SecretMangler.from_dict(MANGLER_OBJECT)
                mangler.status.last_action = "RemoveLostSync"

                await store.update_mangler_status(mangler)

        assert mock_run.await_args.args[0] is mock_custom.replace_namespaced_custom_object_status
        body = mock_run.await_args.args[6]
        assert body["status"] == {"secretCreated": True, "lastAction": "RemoveLostSync"}
        assert body["metadata"]["resourceVersion"] == "3"


class TestKubernetesStoreHealth:
    """Tests for health checks."""

    @pytest.mark.asyncio
    async def test_healthy(self):
        store = KubernetesSecretStore()

        with patch.object(store, "_get_core_api", return_value=MagicMock()):
            with patch.object(store, "_run_sync", new_callable=AsyncMock):
                health = await store.health_check()

        assert health.healthy
        assert health.latency_ms is not None

    @pytest.mark.asyncio
    async def test_unhealthy_on_config_error(self):
        store = KubernetesSecretStore()

        with patch.object(store, "_get_core_api", side_effect=StoreError("Failed to load Kubernetes config")):
            health = await store.health_check()

        assert not health.healthy
        assert "Failed to load" in health.message


def watch_store(**kwargs):
    store = KubernetesSecretStore(**kwargs)
    store._initialized = True
    store._api_client = MagicMock()
    return store


async def collect(events):
    return [event async for event in events]


class TestKubernetesStoreWatches:
    """Tests for watch streams."""

    @pytest.mark.asyncio
    async def test_watch_secrets_converts_events(self):
        store = watch_store()
        mock_core = MagicMock()

        with patch.object(store, "_get_core_api", return_value=mock_core):
            with patch("secretmangler.store.kubernetes.watch.Watch") as mock_watch:
                mock_watch.return_value.stream.return_value = iter(
                    [
                        {"type": "ADDED", "object": api_secret(user="admin")},
                        {"type": "DELETED", "object": api_secret(name="old")},
                    ]
                )

                events = await collect(store.watch_secrets())

        assert [(e.type, e.ref) for e in events] == [
            (EventType.ADDED, ObjectRef("default", "creds")),
            (EventType.DELETED, ObjectRef("default", "old")),
        ]
        assert events[0].object.data == {"user": b"admin"}
        mock_watch.return_value.stream.assert_called_once_with(
            mock_core.list_secret_for_all_namespaces, timeout_seconds=300
        )

    @pytest.mark.asyncio
    async def test_watch_secrets_single_namespace(self):
        store = watch_store(namespace="team-a", watch_timeout=60)
        mock_core = MagicMock()

        with patch.object(store, "_get_core_api", return_value=mock_core):
            with patch("secretmangler.store.kubernetes.watch.Watch") as mock_watch:
                mock_watch.return_value.stream.return_value = iter([])

                assert await collect(store.watch_secrets()) == []

        mock_watch.return_value.stream.assert_called_once_with(
            mock_core.list_namespaced_secret, "team-a", timeout_seconds=60
        )

    @pytest.mark.asyncio
    async def test_watch_manglers_skips_invalid_objects(self):
        store = watch_store()
        mock_custom = MagicMock()
        invalid = {"metadata": {"name": "bad", "namespace": "default"}, "spec": {}}

        with patch.object(store, "_get_custom_api", return_value=mock_custom):
            with patch("secretmangler.store.kubernetes.watch.Watch") as mock_watch:
                mock_watch.return_value.stream.return_value = iter(
                    [
                        {"type": "MODIFIED", "object": invalid},
                        {"type": "MODIFIED", "object": MANGLER_OBJECT},
                    ]
                )

                events = await collect(store.watch_manglers())

        assert len(events) == 1
        assert events[0].type is EventType.MODIFIED
        assert events[0].ref == ObjectRef("default", "app")
        assert events[0].object.template.name == "app-secret"
        assert mock_watch.return_value.stream.call_args.args[0] is mock_custom.list_cluster_custom_object

    @pytest.mark.asyncio
    async def test_error_event_raises_store_error(self):
        store = watch_store()

        with patch.object(store, "_get_core_api", return_value=MagicMock()):
            with patch("secretmangler.store.kubernetes.watch.Watch") as mock_watch:
                mock_watch.return_value.stream.return_value = iter(
                    [{"type": "ERROR", "object": {"code": 410, "reason": "Expired"}}]
                )

                with pytest.raises(StoreError, match="error event"):
                    await collect(store.watch_secrets())

        mock_watch.return_value.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_exception_raises_store_error(self):
        store = watch_store()

        with patch.object(store, "_get_core_api", return_value=MagicMock()):
            with patch("secretmangler.store.kubernetes.watch.Watch") as mock_watch:
                mock_watch.return_value.stream.side_effect = ApiException(status=500, reason="Internal")

                with pytest.raises(StoreError, match="watch failed") as exc_info:
                    await collect(store.watch_secrets())

        assert isinstance(exc_info.value.__cause__, ApiException)

    @pytest.mark.asyncio
    async def test_closing_watch_closes_response_and_ends_thread(self):
        store = watch_store()
        response_closed = threading.Event()
        pump_finished = threading.Event()

        def blocking_stream(*args, **kwargs):
            try:
                yield {"type": "ADDED", "object": api_secret(user="admin")}
                # Blocks like a quiet watch until the response is closed
                response_closed.wait(5)
            finally:
                pump_finished.set()

        with patch.object(store, "_get_core_api", return_value=MagicMock()):
            with patch("secretmangler.store.kubernetes.watch.Watch") as mock_watch:
                watcher = mock_watch.return_value
                watcher.stream.side_effect = blocking_stream
                watcher._resp.close.side_effect = response_closed.set

                events = store.watch_secrets()
                first = await events.__anext__()
                await events.aclose()

        assert first.ref == ObjectRef("default", "creds")
        watcher.stop.assert_called_once()
        watcher._resp.close.assert_called_once()
        assert pump_finished.wait(1)
