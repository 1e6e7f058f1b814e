"""Tests for the in-memory store."""

import asyncio

import pytest

from secretmangler.core.errors import ConflictError, NotFoundError
from secretmangler.mangler.models import ObjectRef, OwnerReference
from secretmangler.store.base import EventType


class TestSecrets:
    """Tests for secret CRUD."""

    @pytest.mark.asyncio
    async def test_create_assigns_resource_version(self, store, make_secret):
        created = await store.create_secret(make_secret("a", key="v"))

        assert created.resource_version is not None
        assert (await store.get_secret(ObjectRef("default", "a"))).data == {"key": b"v"}

    @pytest.mark.asyncio
    async def test_create_existing_conflicts(self, store, make_secret):
        store.put_secret(make_secret("a", key="v"))

        with pytest.raises(ConflictError):
            await store.create_secret(make_secret("a", key="other"))

    @pytest.mark.asyncio
    async def test_update_with_stale_version_conflicts(self, store, make_secret):
        first = store.put_secret(make_secret("a", key="1"))
        store.put_secret(make_secret("a", key="2"))

        first.data = {"key": b"3"}
        with pytest.raises(ConflictError):
            await store.update_secret(first)

    @pytest.mark.asyncio
    async def test_update_missing_raises_not_found(self, store, make_secret):
        with pytest.raises(NotFoundError):
            await store.update_secret(make_secret("a", key="1"))

    @pytest.mark.asyncio
    async def test_delete_missing_raises_not_found(self, store, make_secret):
        with pytest.raises(NotFoundError):
            await store.delete_secret(make_secret("a"))

    @pytest.mark.asyncio
    async def test_noop_write_keeps_version(self, store, make_secret):
        first = store.put_secret(make_secret("a", key="1"))

        again = await store.update_secret(first)

        assert again.resource_version == first.resource_version

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, store, make_secret):
        store.put_secret(make_secret("a", key="1"))

        secret = await store.get_secret(ObjectRef("default", "a"))
        secret.data["key"] = b"mutated"

        assert (await store.read_secret_data(ObjectRef("default", "a"))) == {"key": b"1"}

    @pytest.mark.asyncio
    async def test_read_secret_data_missing(self, store):
        assert await store.read_secret_data(ObjectRef("default", "missing")) is None


class TestManglers:
    """Tests for SecretMangler storage."""

    @pytest.mark.asyncio
    async def test_put_assigns_uid_once(self, store, make_mangler):
        first = store.put_mangler(make_mangler(uid=None))
        second = store.put_mangler(make_mangler(uid=None))

        assert first.uid
        assert second.uid == first.uid

    @pytest.mark.asyncio
    async def test_list_filters_namespace(self, store, make_mangler):
        store.put_mangler(make_mangler(name="a", namespace="x"))
        store.put_mangler(make_mangler(name="b", namespace="y"))

        assert [m.name for m in await store.list_manglers()] == ["a", "b"]
        assert [m.name for m in await store.list_manglers("y")] == ["b"]

    @pytest.mark.asyncio
    async def test_status_update_with_stale_version_conflicts(self, store, make_mangler):
        stale = store.put_mangler(make_mangler())
        store.put_mangler(make_mangler())

        stale.status.created = True
        with pytest.raises(ConflictError):
            await store.update_mangler_status(stale)

    @pytest.mark.asyncio
    async def test_status_update_only_touches_status(self, store, make_mangler):
        stored = store.put_mangler(make_mangler(mappings={"a": "1"}))
        stored.template.mappings = {"changed": "x"}
        stored.status.last_action = "Create"

        await store.update_mangler_status(stored)

        fresh = await store.get_mangler(stored.ref)
        assert fresh.status.last_action == "Create"
        assert fresh.template.mappings == {"a": "1"}

    @pytest.mark.asyncio
    async def test_remove_mangler_collects_owned_secrets(self, store, make_mangler, make_secret):
        mangler = store.put_mangler(make_mangler())
        owned = make_secret("owned")
        owned.owner_references = (
            OwnerReference(api_version=mangler.api_version, kind=mangler.kind, name=mangler.name, uid=mangler.uid),
        )
        store.put_secret(owned)
        store.put_secret(make_secret("unrelated"))

        store.remove_mangler(mangler.ref)

        assert await store.get_secret(ObjectRef("default", "owned")) is None
        assert await store.get_secret(ObjectRef("default", "unrelated")) is not None


class TestWatches:
    """Tests for watch streams."""

    @pytest.mark.asyncio
    async def test_secret_events(self, store, make_secret):
        events = []

        async def consume():
            async for event in store.watch_secrets():
                events.append((event.type, event.ref.name))

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)

        store.put_secret(make_secret("a", key="1"))
        store.put_secret(make_secret("a", key="1"))  # no-op, no event
        store.put_secret(make_secret("a", key="2"))
        store.remove_secret(ObjectRef("default", "a"))
        store.close()
        await asyncio.wait_for(task, timeout=1)

        assert events == [
            (EventType.ADDED, "a"),
            (EventType.MODIFIED, "a"),
            (EventType.DELETED, "a"),
        ]

    @pytest.mark.asyncio
    async def test_unchanged_status_emits_no_event(self, store, make_mangler):
        events = []

        async def consume():
            async for event in store.watch_manglers():
                events.append(event.type)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)

        stored = store.put_mangler(make_mangler())
        await store.update_mangler_status(stored)
        store.close()
        await asyncio.wait_for(task, timeout=1)

        assert events == [EventType.ADDED]

    @pytest.mark.asyncio
    async def test_health_check(self, store):
        health = await store.health_check()

        assert health.healthy
