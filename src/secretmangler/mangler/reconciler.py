"""
SecretMangler reconciliation.

One pass moves the materialized secret of a single SecretMangler towards
the state described by its template:

    fetch template -> fetch secret -> resolve data -> decide -> store -> status

Store failures propagate so the caller can requeue. Configuration errors
(faulty lookup strings, impossible owner references) end the pass with a
terminal result; only an edit of the template can fix them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from secretmangler.core.errors import (
    ConfigurationError,
    NotFoundError,
    SourceNotFoundError,
)
from secretmangler.mangler.cascade import NO_DATA_LABEL, Action, decide
from secretmangler.mangler.materializer import build_secret
from secretmangler.mangler.models import CascadeMode, ObjectRef, Secret, SecretMangler
from secretmangler.mangler.resolver import resolve_data

if TYPE_CHECKING:
    from secretmangler.store.base import SecretStore

logger = structlog.get_logger()

CREATE_LABEL = "Create"


class Outcome:
    """Outcome names reported in ReconcileResult."""

    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"
    NO_ACTION = "NoAction"
    DEFERRED = "Deferred"  # Create postponed until every source exists
    NOT_FOUND = "NotFound"  # SecretMangler is gone
    FAILED = "Failed"  # Terminal configuration error


@dataclass(slots=True)
class ReconcileResult:
    """Result of a single reconciliation pass."""

    ref: ObjectRef
    outcome: str
    label: str | None = None
    error: ConfigurationError | None = None

    @property
    def changed(self) -> bool:
        return self.outcome in (Outcome.CREATED, Outcome.UPDATED, Outcome.DELETED)

    @property
    def success(self) -> bool:
        return self.error is None


class SecretManglerReconciler:
    """Reconciles SecretMangler objects against a store."""

    def __init__(self, store: SecretStore) -> None:
        self.store = store

    async def reconcile(self, ref: ObjectRef) -> ReconcileResult:
        log = logger.bind(mangler=str(ref))
        log.info("reconcile_started")

        try:
            mangler = await self.store.get_mangler(ref)
        except ConfigurationError as e:
            log.error("invalid_secretmangler", error=e.message, **e.details)
            return ReconcileResult(ref, Outcome.FAILED, error=e)

        if mangler is None:
            log.info("secretmangler_not_found")
            return ReconcileResult(ref, Outcome.NOT_FOUND)

        log = log.bind(target=str(mangler.target), cascade_mode=mangler.template.cascade_mode.value)
        try:
            return await self._reconcile(mangler, log)
        except ConfigurationError as e:
            log.error("reconcile_failed", error=e.message, **e.details)
            return ReconcileResult(ref, Outcome.FAILED, error=e)

    async def _reconcile(self, mangler: SecretMangler, log: structlog.stdlib.BoundLogger) -> ReconcileResult:
        existing = await self.store.get_secret(mangler.target)
        if existing is None:
            return await self._create(mangler, log)

        self._check_ownership(mangler, existing, log)

        # Status lags behind the store when the write after a create failed
        mangler.status.created = True
        if mangler.status.last_action is None:
            mangler.status.last_action = CREATE_LABEL

        mode = mangler.template.cascade_mode
        if mode is CascadeMode.KEEP_NO_ACTION:
            log.info("sync_skipped_keep_no_action")
            await self._update_status(mangler, log)
            return ReconcileResult(mangler.ref, Outcome.NO_ACTION, label=mode.value)

        resolved = await resolve_data(
            mangler.template.mappings,
            mangler.namespace,
            self.store.read_secret_data,
            fail_fast=False,
        )
        decision = decide(existing.data, resolved, mode)

        if decision.action is Action.NO_ACTION:
            log.info("secret_unchanged")
            await self._update_status(mangler, log)
            return ReconcileResult(mangler.ref, Outcome.NO_ACTION, label=decision.label)

        if decision.action is Action.UPDATE:
            secret = build_secret(mangler, decision.data, resource_version=existing.resource_version)
            await self.store.update_secret(secret)
            log.info("secret_updated", keys=sorted(decision.data), lost_keys=list(decision.lost_keys))
            mangler.status.last_action = decision.label
            outcome = Outcome.UPDATED
        else:
            try:
                await self.store.delete_secret(existing)
            except NotFoundError:
                log.info("secret_already_deleted")
            log.info("secret_deleted", reason=decision.label, lost_keys=list(decision.lost_keys))
            mangler.status.created = False
            mangler.status.last_action = decision.label
            outcome = Outcome.DELETED

        await self._update_status(mangler, log)
        return ReconcileResult(mangler.ref, outcome, label=decision.label)

    async def _create(self, mangler: SecretMangler, log: structlog.stdlib.BoundLogger) -> ReconcileResult:
        log.info("secret_not_found_creating")
        try:
            data = await resolve_data(
                mangler.template.mappings,
                mangler.namespace,
                self.store.read_secret_data,
                fail_fast=True,
            )
        except SourceNotFoundError as e:
            log.info("create_deferred", source=e.source, field=e.field)
            return ReconcileResult(mangler.ref, Outcome.DEFERRED)

        if not data:
            log.info("nothing_to_materialize")
            await self._update_status(mangler, log)
            return ReconcileResult(mangler.ref, Outcome.NO_ACTION, label=NO_DATA_LABEL)

        secret = build_secret(mangler, data)
        await self.store.create_secret(secret)
        log.info("secret_created", keys=sorted(data))

        mangler.status.created = True
        mangler.status.last_action = CREATE_LABEL
        await self._update_status(mangler, log)
        return ReconcileResult(mangler.ref, Outcome.CREATED, label=CREATE_LABEL)

    async def _update_status(self, mangler: SecretMangler, log: structlog.stdlib.BoundLogger) -> None:
        await self.store.update_mangler_status(mangler)
        log.info(
            "status_updated",
            secret_created=mangler.status.created,
            last_action=mangler.status.last_action,
        )

    @staticmethod
    def _check_ownership(mangler: SecretMangler, existing: Secret, log: structlog.stdlib.BoundLogger) -> None:
        owner = existing.controller_owner
        if owner is None:
            log.warning("target_secret_not_controlled")
        elif owner.uid != mangler.uid:
            log.warning(
                "target_secret_controlled_by_other_owner",
                owner_kind=owner.kind,
                owner_name=owner.name,
            )
