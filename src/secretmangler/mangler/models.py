"""
SecretMangler domain models.

Data models for the SecretMangler custom resource, the secrets it
materializes, and the identities used to address both in the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from secretmangler.core.errors import ConfigurationError

DEFAULT_API_VERSION = "secret-mangler.wreiner.at/v1alpha1"
DEFAULT_KIND = "SecretMangler"

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "secret-mangler"


@dataclass(frozen=True, slots=True, order=True)
class ObjectRef:
    """Namespaced identity of a stored object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class CascadeMode(str, Enum):
    """How a materialized secret reacts when referenced sources change or vanish."""

    KEEP_NO_ACTION = "KeepNoAction"  # Frozen after creation
    KEEP_LOST_SYNC = "KeepLostSync"  # Sync; lost sources keep their last value
    REMOVE_LOST_SYNC = "RemoveLostSync"  # Sync; lost sources are dropped
    CASCADE_DELETE = "CascadeDelete"  # Any lost source deletes the whole secret

    @classmethod
    def parse(cls, value: str | CascadeMode | None) -> CascadeMode:
        """Parse a cascade mode, treating empty values as KeepNoAction."""
        if isinstance(value, CascadeMode):
            return value
        if not value:
            return cls.KEEP_NO_ACTION
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(mode.value for mode in cls)
            raise ConfigurationError(
                f"unknown cascadeMode {value!r}",
                details={"valid": valid},
            ) from None


@dataclass
class SecretTemplate:
    """Desired shape of the materialized secret."""

    name: str
    namespace: str
    mappings: dict[str, str] = field(default_factory=dict)
    cascade_mode: CascadeMode = CascadeMode.KEEP_NO_ACTION
    api_version: str = "v1"
    kind: str = "Secret"
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef(self.namespace, self.name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecretTemplate:
        """Parse the ``spec.secretTemplate`` block of a SecretMangler."""
        name = data.get("name")
        namespace = data.get("namespace")
        if not name or not namespace:
            raise ConfigurationError(
                "secretTemplate requires name and namespace",
                details={"name": name, "namespace": namespace},
            )
        mappings = data.get("mappings") or {}
        if not isinstance(mappings, dict):
            raise ConfigurationError("secretTemplate.mappings must be a mapping")

        # Older manifests use a single "k=v" label string; accept both shapes
        labels = data.get("labels") or {}
        legacy_label = data.get("label")
        if isinstance(legacy_label, str) and "=" in legacy_label:
            key, _, value = legacy_label.partition("=")
            labels = {key: value, **labels}

        return cls(
            name=name,
            namespace=namespace,
            mappings={str(k): str(v) for k, v in mappings.items()},
            cascade_mode=CascadeMode.parse(data.get("cascadeMode")),
            api_version=data.get("apiVersion") or "v1",
            kind=data.get("kind") or "Secret",
            labels=dict(labels),
            annotations=dict(data.get("annotations") or data.get("annotation") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "apiVersion": self.api_version,
            "kind": self.kind,
            "mappings": dict(self.mappings),
            "cascadeMode": self.cascade_mode.value,
        }
        if self.labels:
            result["labels"] = dict(self.labels)
        if self.annotations:
            result["annotations"] = dict(self.annotations)
        return result


@dataclass
class TemplateStatus:
    """Observed state persisted on the SecretMangler status subresource."""

    created: bool = False
    last_action: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TemplateStatus:
        data = data or {}
        return cls(
            created=bool(data.get("secretCreated", False)),
            last_action=data.get("lastAction"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"secretCreated": self.created}
        if self.last_action is not None:
            result["lastAction"] = self.last_action
        return result


@dataclass
class SecretMangler:
    """The template object: a SecretMangler custom resource."""

    name: str
    namespace: str
    template: SecretTemplate
    status: TemplateStatus = field(default_factory=TemplateStatus)
    uid: str | None = None
    resource_version: str | None = None
    api_version: str = DEFAULT_API_VERSION
    kind: str = DEFAULT_KIND

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef(self.namespace, self.name)

    @property
    def target(self) -> ObjectRef:
        return self.template.ref

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> SecretMangler:
        """Build from the JSON shape returned by the Kubernetes API."""
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        if not name or not namespace:
            raise ConfigurationError("SecretMangler requires metadata.name and metadata.namespace")
        template_data = spec.get("secretTemplate")
        if not isinstance(template_data, dict):
            raise ConfigurationError(
                "SecretMangler requires spec.secretTemplate",
                details={"mangler": f"{namespace}/{name}"},
            )
        return cls(
            name=name,
            namespace=namespace,
            template=SecretTemplate.from_dict(template_data),
            status=TemplateStatus.from_dict(obj.get("status")),
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
            api_version=obj.get("apiVersion") or DEFAULT_API_VERSION,
            kind=obj.get("kind") or DEFAULT_KIND,
        )

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid:
            metadata["uid"] = self.uid
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
            "spec": {"secretTemplate": self.template.to_dict()},
            "status": self.status.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class OwnerReference:
    """Back-reference from a materialized secret to its SecretMangler."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }


@dataclass
class Secret:
    """A flat field -> bytes secret, either a source or a materialized one."""

    name: str
    namespace: str
    data: dict[str, bytes] = field(default_factory=dict)
    type: str = "Opaque"
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: tuple[OwnerReference, ...] = ()
    resource_version: str | None = None

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef(self.namespace, self.name)

    @property
    def controller_owner(self) -> OwnerReference | None:
        """The owner reference flagged as controller, if any."""
        for owner in self.owner_references:
            if owner.controller:
                return owner
        return None
