"""
Secret materialization.

Builds the concrete secret for a SecretMangler. The owner reference lets the
Kubernetes garbage collector remove the secret together with its template
and lets the controller map secret events back to the owning template.
"""

from __future__ import annotations

from collections.abc import Mapping

from secretmangler.core.errors import LinkageError
from secretmangler.mangler.models import (
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    OwnerReference,
    Secret,
    SecretMangler,
)


def owner_reference_for(mangler: SecretMangler, target_namespace: str) -> OwnerReference:
    """Controller owner reference pointing at ``mangler``."""
    missing = [
        name
        for name, value in (
            ("uid", mangler.uid),
            ("apiVersion", mangler.api_version),
            ("kind", mangler.kind),
        )
        if not value
    ]
    if missing:
        raise LinkageError(
            f"cannot set owner reference, owner {mangler.ref} lacks {', '.join(missing)}",
            details={"mangler": str(mangler.ref), "missing": missing},
        )
    if mangler.namespace != target_namespace:
        raise LinkageError(
            "cross-namespace owner references are disallowed",
            details={
                "mangler": str(mangler.ref),
                "owner_namespace": mangler.namespace,
                "target_namespace": target_namespace,
            },
        )
    return OwnerReference(
        api_version=mangler.api_version,
        kind=mangler.kind,
        name=mangler.name,
        uid=mangler.uid,  # type: ignore[arg-type]
    )


def build_secret(
    mangler: SecretMangler,
    data: Mapping[str, bytes],
    resource_version: str | None = None,
) -> Secret:
    """Build the secret described by ``mangler`` holding ``data``.

    Nothing is sent to the store.
    """
    template = mangler.template
    owner = owner_reference_for(mangler, template.namespace)

    labels = dict(template.labels)
    labels[MANAGED_BY_LABEL] = MANAGED_BY_VALUE

    return Secret(
        name=template.name,
        namespace=template.namespace,
        data=dict(data),
        type="Opaque",
        labels=labels,
        annotations=dict(template.annotations),
        owner_references=(owner,),
        resource_version=resource_version,
    )
