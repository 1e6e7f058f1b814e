"""
YAML manifest loading for the CLI.

Reads multi-document YAML files holding SecretMangler objects and core/v1
Secrets, and renders secrets back into manifest form.
"""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Any

import yaml

from secretmangler.core.errors import ConfigurationError
from secretmangler.mangler.models import Secret, SecretMangler


def load_documents(path: str | Path) -> list[dict[str, Any]]:
    """Load every non-empty YAML document of a file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"manifest not found: {path}")
    try:
        with path.open() as f:
            documents = list(yaml.safe_load_all(f))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e

    result = []
    for doc in documents:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise ConfigurationError(f"unexpected document in {path}", details={"type": type(doc).__name__})
        if doc.get("kind") == "List":
            result.extend(item for item in doc.get("items", []) if isinstance(item, dict))
        else:
            result.append(doc)
    return result


def load_manglers(path: str | Path, kind: str = "SecretMangler") -> list[SecretMangler]:
    return [SecretMangler.from_dict(doc) for doc in load_documents(path) if doc.get("kind") == kind]


def secret_from_manifest(doc: dict[str, Any], default_namespace: str = "default") -> Secret:
    """Build a Secret from a manifest, decoding ``data`` and merging ``stringData``."""
    metadata = doc.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        raise ConfigurationError("Secret manifest requires metadata.name")

    data: dict[str, bytes] = {}
    for key, value in (doc.get("data") or {}).items():
        try:
            data[key] = base64.b64decode(str(value), validate=True)
        except binascii.Error as e:
            raise ConfigurationError(
                f"Secret {name} has invalid base64 in data.{key}",
                details={"secret": name, "field": key},
            ) from e
    for key, value in (doc.get("stringData") or {}).items():
        data[key] = str(value).encode("utf-8")

    return Secret(
        name=name,
        namespace=metadata.get("namespace") or default_namespace,
        data=data,
        type=doc.get("type") or "Opaque",
        labels=dict(metadata.get("labels") or {}),
        annotations=dict(metadata.get("annotations") or {}),
    )


def load_secrets(path: str | Path, default_namespace: str = "default") -> list[Secret]:
    return [
        secret_from_manifest(doc, default_namespace)
        for doc in load_documents(path)
        if doc.get("kind") == "Secret"
    ]


def secret_to_manifest(secret: Secret) -> dict[str, Any]:
    """Render a Secret as a core/v1 manifest with base64 data."""
    metadata: dict[str, Any] = {"name": secret.name, "namespace": secret.namespace}
    if secret.labels:
        metadata["labels"] = dict(secret.labels)
    if secret.annotations:
        metadata["annotations"] = dict(secret.annotations)
    if secret.owner_references:
        metadata["ownerReferences"] = [owner.to_dict() for owner in secret.owner_references]
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": metadata,
        "type": secret.type,
        "data": {key: base64.b64encode(value).decode("ascii") for key, value in sorted(secret.data.items())},
    }
