"""
CLI command for previewing a materialized secret.

Commands:
    secretmangler render <mangler.yaml>                          - Resolve against the cluster
    secretmangler render <mangler.yaml> --local --secrets s.yaml - Resolve against local manifests
    secretmangler render <mangler.yaml> --output json            - Output as JSON
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from collections.abc import Sequence

import yaml

from secretmangler.cli.manifests import load_manglers, load_secrets, secret_to_manifest
from secretmangler.cli.ux import console, error, warning
from secretmangler.config.settings import Settings
from secretmangler.core.errors import ConfigurationError, main_with_error_handling
from secretmangler.mangler.materializer import build_secret
from secretmangler.mangler.models import Secret, SecretMangler
from secretmangler.mangler.resolver import resolve_data
from secretmangler.store.base import SecretStore
from secretmangler.store.kubernetes import KubernetesSecretStore
from secretmangler.store.memory import InMemorySecretStore

# Shown in place of the UID the API server assigns on create
PENDING_UID = "<assigned-on-create>"


async def render_secret(mangler: SecretMangler, store: SecretStore) -> Secret:
    """Resolve ``mangler`` like the create path and build its secret."""
    data = await resolve_data(
        mangler.template.mappings,
        mangler.namespace,
        store.read_secret_data,
        fail_fast=True,
    )
    if mangler.uid is None:
        mangler = dataclasses.replace(mangler, uid=PENDING_UID)
    return build_secret(mangler, data)


def _build_store(settings: Settings, local: bool, secret_files: Sequence[str]) -> SecretStore:
    if not local:
        return KubernetesSecretStore.from_settings(settings)
    store = InMemorySecretStore()
    for path in secret_files:
        for secret in load_secrets(path):
            store.put_secret(secret)
    return store


@main_with_error_handling()
def render_command(
    manifest: str,
    settings: Settings,
    secret_files: Sequence[str] = (),
    local: bool = False,
    output_format: str = "yaml",
) -> int:
    """
    Print the secrets the given SecretMangler manifests would materialize.

    Exit codes:
        0 - Success
        10 - Invalid manifest or faulty lookup string
        11 - Cluster access failed
        12 - A referenced secret does not exist

    Args:
        manifest: Path to a YAML file with one or more SecretMangler objects
        settings: Operator settings (cluster access, CRD coordinates)
        secret_files: Secret manifests used as sources with --local
        local: Resolve against secret_files instead of the cluster
        output_format: "yaml" or "json"

    Returns:
        Exit code
    """
    manglers = load_manglers(manifest, kind=settings.crd_kind)
    if not manglers:
        raise ConfigurationError(f"no {settings.crd_kind} objects found in {manifest}")
    if local and not secret_files:
        warning("--local without --secrets: only literal mappings can resolve")

    store = _build_store(settings, local, secret_files)

    async def _render_all() -> list[Secret]:
        return [await render_secret(mangler, store) for mangler in manglers]

    secrets = asyncio.run(_render_all())
    documents = [secret_to_manifest(secret) for secret in secrets]

    if output_format == "json":
        payload = documents[0] if len(documents) == 1 else {"apiVersion": "v1", "kind": "List", "items": documents}
        console.print(json.dumps(payload, indent=2), soft_wrap=True, markup=False, emoji=False, highlight=False)
    elif output_format == "yaml":
        console.print(
            yaml.safe_dump_all(documents, sort_keys=False),
            end="",
            soft_wrap=True,
            markup=False,
            emoji=False,
            highlight=False,
        )
    else:
        error(f"unknown output format {output_format!r}")
        return 2
    return 0
