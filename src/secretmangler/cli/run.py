"""
CLI command that runs the controller against a cluster.

Commands:
    secretmangler run                     - Watch all namespaces
    secretmangler run --namespace team-a  - Watch a single namespace
"""

from __future__ import annotations

import asyncio

import structlog

from secretmangler.cli.ux import info
from secretmangler.config.settings import Settings
from secretmangler.controller.manager import SecretManglerController
from secretmangler.core.errors import StoreError, main_with_error_handling
from secretmangler.store.kubernetes import KubernetesSecretStore

logger = structlog.get_logger()


async def _run(settings: Settings) -> None:
    store = KubernetesSecretStore.from_settings(settings)
    health = await store.health_check()
    if not health.healthy:
        raise StoreError(health.message)
    logger.info("store_connected", store=store.name, latency_ms=health.latency_ms)

    controller = SecretManglerController(store, settings)
    await controller.run()


@main_with_error_handling()
def run_command(settings: Settings) -> int:
    """Run the SecretMangler controller until interrupted."""
    info(f"Watching {settings.crd_kind} objects in {settings.namespace or 'all namespaces'}")
    asyncio.run(_run(settings))
    return 0
