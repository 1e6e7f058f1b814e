"""
Cascade decisions.

Compares the data of an existing materialized secret with freshly resolved
data and decides, according to the template's cascade mode, whether the
secret is left alone, updated or deleted.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

import structlog

from secretmangler.mangler.models import CascadeMode

logger = structlog.get_logger()

NO_DATA_LABEL = "NoData"


class Action(str, Enum):
    """Store operation required for the materialized secret."""

    NO_ACTION = "NoAction"
    UPDATE = "Update"
    DELETE = "Delete"


@dataclass(frozen=True)
class Decision:
    """Outcome of a cascade decision.

    ``data`` is what should be materialized on UPDATE; it includes values
    re-inserted under KeepLostSync. ``label`` is reported as lastAction.
    """

    action: Action
    data: dict[str, bytes]
    label: str
    lost_keys: tuple[str, ...] = field(default_factory=tuple)


def decide(
    previous: Mapping[str, bytes],
    resolved: Mapping[str, bytes],
    mode: CascadeMode,
) -> Decision:
    """Decide what happens to a materialized secret.

    Args:
        previous: Data of the existing materialized secret
        resolved: Data resolved in this pass (missing sources already skipped)
        mode: Cascade mode of the template

    Returns:
        Decision with the action, the data to materialize and a status label
    """
    label = mode.value
    if mode is CascadeMode.KEEP_NO_ACTION:
        return Decision(Action.NO_ACTION, dict(previous), label)

    lost = tuple(sorted(key for key in previous if key not in resolved))

    if lost and mode is CascadeMode.CASCADE_DELETE:
        logger.info("cascade_delete", lost_keys=list(lost))
        return Decision(Action.DELETE, {}, label, lost)

    data = dict(resolved)
    if mode is CascadeMode.KEEP_LOST_SYNC:
        for key in lost:
            logger.info("keeping_lost_key", key=key)
            data[key] = previous[key]
    elif lost:
        logger.info("removing_lost_keys", lost_keys=list(lost))

    if not data:
        logger.info("no_data_left")
        return Decision(Action.DELETE, data, label if lost else NO_DATA_LABEL, lost)

    changed = any(
        resolved[key] != value for key, value in previous.items() if key in resolved
    )
    added = any(key not in previous for key in data)

    if lost or changed or added:
        return Decision(Action.UPDATE, data, label, lost)
    return Decision(Action.NO_ACTION, data, label, lost)
