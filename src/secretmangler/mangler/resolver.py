"""
Data resolution.

Turns the mappings of a secret template into concrete bytes, reading
referenced source secrets through a lookup callable.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping

import structlog

from secretmangler.core.errors import MalformedReferenceError, SourceNotFoundError
from secretmangler.mangler.models import ObjectRef
from secretmangler.mangler.references import LiteralValue, Malformed, Reference, parse

logger = structlog.get_logger()

SecretLookup = Callable[[ObjectRef], Awaitable[Mapping[str, bytes] | None]]


def parse_mappings(mappings: Mapping[str, str]) -> dict[str, LiteralValue | Reference]:
    """Parse every mapping value, raising on the first malformed one."""
    parsed: dict[str, LiteralValue | Reference] = {}
    for target_field in sorted(mappings):
        value = mappings[target_field]
        result = parse(value)
        if isinstance(result, Malformed):
            raise MalformedReferenceError(target_field, value, result.reason)
        parsed[target_field] = result
    return parsed


async def resolve_data(
    mappings: Mapping[str, str],
    owner_namespace: str,
    lookup: SecretLookup,
    *,
    fail_fast: bool,
) -> dict[str, bytes]:
    """
    Resolve mappings into a field -> bytes map.

    Args:
        mappings: Target field -> literal or lookup string
        owner_namespace: Namespace used for lookups that omit one
        lookup: Returns the data of a source secret, or None if it does not exist
        fail_fast: Raise SourceNotFoundError on a missing source instead of
            skipping the mapping

    Returns:
        New dict with the literal and successfully resolved entries

    Raises:
        MalformedReferenceError: A mapping value is a faulty lookup string
        SourceNotFoundError: A source secret is missing and fail_fast is set
    """
    parsed = parse_mappings(mappings)

    # One read per source secret for this pass
    sources: dict[ObjectRef, Mapping[str, bytes] | None] = {}
    data: dict[str, bytes] = {}

    for target_field, value in parsed.items():
        if isinstance(value, LiteralValue):
            data[target_field] = value.to_bytes()
            continue

        source = value.source(owner_namespace)
        if source not in sources:
            sources[source] = await lookup(source)
        source_data = sources[source]

        if source_data is None:
            if fail_fast:
                raise SourceNotFoundError(str(source), value.field)
            logger.info(
                "source_secret_missing",
                field=target_field,
                source=str(source),
            )
            continue

        if value.field not in source_data:
            logger.info(
                "source_field_missing",
                field=target_field,
                source=str(source),
                source_field=value.field,
            )
            continue

        data[target_field] = bytes(source_data[value.field])

    return data
