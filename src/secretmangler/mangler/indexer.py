"""
Reverse-dependency lookup from source secrets to SecretMangler objects.

When a secret changes, every SecretMangler referencing it has to be
reconciled again. ``affected_templates`` scans all templates on every
call; ``ReferenceIndex`` keeps the same answer in an explicit map that is
maintained from template events.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from secretmangler.mangler.models import ObjectRef, SecretMangler
from secretmangler.mangler.references import Malformed, Reference, is_reference, parse

logger = structlog.get_logger()


def _references(mangler: SecretMangler) -> Iterable[Reference]:
    for target_field, value in mangler.template.mappings.items():
        if not is_reference(value):
            continue
        parsed = parse(value)
        if isinstance(parsed, Malformed):
            logger.warning(
                "faulty_lookup_string",
                mangler=str(mangler.ref),
                field=target_field,
                value=value,
                reason=parsed.reason,
            )
            continue
        yield parsed


def referenced_secrets(mangler: SecretMangler) -> set[ObjectRef]:
    """Source secrets referenced by a template, with namespaces defaulted."""
    return {reference.source(mangler.namespace) for reference in _references(mangler)}


def affected_templates(changed: ObjectRef, manglers: Iterable[SecretMangler]) -> set[ObjectRef]:
    """Templates that reference ``changed`` (full scan, nothing cached)."""
    affected: set[ObjectRef] = set()
    for mangler in manglers:
        for reference in _references(mangler):
            if reference.source(mangler.namespace) == changed:
                affected.add(mangler.ref)
                break
    return affected


class ReferenceIndex:
    """Incrementally maintained map of source secret -> referencing templates."""

    def __init__(self) -> None:
        self._by_source: dict[ObjectRef, set[ObjectRef]] = {}
        self._by_template: dict[ObjectRef, set[ObjectRef]] = {}

    def upsert(self, mangler: SecretMangler) -> None:
        """Add or refresh the references of a template."""
        self.remove(mangler.ref)
        sources = referenced_secrets(mangler)
        self._by_template[mangler.ref] = sources
        for source in sources:
            self._by_source.setdefault(source, set()).add(mangler.ref)

    def remove(self, ref: ObjectRef) -> None:
        """Forget a deleted template."""
        for source in self._by_template.pop(ref, set()):
            templates = self._by_source.get(source)
            if templates is None:
                continue
            templates.discard(ref)
            if not templates:
                del self._by_source[source]

    def rebuild(self, manglers: Iterable[SecretMangler]) -> None:
        """Replace the index contents with the given templates."""
        self._by_source.clear()
        self._by_template.clear()
        for mangler in manglers:
            self.upsert(mangler)

    def lookup(self, changed: ObjectRef) -> set[ObjectRef]:
        """Templates that reference ``changed``."""
        return set(self._by_source.get(changed, ()))

    def sources_of(self, ref: ObjectRef) -> set[ObjectRef]:
        return set(self._by_template.get(ref, ()))

    def __contains__(self, ref: object) -> bool:
        return ref in self._by_template

    def __len__(self) -> int:
        return len(self._by_template)
