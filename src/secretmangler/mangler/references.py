"""
Lookup string parser.

A mapping value is either a literal or a lookup string of the form
``<[namespace/]secretName:field>`` pointing at a field of another secret.
There is no escaping, so ``/`` and ``:`` cannot appear inside names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from secretmangler.mangler.models import ObjectRef

REFERENCE_PREFIX = "<"
REFERENCE_SUFFIX = ">"
NAMESPACE_SEPARATOR = "/"
FIELD_SEPARATOR = ":"


@dataclass(frozen=True, slots=True)
class LiteralValue:
    """A fixed value stored verbatim."""

    value: str

    def to_bytes(self) -> bytes:
        return self.value.encode("utf-8")


@dataclass(frozen=True, slots=True)
class Reference:
    """A pointer to ``field`` of secret ``secret_name``.

    ``namespace`` is empty when the lookup string omits it; the owner's
    namespace is substituted at resolution time.
    """

    secret_name: str
    field: str
    namespace: str = ""

    def effective_namespace(self, owner_namespace: str) -> str:
        return self.namespace or owner_namespace

    def source(self, owner_namespace: str) -> ObjectRef:
        return ObjectRef(self.effective_namespace(owner_namespace), self.secret_name)

    def __str__(self) -> str:
        prefix = f"{self.namespace}{NAMESPACE_SEPARATOR}" if self.namespace else ""
        return f"{REFERENCE_PREFIX}{prefix}{self.secret_name}{FIELD_SEPARATOR}{self.field}{REFERENCE_SUFFIX}"


@dataclass(frozen=True, slots=True)
class Malformed:
    """A lookup string that cannot be parsed."""

    value: str
    reason: str


ParsedValue = Union[LiteralValue, Reference, Malformed]


def is_reference(value: str) -> bool:
    """Check if a value is wrapped in ``<`` and ``>`` and must be parsed as a lookup."""
    return value.startswith(REFERENCE_PREFIX) and value.endswith(REFERENCE_SUFFIX)


def parse(value: str) -> ParsedValue:
    """Parse a mapping value into a literal, a reference or a malformed lookup."""
    if not is_reference(value):
        return LiteralValue(value)

    inner = value[len(REFERENCE_PREFIX) : len(value) - len(REFERENCE_SUFFIX)]
    if not inner:
        return Malformed(value, "empty lookup string")

    namespace, separator, rest = inner.partition(NAMESPACE_SEPARATOR)
    if not separator:
        namespace, rest = "", inner
    elif not namespace:
        return Malformed(value, "empty namespace")
    elif NAMESPACE_SEPARATOR in rest:
        return Malformed(value, "more than one namespace separator")

    secret_name, separator, field = rest.partition(FIELD_SEPARATOR)
    if not separator:
        return Malformed(value, "missing secret:field separator")
    if not secret_name or not field:
        return Malformed(value, "secret name and field must not be empty")
    if FIELD_SEPARATOR in field:
        return Malformed(value, "more than one field separator")

    return Reference(secret_name=secret_name, field=field, namespace=namespace)
