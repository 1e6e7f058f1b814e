"""
SecretMangler materialization and synchronization engine.

Parses lookup strings in template mappings, resolves them against source
secrets, decides how cascade modes react to changed sources and keeps the
materialized secret in sync.
"""

from secretmangler.mangler.cascade import NO_DATA_LABEL, Action, Decision, decide
from secretmangler.mangler.indexer import ReferenceIndex, affected_templates, referenced_secrets
from secretmangler.mangler.materializer import build_secret, owner_reference_for
from secretmangler.mangler.models import (
    CascadeMode,
    ObjectRef,
    OwnerReference,
    Secret,
    SecretMangler,
    SecretTemplate,
    TemplateStatus,
)
from secretmangler.mangler.reconciler import Outcome, ReconcileResult, SecretManglerReconciler
from secretmangler.mangler.references import LiteralValue, Malformed, Reference, is_reference, parse
from secretmangler.mangler.resolver import resolve_data

__all__ = [
    # Models
    "CascadeMode",
    "ObjectRef",
    "OwnerReference",
    "Secret",
    "SecretMangler",
    "SecretTemplate",
    "TemplateStatus",
    # References
    "LiteralValue",
    "Malformed",
    "Reference",
    "is_reference",
    "parse",
    # Engine
    "resolve_data",
    "Action",
    "Decision",
    "NO_DATA_LABEL",
    "decide",
    "build_secret",
    "owner_reference_for",
    "Outcome",
    "ReconcileResult",
    "SecretManglerReconciler",
    # Indexer
    "ReferenceIndex",
    "affected_templates",
    "referenced_secrets",
]
