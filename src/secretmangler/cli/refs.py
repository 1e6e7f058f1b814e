"""
CLI command that explains the mappings of SecretMangler manifests.

Commands:
    secretmangler refs <mangler.yaml>  - Show how each mapping is interpreted
"""

from __future__ import annotations

from secretmangler.cli.manifests import load_manglers
from secretmangler.cli.ux import error, header, print_key_value, print_table, success
from secretmangler.config.settings import Settings
from secretmangler.core.errors import ConfigurationError, ExitCode, main_with_error_handling
from secretmangler.mangler.models import SecretMangler
from secretmangler.mangler.references import LiteralValue, Malformed, parse


def mapping_rows(mangler: SecretMangler) -> list[list[str]]:
    """One row per mapping: field, kind, source, detail."""
    rows = []
    for target_field in sorted(mangler.template.mappings):
        value = mangler.template.mappings[target_field]
        parsed = parse(value)
        if isinstance(parsed, LiteralValue):
            rows.append([target_field, "literal", "-", f"{len(parsed.to_bytes())} bytes"])
        elif isinstance(parsed, Malformed):
            rows.append([target_field, "malformed", value, parsed.reason])
        else:
            rows.append([target_field, "reference", str(parsed.source(mangler.namespace)), parsed.field])
    return rows


@main_with_error_handling()
def refs_command(manifest: str, settings: Settings) -> int:
    """
    Show literal, reference and malformed mappings of each SecretMangler.

    Returns:
        0 if every lookup string parses, 10 otherwise
    """
    manglers = load_manglers(manifest, kind=settings.crd_kind)
    if not manglers:
        raise ConfigurationError(f"no {settings.crd_kind} objects found in {manifest}")

    faulty = 0
    for mangler in manglers:
        header(f"{settings.crd_kind} {mangler.ref}")
        print_key_value(
            {
                "target": str(mangler.target),
                "cascadeMode": mangler.template.cascade_mode.value,
            }
        )
        rows = mapping_rows(mangler)
        print_table("Mappings", ["Field", "Kind", "Source", "Detail"], rows)
        faulty += sum(1 for row in rows if row[1] == "malformed")

    if faulty:
        error(f"{faulty} faulty lookup string(s)")
        return ExitCode.CONFIG_ERROR
    success("all lookup strings are valid")
    return 0
