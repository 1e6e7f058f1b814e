"""
secret-mangler CLI

Usage:
    secretmangler <command> [args]

Runs the SecretMangler controller and offers offline helpers for
inspecting and previewing SecretMangler manifests.
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Sequence

from secretmangler.config.settings import Settings, get_settings
from secretmangler.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secretmangler",
        description="Compose Kubernetes secrets from literals and fields of other secrets",
    )
    parser.add_argument("--log-level", help="Log level (default: SECRETMANGLER_LOG_LEVEL or INFO)")
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        help="Log output format (default: SECRETMANGLER_LOG_FORMAT or json)",
    )
    parser.add_argument("--kubeconfig", help="Path to kubeconfig (default: in-cluster, then KUBECONFIG)")
    parser.add_argument("--context", help="Kubeconfig context to use")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the controller")
    run_parser.add_argument("--namespace", "-n", help="Only watch this namespace (default: all)")
    run_parser.add_argument("--workers", type=int, help="Number of reconcile workers")
    run_parser.add_argument(
        "--resync-interval", type=float, help="Seconds between full resyncs (0 disables)"
    )
    run_parser.add_argument(
        "--scan",
        action="store_true",
        help="Find affected templates by scanning instead of the reference index",
    )

    render_parser = subparsers.add_parser(
        "render", help="Print the secret a SecretMangler manifest would produce"
    )
    render_parser.add_argument("manifest", help="Path to SecretMangler YAML")
    render_parser.add_argument(
        "--local",
        action="store_true",
        help="Resolve references against local Secret manifests instead of the cluster",
    )
    render_parser.add_argument(
        "--secrets",
        "-s",
        dest="secret_files",
        action="append",
        default=[],
        help="Secret manifest used as a source with --local (repeatable)",
    )
    render_parser.add_argument("--output", "-o", choices=["yaml", "json"], default="yaml")

    refs_parser = subparsers.add_parser(
        "refs", help="Show how each mapping of a SecretMangler manifest is interpreted"
    )
    refs_parser.add_argument("manifest", help="Path to SecretMangler YAML")

    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    for option in ("log_level", "log_format", "kubeconfig", "context", "namespace", "workers", "resync_interval"):
        value = getattr(args, option, None)
        if value is not None:
            overrides[option] = value
    if getattr(args, "scan", False):
        overrides["use_reference_index"] = False
    settings = get_settings()
    return settings.model_copy(update=overrides) if overrides else settings


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = _settings_from_args(args)
    configure_logging(settings.log_level, settings.log_format)

    if args.command == "run":
        from secretmangler.cli.run import run_command

        sys.exit(run_command(settings))

    if args.command == "render":
        from secretmangler.cli.render import render_command

        sys.exit(
            render_command(
                args.manifest,
                settings,
                secret_files=args.secret_files,
                local=args.local,
                output_format=args.output,
            )
        )

    if args.command == "refs":
        from secretmangler.cli.refs import refs_command

        sys.exit(refs_command(args.manifest, settings))

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
