"""
CLI commands for secret-mangler.
"""

from secretmangler.cli.refs import refs_command
from secretmangler.cli.render import render_command
from secretmangler.cli.run import run_command

__all__ = [
    "refs_command",
    "render_command",
    "run_command",
]
