"""Command registry for the CLI.

Each command lives in its own module; register_all_commands() adds them to
the main click group.
"""

import importlib
import logging

import click

from .base import (
    CommandContext,
    cancel_on_interrupt,
    command_context,
    exit_with_error,
    load_app,
    render_diff,
)

logger = logging.getLogger(__name__)

# Mapping of command names to their module paths
_COMMAND_MODULES: dict[str, str] = {
    "synth": "stacksmith.commands.synth",
    "diff": "stacksmith.commands.diff",
    "deploy": "stacksmith.commands.deploy",
    "destroy": "stacksmith.commands.destroy",
}


def register_all_commands(cli_group: click.Group) -> None:
    """Register every command with a CLI group.

    Args:
        cli_group: Click group to register commands with
    """
    for name, module_path in _COMMAND_MODULES.items():
        module = importlib.import_module(module_path)
        command = getattr(module, name.replace("-", "_"), None)
        if isinstance(command, click.Command):
            cli_group.add_command(command, name)
            logger.debug(f"Added command {name} to CLI")
        else:
            logger.warning(f"Module {module_path} does not define command {name}")


__all__ = [
    "CommandContext",
    "cancel_on_interrupt",
    "command_context",
    "exit_with_error",
    "load_app",
    "register_all_commands",
    "render_diff",
]
