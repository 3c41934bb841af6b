"""Stacksmith command line interface."""

from pathlib import Path
from typing import Optional

import click

from stacksmith import __version__
from stacksmith.commands import register_all_commands
from stacksmith.config import load_config
from stacksmith.exceptions import ConfigurationError
from stacksmith.logging_config import configure_logging


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    envvar="STACKSMITH_CONFIG_PATH",
    help="Configuration file (default: ~/.config/stacksmith/config.yaml)",
)
@click.option(
    "--log-level",
    default=None,
    help="Logging level (DEBUG, INFO, WARNING, ERROR)",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.option("--region", default=None, help="Provider region")
@click.version_option(__version__, prog_name="stacksmith")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[Path],
    log_level: Optional[str],
    json_logs: bool,
    region: Optional[str],
) -> None:
    """Stacksmith - validate, synthesize and deploy infrastructure stacks."""
    ctx.ensure_object(dict)
    cli_args = {
        "logging": {"level": log_level, "json_output": json_logs or None},
        "deployment": {"region": region},
    }
    try:
        config = load_config(config_path, cli_args)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    configure_logging(config.logging.level, config.logging.json_output)
    ctx.obj["config"] = config


register_all_commands(cli)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
