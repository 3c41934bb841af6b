"""CLI command for synthesizing a template."""

import logging
from pathlib import Path
from typing import Optional

import click
from rich.markup import escape

from stacksmith.commands.base import (
    build_stack,
    command_context,
    console,
    err_console,
    exit_with_error,
    load_app,
    render_violations,
)
from stacksmith.config import DocumentStyle, TemplateFormat
from stacksmith.exceptions import ValidationError
from stacksmith.iac.emitters import get_emitter
from stacksmith.iac.synthesizer import synthesize

logger = logging.getLogger(__name__)


@click.command(name="synth")
@click.option("--app", "app_ref", required=True, help="Stack definition as module:attribute")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([f.value for f in TemplateFormat]),
    default=None,
    help="Template format (default from config: cloudformation)",
)
@click.option(
    "--style",
    type=click.Choice([s.value for s in DocumentStyle]),
    default=None,
    help="JSON or YAML for cloudformation output",
)
@click.option(
    "--out",
    "out_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory to write the template to (prints to stdout if omitted)",
)
@click.option("--name", default="template", help="File name (without extension) under --out")
@click.pass_context
def synth(
    ctx: click.Context,
    app_ref: str,
    output_format: Optional[str],
    style: Optional[str],
    out_dir: Optional[Path],
    name: str,
) -> None:
    """Validate a stack and render its template.

    Nothing is sent to the provider.

    Examples:

        stacksmith synth --app myinfra.app:stack

        stacksmith synth --app infra.py:build --style yaml --out ./cdk.out
    """
    command = command_context(ctx)
    synth_config = command.config.synth

    try:
        stack = build_stack(load_app(app_ref))
    except ValidationError as e:
        render_violations(e)
        raise SystemExit(1)

    for warning in stack.warnings:
        err_console.print(f"[yellow]warning:[/yellow] {escape(warning)}")

    template = synthesize(stack)
    format_name = output_format or synth_config.output_format.value
    try:
        emitter_class = get_emitter(format_name)
    except KeyError as e:
        exit_with_error(str(e))
    emitter = emitter_class(
        {"style": style or synth_config.style.value, "indent": synth_config.indent}
    )

    if out_dir is None:
        console.print(
            emitter.render(template), markup=False, emoji=False, highlight=False, soft_wrap=True
        )
        return

    path = emitter.write(template, out_dir, name)
    logger.info(f"Wrote {len(template)} resources to {path}")
    err_console.print(f"[green]Wrote[/green] {path}")
