"""CLI command for comparing a stack with what is deployed."""

import click

from stacksmith.commands.base import (
    cancel_on_interrupt,
    command_context,
    load_app,
    render_diff,
    report_outcome,
)


@click.command(name="diff")
@click.argument("stack_name")
@click.option("--app", "app_ref", required=True, help="Stack definition as module:attribute")
@click.option("--show-unchanged", is_flag=True, help="Also list unchanged resources")
@click.pass_context
def diff(ctx: click.Context, stack_name: str, app_ref: str, show_unchanged: bool) -> None:
    """Show what a deploy of STACK_NAME would change, without changing it.

    Exits 0 on success, 1 when validation fails and 2 when the deployed
    template cannot be read.
    """
    command = command_context(ctx)
    source = load_app(app_ref)
    orchestrator = command.orchestrator(stack_name)

    with cancel_on_interrupt(orchestrator):
        outcome = orchestrator.plan(stack_name, source)

    if outcome.succeeded and outcome.diff is not None:
        render_diff(outcome.diff, title=f"Changes for {stack_name}", show_unchanged=show_unchanged)
    else:
        report_outcome(outcome)
    ctx.exit(int(outcome.result_code))
