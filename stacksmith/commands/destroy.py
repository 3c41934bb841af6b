"""CLI command for deleting a deployed stack."""

import click

from stacksmith.commands.base import (
    cancel_on_interrupt,
    command_context,
    report_outcome,
)


@click.command(name="destroy")
@click.argument("stack_name")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def destroy(ctx: click.Context, stack_name: str, yes: bool) -> None:
    """Delete STACK_NAME and every resource it manages.

    Resources with a Retain deletion policy are left in place by the provider.
    """
    if not yes:
        click.confirm(f"Destroy stack {stack_name}?", abort=True)

    orchestrator = command_context(ctx).orchestrator(stack_name)
    with cancel_on_interrupt(orchestrator):
        outcome = orchestrator.destroy(stack_name)

    report_outcome(outcome)
    ctx.exit(int(outcome.result_code))
