"""CLI command for deploying a stack."""

import logging

import click

from stacksmith.commands.base import (
    cancel_on_interrupt,
    command_context,
    console,
    load_app,
    render_diff,
    report_outcome,
)
from stacksmith.deployment.orchestrator import ResultCode

logger = logging.getLogger(__name__)


@click.command(name="deploy")
@click.argument("stack_name")
@click.option("--app", "app_ref", required=True, help="Stack definition as module:attribute")
@click.option("--dry-run", is_flag=True, help="Plan only; same as the diff command")
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Do not ask for confirmation before replacing resources",
)
@click.pass_context
def deploy(ctx: click.Context, stack_name: str, app_ref: str, dry_run: bool, yes: bool) -> None:
    """Validate, synthesize and deploy a stack as STACK_NAME.

    Exit codes: 0 success, 1 validation failed, 2 deployment failed or
    rolled back, 3 cancelled.

    Examples:

        stacksmith deploy orders --app myinfra.app:stack

        stacksmith deploy orders --app infra.py:build --dry-run
    """
    command = command_context(ctx)
    source = load_app(app_ref)

    plan = command.orchestrator(stack_name).plan(stack_name, source)
    if not plan.succeeded or plan.diff is None:
        report_outcome(plan)
        ctx.exit(int(plan.result_code))
    render_diff(plan.diff, title=f"Changes for {stack_name}")

    if dry_run or plan.diff.is_empty:
        ctx.exit(int(ResultCode.SUCCESS))

    if plan.diff.has_replacements and not yes:
        click.confirm(
            "Some resources will be replaced (deleted and recreated). Continue?",
            abort=True,
        )

    orchestrator = command.orchestrator(stack_name)
    with cancel_on_interrupt(orchestrator):
        outcome = orchestrator.deploy(stack_name, source)

    report_outcome(outcome)
    if outcome.handle is not None and outcome.handle.operation_id:
        console.print(f"[dim]Operation: {outcome.handle.operation_id}[/dim]")
    logger.info(f"Deploy of {stack_name} finished as {outcome.state.value}")
    ctx.exit(int(outcome.result_code))
