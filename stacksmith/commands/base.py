"""Base command infrastructure and shared utilities.

- CommandContext for the loaded configuration and provider wiring
- load_app() to import the user's stack definition
- render_diff() to print a DiffResult as a rich table
- cancel_on_interrupt() to turn Ctrl-C into an orchestrator cancel
"""

import contextlib
import importlib
import importlib.util
import signal
import sys
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stacksmith.config import StacksmithConfig
from stacksmith.deployment.cloudformation_client import CloudFormationProvisioningClient
from stacksmith.deployment.orchestrator import DeploymentOrchestrator, DeploymentOutcome
from stacksmith.deployment.provider import ProvisioningClient
from stacksmith.exceptions import StacksmithError, ValidationError
from stacksmith.iac.diff import ChangeType, DiffResult
from stacksmith.iac.stack import Stack, StackAssembler
from stacksmith.iac.verification import CloudControlVerifier, IdentityVerifier

console = Console()
err_console = Console(stderr=True)

_CHANGE_STYLES = {
    "added": "green",
    "removed": "red",
    "modified": "yellow",
    "replaced": "bold magenta",
    "unchanged": "dim",
}


class CommandContext:
    """Shared context for command execution."""

    def __init__(
        self,
        ctx: click.Context,
        config: StacksmithConfig,
        client: Optional[ProvisioningClient] = None,
    ):
        self.click_ctx = ctx
        self.config = config
        self._client = client
        self._verifiers: dict = {}

    def for_stack(self, stack_name: str) -> StacksmithConfig:
        return self.config.get_stack_config(stack_name)

    def get_client(self, stack_name: str) -> ProvisioningClient:
        """Provisioning client (injected in tests, CloudFormation otherwise)."""
        if self._client is None:
            region = self.for_stack(stack_name).deployment.region
            self._client = CloudFormationProvisioningClient(region=region)
        return self._client

    def get_verifier(self, stack_name: str) -> Optional[IdentityVerifier]:
        """Reference verifier, shared by every orchestrator of this command."""
        config = self.for_stack(stack_name)
        if not config.verification.enabled:
            return None
        if stack_name not in self._verifiers:
            self._verifiers[stack_name] = CloudControlVerifier(
                region=config.deployment.region,
                max_retries=config.verification.max_retries,
                cache_ttl=config.verification.cache_ttl_seconds,
            )
        return self._verifiers[stack_name]

    def orchestrator(self, stack_name: str) -> DeploymentOrchestrator:
        config = self.for_stack(stack_name)
        return DeploymentOrchestrator(
            self.get_client(stack_name),
            config.deployment,
            verifier=self.get_verifier(stack_name),
            strict_verification=config.verification.strict,
            listener=lambda state: err_console.print(f"[cyan]-> {state.value}[/cyan]"),
        )


def command_context(ctx: click.Context) -> CommandContext:
    """Create CommandContext from click context."""
    return CommandContext(
        ctx=ctx,
        config=ctx.obj["config"],
        client=ctx.obj.get("client"),
    )


def exit_with_error(message: str, code: int = 1) -> None:
    """Exit with error message."""
    err_console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(code)


def _import_target(module_ref: str) -> Any:
    if module_ref.endswith(".py") or "/" in module_ref:
        path = Path(module_ref).resolve()
        if not path.is_file():
            raise click.BadParameter(f"No such file: {module_ref}", param_hint="--app")
        spec = importlib.util.spec_from_file_location(path.stem, path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(module_ref)


def load_app(app_ref: str) -> Union[Stack, StackAssembler]:
    """Import ``module:attribute`` (or ``path/to/file.py:attribute``).

    The attribute may be a StackAssembler, a Stack, or a callable returning
    either. The attribute defaults to ``app``.
    """
    module_ref, _, attribute = app_ref.partition(":")
    try:
        module = _import_target(module_ref)
    except ImportError as e:
        raise click.BadParameter(f"Cannot import {module_ref}: {e}", param_hint="--app") from e

    target = getattr(module, attribute or "app", None)
    if target is None:
        raise click.BadParameter(
            f"{module_ref} has no attribute '{attribute or 'app'}'", param_hint="--app"
        )
    if callable(target) and not isinstance(target, (Stack, StackAssembler)):
        target = target()
    if not isinstance(target, (Stack, StackAssembler)):
        raise click.BadParameter(
            f"{app_ref} must be a StackAssembler, a Stack or a callable returning one",
            param_hint="--app",
        )
    return target


def build_stack(
    source: Union[Stack, StackAssembler],
    verifier: Optional[IdentityVerifier] = None,
    strict: bool = False,
) -> Stack:
    if isinstance(source, StackAssembler):
        return source.build(verifier, strict)
    return source


def render_diff(
    diff_result: DiffResult, title: str = "Changes", show_unchanged: bool = False
) -> None:
    """Print a DiffResult as a table."""
    table = Table(title=title, show_header=True)
    table.add_column("Logical ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Change")
    table.add_column("Paths", style="dim")

    for entry in diff_result.entries:
        if entry.change_type is ChangeType.UNCHANGED and not show_unchanged:
            continue
        label = entry.label
        style = _CHANGE_STYLES.get(label, "")
        paths = ", ".join(
            f"{p} (replaces)" if p in entry.replacement_paths else p
            for p in entry.changed_paths
        )
        table.add_row(
            entry.logical_id, entry.kind or "", f"[{style}]{label}[/{style}]", escape(paths)
        )

    if diff_result.is_empty:
        console.print("[green]No changes.[/green]")
    else:
        console.print(table)
    summary = diff_result.summary
    console.print(
        f"{summary['added']} to add, {summary['modified']} to change "
        f"({summary['replaced']} replaced), {summary['removed']} to remove"
    )


def render_violations(error: ValidationError) -> None:
    table = Table(title="Validation failed", show_header=True)
    table.add_column("Resource", style="cyan")
    table.add_column("Kind", style="yellow")
    table.add_column("Field")
    table.add_column("Reason")
    for violation in error.violations:
        table.add_row(
            violation.resource_id or "-",
            violation.kind.value,
            ", ".join(violation.fields) or "-",
            escape(violation.reason),
        )
    err_console.print(table)


def report_outcome(outcome: DeploymentOutcome) -> None:
    """Print the final state of an orchestrator run."""
    if outcome.succeeded:
        console.print(f"[green]{outcome.message}[/green]")
        return
    if isinstance(outcome.error, ValidationError):
        render_violations(outcome.error)
        return
    err_console.print(f"[red]{outcome.state.value}:[/red] {escape(outcome.message)}")
    if isinstance(outcome.error, StacksmithError) and outcome.error.recovery_suggestion:
        err_console.print(f"[dim]{escape(outcome.error.recovery_suggestion)}[/dim]")


@contextlib.contextmanager
def cancel_on_interrupt(orchestrator: DeploymentOrchestrator) -> Iterator[None]:
    """Route SIGINT to ``orchestrator.cancel()`` while the block runs."""

    def _handler(signum: int, frame: Any) -> None:
        err_console.print("[yellow]Cancelling; waiting for the current step to stop...[/yellow]")
        orchestrator.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
