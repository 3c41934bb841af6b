"""Deployment orchestration.

Drives one stack deployment through a fixed state machine:

    Idle -> Validating -> Synthesizing -> Diffing -> Submitting -> Polling
         -> Succeeded | Failed | RolledBack | Cancelled

Philosophy:
- One orchestrator per deployment; terminal states are sticky
- Local validation failures stop the run before any provider call
- Transient provider errors are retried with bounded exponential backoff
- Cancelling stops local polling only: the provider keeps working on (or
  rolling back) whatever was already submitted
"""

import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, List, Optional, Union

import structlog

from stacksmith.config.models import DeploymentConfig
from stacksmith.deployment.provider import (
    OperationType,
    ProvisioningClient,
    ProvisioningStatus,
    SubmissionHandle,
)
from stacksmith.exceptions import (
    DeploymentCancelledError,
    OrchestratorStateError,
    PollingTimeoutError,
    ProviderReportedFailureError,
    StacksmithError,
    TransientProviderError,
    ValidationError,
    ValidationErrorKind,
    wrap_provider_exception,
)
from stacksmith.iac.diff import DiffResult, diff
from stacksmith.iac.stack import Stack, StackAssembler
from stacksmith.iac.synthesizer import Template, synthesize
from stacksmith.iac.verification import IdentityVerifier
from stacksmith.timeout_config import Timeouts, log_timeout_event

logger = structlog.get_logger(__name__)

__all__ = [
    "DeploymentOrchestrator",
    "DeploymentOutcome",
    "DeploymentState",
    "ResultCode",
    "deploy_stack",
    "destroy_stack",
    "diff_stack",
]

STACK_NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9-]{0,127}$"

StackSource = Union[Stack, StackAssembler]


class DeploymentState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SYNTHESIZING = "synthesizing"
    DIFFING = "diffing"
    SUBMITTING = "submitting"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        DeploymentState.SUCCEEDED,
        DeploymentState.FAILED,
        DeploymentState.ROLLED_BACK,
        DeploymentState.CANCELLED,
    }
)


class ResultCode(IntEnum):
    """Command result, also used as the CLI exit status."""

    SUCCESS = 0
    VALIDATION_FAILED = 1
    DEPLOYMENT_FAILED = 2
    CANCELLED = 3


@dataclass
class DeploymentOutcome:
    """Final result of an orchestrator run."""

    stack_name: str
    state: DeploymentState
    diff: Optional[DiffResult] = None
    template: Optional[Template] = None
    handle: Optional[SubmissionHandle] = None
    error: Optional[StacksmithError] = None
    message: str = ""
    history: List[DeploymentState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is DeploymentState.SUCCEEDED

    @property
    def submitted(self) -> bool:
        return self.handle is not None

    @property
    def result_code(self) -> ResultCode:
        if self.state is DeploymentState.SUCCEEDED:
            return ResultCode.SUCCESS
        if self.state is DeploymentState.CANCELLED:
            return ResultCode.CANCELLED
        if isinstance(self.error, ValidationError):
            return ResultCode.VALIDATION_FAILED
        return ResultCode.DEPLOYMENT_FAILED


class DeploymentOrchestrator:
    """
    Runs a single deploy, plan or destroy against a ProvisioningClient.

    ``cancel()`` may be called from any thread (for example a signal
    handler). It only stops local waiting; an operation that was already
    submitted keeps running at the provider.
    """

    def __init__(
        self,
        client: ProvisioningClient,
        config: Optional[DeploymentConfig] = None,
        verifier: Optional[IdentityVerifier] = None,
        strict_verification: bool = False,
        listener: Optional[Callable[[DeploymentState], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            client: Provider adapter
            config: Polling and retry settings
            verifier: Optional checker for external references
            strict_verification: Fail the build when an external reference
                cannot be verified
            listener: Called with every new state
            clock: Monotonic clock, replaceable in tests
        """
        self.client = client
        self.config = config or DeploymentConfig()
        self.verifier = verifier
        self.strict_verification = strict_verification
        self._listener = listener
        self._clock = clock
        self._cancel_event = threading.Event()
        self._state = DeploymentState.IDLE
        self._history: List[DeploymentState] = [DeploymentState.IDLE]
        self._logger = logger.bind(component="DeploymentOrchestrator")

    @property
    def state(self) -> DeploymentState:
        return self._state

    @property
    def history(self) -> List[DeploymentState]:
        return list(self._history)

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Safe to call from any thread, more than once."""
        if not self._cancel_event.is_set():
            self._logger.warning("cancellation_requested", state=self._state.value)
        self._cancel_event.set()

    def _transition(self, new_state: DeploymentState) -> None:
        if self._state.is_terminal:
            raise OrchestratorStateError(
                f"Cannot move from terminal state {self._state.value} to {new_state.value}",
                state=self._state.value,
            )
        self._state = new_state
        self._history.append(new_state)
        self._logger.info("state_changed", state=new_state.value)
        if self._listener is not None:
            self._listener(new_state)

    def _start(self, stack_name: str) -> None:
        if self._state is not DeploymentState.IDLE:
            raise OrchestratorStateError(
                "An orchestrator runs exactly one operation", state=self._state.value
            )
        self._logger = self._logger.bind(stack_name=stack_name)

    def _check_cancelled(self, stack_name: str) -> None:
        if self._cancel_event.is_set():
            raise DeploymentCancelledError(
                f"Deployment of {stack_name} was cancelled",
                stack_name=stack_name,
                state=self._state.value,
            )

    def _wait(self, seconds: float, stack_name: str) -> None:
        if self._cancel_event.wait(max(seconds, 0)):
            self._check_cancelled(stack_name)

    def _finish(
        self,
        stack_name: str,
        state: DeploymentState,
        message: str,
        error: Optional[StacksmithError] = None,
        **details: Any,
    ) -> DeploymentOutcome:
        self._transition(state)
        log = self._logger.error if error is not None else self._logger.info
        log(
            "deployment_finished",
            state=state.value,
            message=message,
            error=error.to_dict() if error is not None else None,
        )
        return DeploymentOutcome(
            stack_name=stack_name,
            state=state,
            error=error,
            message=message,
            history=list(self._history),
            **details,
        )

    def _unexpected(self, exc: Exception, stack_name: str) -> StacksmithError:
        """Wrap an exception that escaped the provider adapter."""
        self._logger.exception("unexpected_error", state=self._state.value)
        return wrap_provider_exception(exc, self._state.value, stack_name)

    def _with_retries(self, stack_name: str, operation: str, func: Callable, *args: Any) -> Any:
        """Call ``func``; retry TransientProviderError with exponential backoff."""
        attempt = 0
        while True:
            self._check_cancelled(stack_name)
            try:
                return func(*args)
            except TransientProviderError as e:
                attempt += 1
                if attempt > self.config.max_poll_retries:
                    raise PollingTimeoutError(
                        f"{operation} for {stack_name} failed {attempt} times in a row",
                        stack_name=stack_name,
                        state=self._state.value,
                        cause=e,
                    ) from e
                delay = self.config.backoff_delay(attempt)
                self._logger.warning(
                    "transient_provider_error",
                    operation=operation,
                    attempt=attempt,
                    retry_in=delay,
                    error=str(e),
                )
                self._wait(delay, stack_name)

    def _validate(self, stack_name: str, source: StackSource) -> Stack:
        if re.fullmatch(STACK_NAME_PATTERN, stack_name or "") is None:
            raise ValidationError(
                ValidationErrorKind.PATTERN_MISMATCH,
                f"Stack name {stack_name!r} must start with a letter and contain "
                "only letters, digits and hyphens (max 128)",
                field="stack_name",
                value=stack_name,
            )
        if isinstance(source, StackAssembler):
            return source.build(self.verifier, self.strict_verification)
        return source

    def _prepare(self, stack_name: str, source: StackSource):
        """Validating, Synthesizing and Diffing. Returns (template, diff)."""
        self._transition(DeploymentState.VALIDATING)
        stack = self._validate(stack_name, source)

        self._transition(DeploymentState.SYNTHESIZING)
        template = synthesize(stack)

        self._transition(DeploymentState.DIFFING)
        previous = self._with_retries(stack_name, "describe", self.client.describe, stack_name)
        return stack, template, diff(previous, template)

    def deploy(self, stack_name: str, source: StackSource) -> DeploymentOutcome:
        """Deploy ``source`` (a Stack or an unbuilt StackAssembler) as ``stack_name``.

        Never raises for validation or provider failures; they are reported
        in the returned outcome. An unchanged stack finishes from Submitting
        without calling the provider; otherwise local deployment packages are
        uploaded before the template is submitted.
        """
        self._start(stack_name)
        template: Optional[Template] = None
        changes: Optional[DiffResult] = None
        handle: Optional[SubmissionHandle] = None
        try:
            stack, template, changes = self._prepare(stack_name, source)

            self._check_cancelled(stack_name)
            self._transition(DeploymentState.SUBMITTING)
            if changes.is_empty:
                return self._finish(
                    stack_name,
                    DeploymentState.SUCCEEDED,
                    "No changes to deploy",
                    diff=changes,
                    template=template,
                )

            if stack.assets:
                self._with_retries(
                    stack_name, "upload_assets", self.client.upload_assets, stack.assets
                )
                self._logger.info("assets_uploaded", count=len(stack.assets))

            try:
                handle = self.client.submit(stack_name, template, dict(stack.tags))
            except TransientProviderError as e:
                raise PollingTimeoutError(
                    f"Submission of {stack_name} could not be confirmed",
                    stack_name=stack_name,
                    state=self._state.value,
                    cause=e,
                ) from e

            return self._poll(stack_name, handle, self.config.max_wait_seconds, changes, template)

        except DeploymentCancelledError as e:
            message = (
                "Cancelled locally; the provider may still be applying or rolling back "
                "the submitted change"
                if handle is not None
                else "Cancelled before anything was submitted"
            )
            return self._finish(
                stack_name,
                DeploymentState.CANCELLED,
                message,
                e,
                diff=changes,
                template=template,
                handle=handle,
            )
        except StacksmithError as e:
            return self._finish(
                stack_name,
                DeploymentState.FAILED,
                e.message,
                e,
                diff=changes,
                template=template,
                handle=handle,
            )
        except Exception as e:
            error = self._unexpected(e, stack_name)
            return self._finish(
                stack_name,
                DeploymentState.FAILED,
                error.message,
                error,
                diff=changes,
                template=template,
                handle=handle,
            )

    def plan(self, stack_name: str, source: StackSource) -> DeploymentOutcome:
        """Dry run: validate, synthesize and diff without submitting anything."""
        self._start(stack_name)
        try:
            _, template, changes = self._prepare(stack_name, source)
        except DeploymentCancelledError as e:
            return self._finish(stack_name, DeploymentState.CANCELLED, e.message, e)
        except StacksmithError as e:
            return self._finish(stack_name, DeploymentState.FAILED, e.message, e)
        except Exception as e:
            error = self._unexpected(e, stack_name)
            return self._finish(stack_name, DeploymentState.FAILED, error.message, error)
        return self._finish(
            stack_name,
            DeploymentState.SUCCEEDED,
            f"{len(changes.changes)} change(s) planned",
            diff=changes,
            template=template,
        )

    def destroy(self, stack_name: str) -> DeploymentOutcome:
        """Delete the deployed stack and wait for the provider to finish."""
        self._start(stack_name)
        handle: Optional[SubmissionHandle] = None
        changes: Optional[DiffResult] = None
        try:
            self._transition(DeploymentState.DIFFING)
            previous = self._with_retries(
                stack_name, "describe", self.client.describe, stack_name
            )
            changes = diff(previous, None)
            if previous is None:
                return self._finish(
                    stack_name,
                    DeploymentState.SUCCEEDED,
                    "Stack does not exist; nothing to destroy",
                    diff=changes,
                )

            self._check_cancelled(stack_name)
            self._transition(DeploymentState.SUBMITTING)
            try:
                handle = self.client.destroy(stack_name)
            except TransientProviderError as e:
                raise PollingTimeoutError(
                    f"Deletion of {stack_name} could not be confirmed",
                    stack_name=stack_name,
                    state=self._state.value,
                    cause=e,
                ) from e
            return self._poll(stack_name, handle, float(Timeouts.DESTROY), changes, None)

        except DeploymentCancelledError as e:
            return self._finish(
                stack_name,
                DeploymentState.CANCELLED,
                "Cancelled locally; the provider may still be deleting the stack"
                if handle is not None
                else "Cancelled before anything was submitted",
                e,
                diff=changes,
                handle=handle,
            )
        except StacksmithError as e:
            return self._finish(
                stack_name, DeploymentState.FAILED, e.message, e, diff=changes, handle=handle
            )
        except Exception as e:
            error = self._unexpected(e, stack_name)
            return self._finish(
                stack_name,
                DeploymentState.FAILED,
                error.message,
                error,
                diff=changes,
                handle=handle,
            )

    def _poll(
        self,
        stack_name: str,
        handle: SubmissionHandle,
        max_wait: float,
        changes: Optional[DiffResult],
        template: Optional[Template],
    ) -> DeploymentOutcome:
        self._transition(DeploymentState.POLLING)
        max_wait = min(max_wait, self.config.max_wait_seconds)
        deadline = self._clock() + max_wait
        failures = 0
        details = {"diff": changes, "template": template, "handle": handle}

        while True:
            self._check_cancelled(stack_name)
            try:
                report = self.client.poll_status(handle)
            except TransientProviderError as e:
                failures += 1
                if failures > self.config.max_poll_retries:
                    raise PollingTimeoutError(
                        f"Lost track of {stack_name} after {failures} failed status checks; "
                        "its final state is unknown",
                        stack_name=stack_name,
                        state=self._state.value,
                        cause=e,
                    ) from e
                delay = self.config.backoff_delay(failures)
                self._logger.warning(
                    "poll_failed", attempt=failures, retry_in=delay, error=str(e)
                )
            else:
                failures = 0
                self._logger.debug(
                    "poll_status",
                    status=report.status.value,
                    provider_status=report.provider_status,
                )
                if report.status is ProvisioningStatus.SUCCEEDED:
                    verb = "destroyed" if handle.operation is OperationType.DELETE else "deployed"
                    return self._finish(
                        stack_name,
                        DeploymentState.SUCCEEDED,
                        f"Stack {stack_name} {verb}",
                        **details,
                    )
                if report.status is ProvisioningStatus.FAILED:
                    error = ProviderReportedFailureError(
                        f"Provider reported failure for {stack_name}: {report.reason or 'no reason given'}",
                        stack_name=stack_name,
                        state=report.provider_status,
                    )
                    return self._finish(
                        stack_name, DeploymentState.FAILED, error.message, error, **details
                    )
                if report.status is ProvisioningStatus.ROLLED_BACK:
                    error = ProviderReportedFailureError(
                        f"Provider rolled back {stack_name}: {report.reason or 'no reason given'}",
                        rolled_back=True,
                        stack_name=stack_name,
                        state=report.provider_status,
                    )
                    return self._finish(
                        stack_name, DeploymentState.ROLLED_BACK, error.message, error, **details
                    )
                delay = self.config.poll_interval_seconds

            remaining = deadline - self._clock()
            if remaining <= 0:
                log_timeout_event("poll_status", max_wait, stack_name)
                raise PollingTimeoutError(
                    f"{stack_name} did not reach a final state within {max_wait:g}s",
                    stack_name=stack_name,
                    state=self._state.value,
                )
            self._wait(min(delay, remaining), stack_name)


def deploy_stack(
    stack_name: str,
    source: StackSource,
    client: ProvisioningClient,
    config: Optional[DeploymentConfig] = None,
    **kwargs: Any,
) -> DeploymentOutcome:
    """Deploy ``source`` and return the outcome (see ``outcome.result_code``)."""
    return DeploymentOrchestrator(client, config, **kwargs).deploy(stack_name, source)


def diff_stack(
    stack_name: str,
    source: StackSource,
    client: ProvisioningClient,
    config: Optional[DeploymentConfig] = None,
    **kwargs: Any,
) -> DeploymentOutcome:
    """Dry run: compare ``source`` with what is deployed as ``stack_name``."""
    return DeploymentOrchestrator(client, config, **kwargs).plan(stack_name, source)


def destroy_stack(
    stack_name: str,
    client: ProvisioningClient,
    config: Optional[DeploymentConfig] = None,
    **kwargs: Any,
) -> DeploymentOutcome:
    """Delete ``stack_name`` and wait for the provider to finish."""
    return DeploymentOrchestrator(client, config, **kwargs).destroy(stack_name)
