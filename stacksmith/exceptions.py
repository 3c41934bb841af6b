"""
Custom Exception Hierarchy for Stacksmith

Two families of errors:

- ValidationError: local, deterministic problems with the resource model.
  They are raised before anything is sent to a provider and are never retried.
- DeploymentError: problems reported by (or while talking to) the external
  provisioning API.

Every error carries structured context so it can be logged or serialized.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError


class StacksmithError(Exception):
    """
    Base exception class for all Stacksmith errors.

    Provides structured error information including context, error codes,
    and optional recovery suggestions.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional dictionary with error context
            cause: Optional underlying exception that caused this error
            recovery_suggestion: Optional suggestion for error recovery
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        if self.recovery_suggestion:
            result += f" (suggestion: {self.recovery_suggestion})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Validation errors
class ValidationErrorKind(str, Enum):
    """Categories of local validation failures."""

    PATTERN_MISMATCH = "PatternMismatch"
    OUT_OF_RANGE = "OutOfRange"
    MUTUAL_EXCLUSION = "MutualExclusion"
    REQUIRED_FIELD_MISSING = "RequiredFieldMissing"
    DUPLICATE_IDENTITY = "DuplicateIdentity"
    UNRESOLVABLE_REFERENCE = "UnresolvableReference"
    CYCLIC_DEPENDENCY = "CyclicDependency"


class ValidationError(StacksmithError):
    """
    A single violated constraint.

    ``field`` names the offending property (or ``None`` for resource-level
    problems); ``fields`` lists every involved field for multi-field rules
    such as mutual exclusion.
    """

    def __init__(
        self,
        kind: ValidationErrorKind,
        reason: str,
        field: Optional[str] = None,
        resource_id: Optional[str] = None,
        value: Any = None,
        fields: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.kind = kind
        self.reason = reason
        self.field = field
        self.fields = tuple(fields) if fields else ((field,) if field else ())
        self.resource_id = resource_id
        self.value = value

        context = kwargs.get("context", {})
        if resource_id:
            context["resource_id"] = resource_id
        if field:
            context["field"] = field
        if len(self.fields) > 1:
            context["fields"] = list(self.fields)
        if value is not None:
            context["value"] = value
        kwargs["context"] = context
        kwargs.setdefault("error_code", kind.name)
        super().__init__(reason, **kwargs)

    @property
    def violations(self) -> List["ValidationError"]:
        return [self]

    @property
    def kinds(self) -> List[ValidationErrorKind]:
        """Distinct violation kinds, in first-seen order."""
        seen: List[ValidationErrorKind] = []
        for violation in self.violations:
            if violation.kind not in seen:
                seen.append(violation.kind)
        return seen

    def with_resource(self, resource_id: str) -> "ValidationError":
        """Return a copy of this violation attributed to ``resource_id``."""
        return ValidationError(
            self.kind,
            self.reason,
            field=self.field,
            resource_id=resource_id,
            value=self.value,
            fields=self.fields,
        )


class _AggregateValidationError(ValidationError):
    """Base for errors that bundle every violation found in one pass."""

    summary = "Validation failed"

    def __init__(
        self, violations: Iterable[ValidationError], **kwargs: Any
    ) -> None:
        self._violations = list(violations)
        if not self._violations:
            raise ValueError("an aggregate validation error needs violations")
        first = self._violations[0]
        lines = "; ".join(
            f"{v.kind.value}: {v.reason}" for v in self._violations
        )
        context = kwargs.get("context", {})
        context["violation_count"] = len(self._violations)
        kwargs["context"] = context
        super().__init__(
            first.kind,
            f"{self.summary}: {lines}",
            field=first.field,
            resource_id=kwargs.pop("resource_id", None) or first.resource_id,
            fields=first.fields,
            **kwargs,
        )

    @property
    def violations(self) -> List[ValidationError]:
        return list(self._violations)


class ResourceValidationError(_AggregateValidationError):
    """Raised by a builder's finalize() with every violation it found."""

    summary = "Resource validation failed"

    def __init__(
        self,
        violations: Iterable[ValidationError],
        resource_id: Optional[str] = None,
        resource_kind: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if resource_kind:
            context["resource_kind"] = resource_kind
        kwargs["context"] = context
        kwargs.setdefault("error_code", "RESOURCE_VALIDATION_FAILED")
        super().__init__(violations, resource_id=resource_id, **kwargs)


class StackValidationError(_AggregateValidationError):
    """Raised by StackAssembler.build() with every violation it found."""

    summary = "Stack validation failed"

    def __init__(self, violations: Iterable[ValidationError], **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "STACK_VALIDATION_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Fix every listed violation; nothing was sent to the provider",
        )
        super().__init__(violations, **kwargs)


class BuilderStateError(StacksmithError):
    """Raised when a builder is used after it has been finalized."""

    def __init__(self, message: str, resource_id: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if resource_id:
            context["resource_id"] = resource_id
        kwargs["context"] = context
        kwargs.setdefault("error_code", "BUILDER_ALREADY_FINALIZED")
        kwargs.setdefault(
            "recovery_suggestion", "Create a new builder for each resource"
        )
        super().__init__(message, **kwargs)


class TemplateFormatError(StacksmithError):
    """Raised when a template document cannot be parsed."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "TEMPLATE_FORMAT_INVALID")
        super().__init__(message, **kwargs)


# Deployment errors
class DeploymentErrorKind(str, Enum):
    """Categories of external deployment failures."""

    SUBMISSION_REJECTED = "SubmissionRejected"
    POLLING_TIMEOUT = "PollingTimeout"
    PROVIDER_REPORTED_FAILURE = "ProviderReportedFailure"
    CANCELLED = "Cancelled"


class DeploymentError(StacksmithError):
    """Base class for failures of the external provisioning step."""

    kind: DeploymentErrorKind = DeploymentErrorKind.PROVIDER_REPORTED_FAILURE

    def __init__(
        self,
        message: str,
        stack_name: Optional[str] = None,
        state: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.stack_name = stack_name
        context = kwargs.get("context", {})
        if stack_name:
            context["stack_name"] = stack_name
        if state:
            context["state"] = state
        kwargs["context"] = context
        kwargs.setdefault("error_code", self.kind.name)
        super().__init__(message, **kwargs)


class SubmissionRejectedError(DeploymentError):
    """The provider refused the submitted template. Never retried."""

    kind = DeploymentErrorKind.SUBMISSION_REJECTED


class PollingTimeoutError(DeploymentError):
    """
    The final state of the external operation is unknown.

    Raised when the total wait is exceeded or transient polling failures
    exhausted their retry budget. The operation may still complete remotely.
    """

    kind = DeploymentErrorKind.POLLING_TIMEOUT

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault(
            "recovery_suggestion",
            "Check the stack status with the provider before redeploying",
        )
        super().__init__(message, **kwargs)


class ProviderReportedFailureError(DeploymentError):
    """The provider reported that the operation failed (or rolled back)."""

    kind = DeploymentErrorKind.PROVIDER_REPORTED_FAILURE

    def __init__(self, message: str, rolled_back: bool = False, **kwargs: Any) -> None:
        self.rolled_back = rolled_back
        context = kwargs.get("context", {})
        context["rolled_back"] = rolled_back
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class DeploymentCancelledError(DeploymentError):
    """Local polling was cancelled; the remote operation was not stopped."""

    kind = DeploymentErrorKind.CANCELLED

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault(
            "recovery_suggestion",
            "The provider may still be applying or rolling back the change",
        )
        super().__init__(message, **kwargs)


class TransientProviderError(StacksmithError):
    """A retryable provider failure (throttling, network blip, timeout)."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if operation:
            context["operation"] = operation
        kwargs["context"] = context
        kwargs.setdefault("error_code", "PROVIDER_TRANSIENT_ERROR")
        super().__init__(message, **kwargs)


class OrchestratorStateError(StacksmithError):
    """Raised when an orchestrator is driven outside its state machine."""

    def __init__(self, message: str, state: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if state:
            context["state"] = state
        kwargs["context"] = context
        kwargs.setdefault("error_code", "ORCHESTRATOR_ALREADY_USED")
        kwargs.setdefault(
            "recovery_suggestion", "Create a new orchestrator for each deployment"
        )
        super().__init__(message, **kwargs)


# Configuration errors
class ConfigurationError(StacksmithError):
    """Raised when configuration is invalid or cannot be loaded."""

    def __init__(
        self, message: str, config_key: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key
        kwargs["context"] = context
        kwargs.setdefault("error_code", "CONFIGURATION_ERROR")
        super().__init__(message, **kwargs)


# Utility functions for common error patterns
_THROTTLING_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "SlowDown",
        "InternalFailure",
    }
)


def is_transient_error_code(code: Optional[str]) -> bool:
    return code in _THROTTLING_CODES


def wrap_provider_exception(
    exc: Exception, operation: str, stack_name: Optional[str] = None
) -> StacksmithError:
    """
    Wrap a botocore exception in the appropriate Stacksmith error.

    Connection problems and throttling become TransientProviderError, any
    other client error becomes SubmissionRejectedError.
    """
    context = {"operation": operation}
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code")
        message = exc.response.get("Error", {}).get("Message", str(exc))
        if is_transient_error_code(code):
            return TransientProviderError(
                f"{operation} throttled or unavailable: {message}",
                operation=operation,
                cause=exc,
            )
        return SubmissionRejectedError(
            f"{operation} rejected by provider: {message}",
            stack_name=stack_name,
            context=context,
            cause=exc,
        )
    if isinstance(exc, BotoCoreError):
        return TransientProviderError(
            f"{operation} failed to reach provider: {exc}",
            operation=operation,
            cause=exc,
        )
    return StacksmithError(
        f"Unexpected error during {operation}: {exc}",
        error_code="UNEXPECTED_ERROR",
        context=context,
        cause=exc,
    )
