"""Tests for the exception hierarchy and provider error wrapping."""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from stacksmith.exceptions import (
    DeploymentCancelledError,
    DeploymentError,
    DeploymentErrorKind,
    PollingTimeoutError,
    ProviderReportedFailureError,
    ResourceValidationError,
    StacksmithError,
    StackValidationError,
    SubmissionRejectedError,
    TransientProviderError,
    ValidationError,
    ValidationErrorKind,
    wrap_provider_exception,
)


class TestStacksmithError:
    def test_str_includes_code_context_and_suggestion(self):
        error = StacksmithError(
            "Something broke",
            error_code="BROKEN",
            context={"stack_name": "orders"},
            recovery_suggestion="Try again",
        )

        assert str(error) == (
            "[BROKEN] Something broke (context: stack_name=orders) (suggestion: Try again)"
        )

    def test_to_dict(self):
        cause = RuntimeError("boom")
        error = StacksmithError("Wrapped", cause=cause)

        assert error.to_dict() == {
            "error_type": "StacksmithError",
            "message": "Wrapped",
            "error_code": None,
            "context": {},
            "cause": "boom",
            "recovery_suggestion": None,
        }


class TestValidationErrors:
    """Test single and aggregated validation errors."""

    def test_single_violation(self):
        error = ValidationError(
            ValidationErrorKind.OUT_OF_RANGE,
            "DelaySeconds must be <= 900",
            field="DelaySeconds",
            resource_id="Orders",
            value=901,
        )

        assert error.error_code == "OUT_OF_RANGE"
        assert error.violations == [error]
        assert error.context == {
            "resource_id": "Orders",
            "field": "DelaySeconds",
            "value": 901,
        }

    def test_with_resource_copies(self):
        error = ValidationError(ValidationErrorKind.PATTERN_MISMATCH, "bad", field="Name")

        attributed = error.with_resource("Orders")

        assert attributed.resource_id == "Orders"
        assert attributed.field == "Name"
        assert error.resource_id is None

    def test_aggregate_keeps_every_violation(self):
        violations = [
            ValidationError(ValidationErrorKind.OUT_OF_RANGE, "too big", field="A"),
            ValidationError(ValidationErrorKind.REQUIRED_FIELD_MISSING, "missing", field="B"),
            ValidationError(ValidationErrorKind.OUT_OF_RANGE, "too small", field="C"),
        ]

        error = ResourceValidationError(violations, resource_id="Fn", resource_kind="AWS::Lambda::Function")

        assert error.violations == violations
        assert error.kind is ValidationErrorKind.OUT_OF_RANGE
        assert error.kinds == [
            ValidationErrorKind.OUT_OF_RANGE,
            ValidationErrorKind.REQUIRED_FIELD_MISSING,
        ]
        assert error.context["violation_count"] == 3
        assert error.context["resource_kind"] == "AWS::Lambda::Function"
        assert "too big" in error.message and "missing" in error.message
        assert isinstance(error, ValidationError)

    def test_aggregate_needs_violations(self):
        with pytest.raises(ValueError):
            StackValidationError([])


class TestDeploymentErrors:
    @pytest.mark.parametrize(
        "error_class,kind",
        [
            (SubmissionRejectedError, DeploymentErrorKind.SUBMISSION_REJECTED),
            (PollingTimeoutError, DeploymentErrorKind.POLLING_TIMEOUT),
            (ProviderReportedFailureError, DeploymentErrorKind.PROVIDER_REPORTED_FAILURE),
            (DeploymentCancelledError, DeploymentErrorKind.CANCELLED),
        ],
    )
    def test_kinds(self, error_class, kind):
        error = error_class("failed", stack_name="orders", state="polling")

        assert isinstance(error, DeploymentError)
        assert error.kind is kind
        assert error.error_code == kind.name
        assert error.context["stack_name"] == "orders"
        assert error.context["state"] == "polling"

    def test_unknown_outcome_errors_suggest_checking_the_provider(self):
        assert PollingTimeoutError("lost").recovery_suggestion
        assert DeploymentCancelledError("stopped").recovery_suggestion

    def test_rolled_back_flag(self):
        error = ProviderReportedFailureError("rolled back", rolled_back=True)

        assert error.rolled_back
        assert error.context["rolled_back"] is True


class TestWrapProviderException:
    """Test mapping of botocore errors."""

    def _client_error(self, code: str) -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, "CreateStack")

    @pytest.mark.parametrize("code", ["Throttling", "ThrottlingException", "RequestLimitExceeded"])
    def test_throttling_is_transient(self, code):
        wrapped = wrap_provider_exception(self._client_error(code), "create_stack")

        assert isinstance(wrapped, TransientProviderError)
        assert wrapped.context["operation"] == "create_stack"

    def test_other_client_errors_are_rejections(self):
        error = self._client_error("ValidationError")

        wrapped = wrap_provider_exception(error, "create_stack", "orders")

        assert isinstance(wrapped, SubmissionRejectedError)
        assert wrapped.cause is error
        assert "ValidationError happened" in wrapped.message

    def test_connection_errors_are_transient(self):
        wrapped = wrap_provider_exception(
            EndpointConnectionError(endpoint_url="https://cloudformation"), "describe_stacks"
        )

        assert isinstance(wrapped, TransientProviderError)

    def test_unexpected_errors(self):
        wrapped = wrap_provider_exception(KeyError("x"), "describe_stacks")

        assert type(wrapped) is StacksmithError
        assert wrapped.error_code == "UNEXPECTED_ERROR"
