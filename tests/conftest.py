import zipfile
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from stacksmith.config.models import DeploymentConfig
from stacksmith.deployment.provider import (
    OperationType,
    ProvisioningClient,
    ProvisioningStatus,
    StatusReport,
    SubmissionHandle,
)
from stacksmith.iac.assets import Asset
from stacksmith.iac.references import get_att, ref
from stacksmith.iac.resources import (
    AttributeType,
    BillingMode,
    QueueBuilder,
    TableBuilder,
)
from stacksmith.iac.stack import StackAssembler
from stacksmith.iac.synthesizer import Template
from stacksmith.iac.verification import (
    IdentityVerifier,
    VerificationResult,
    VerificationStatus,
)

# ============================================================================
# Provider fakes
# ============================================================================


class FakeProvisioningClient(ProvisioningClient):
    """In-memory provider.

    ``poll_script`` is consumed one item per poll_status() call; an item may
    be a ProvisioningStatus, a StatusReport or an exception to raise. The
    last item repeats once the script runs out.
    """

    def __init__(
        self,
        deployed: Optional[Template] = None,
        poll_script: Optional[List[Any]] = None,
    ):
        self.deployed = deployed
        self.poll_script = list(poll_script or [ProvisioningStatus.SUCCEEDED])
        self.describe_errors: List[Exception] = []
        self.upload_errors: List[Exception] = []
        self.uploaded: List[Asset] = []
        self.submit_error: Optional[Exception] = None
        self.calls: List[str] = []
        self.submitted: List[Dict[str, Any]] = []
        self.on_poll = None

    def describe(self, stack_name: str) -> Optional[Template]:
        self.calls.append("describe")
        if self.describe_errors:
            raise self.describe_errors.pop(0)
        return self.deployed

    def upload_assets(self, assets) -> None:
        self.calls.append("upload_assets")
        if self.upload_errors:
            raise self.upload_errors.pop(0)
        self.uploaded.extend(assets)

    def submit(self, stack_name, template, tags) -> SubmissionHandle:
        self.calls.append("submit")
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append({"stack_name": stack_name, "template": template, "tags": dict(tags)})
        operation = OperationType.CREATE if self.deployed is None else OperationType.UPDATE
        return SubmissionHandle(stack_name, operation, f"id-{stack_name}")

    def poll_status(self, handle: SubmissionHandle) -> StatusReport:
        self.calls.append("poll_status")
        if self.on_poll is not None:
            self.on_poll()
        item = self.poll_script.pop(0) if len(self.poll_script) > 1 else self.poll_script[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, StatusReport):
            return item
        return StatusReport(item, provider_status=item.value.upper())

    def destroy(self, stack_name: str) -> SubmissionHandle:
        self.calls.append("destroy")
        if self.deployed is None:
            return SubmissionHandle(stack_name, OperationType.NOOP)
        return SubmissionHandle(stack_name, OperationType.DELETE, f"id-{stack_name}")


class FakeVerifier(IdentityVerifier):
    def __init__(self, statuses: Optional[Dict[str, VerificationStatus]] = None):
        self.statuses = statuses or {}
        self.calls: List[str] = []

    def verify(self, resource_type: str, identifier: str) -> VerificationResult:
        self.calls.append(identifier)
        status = self.statuses.get(identifier, VerificationStatus.EXISTS)
        return VerificationResult(resource_type, identifier, status)


@pytest.fixture
def fake_client():
    return FakeProvisioningClient()


@pytest.fixture
def fast_config():
    """Deployment settings that keep polling tests in the millisecond range."""
    return DeploymentConfig(
        poll_interval_seconds=0.001,
        max_wait_seconds=5,
        max_poll_retries=3,
        backoff_base_seconds=0.001,
        backoff_max_seconds=0.002,
    )


@pytest.fixture
def function_package(tmp_path):
    """A small zip archive holding a handler module."""
    path = tmp_path / "handler.zip"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("app.py", "def handler(event, context):\n    return event\n")
    return path


@pytest.fixture
def mock_boto_client():
    """MagicMock standing in for a boto3 client."""
    return MagicMock()


# ============================================================================
# Stack fixtures
# ============================================================================


def make_queue_stack(visibility_timeout: int = 30) -> StackAssembler:
    """A queue with a dead-letter queue: Orders -> OrdersDlq."""
    assembler = StackAssembler()
    assembler.new(QueueBuilder, "OrdersDlq").message_retention_period(1209600).finalize()
    (
        assembler.new(QueueBuilder, "Orders")
        .visibility_timeout(visibility_timeout)
        .dead_letter_queue(ref("OrdersDlq"), 5)
        .finalize()
    )
    return assembler


def make_table_stack(table_name: str = "orders") -> StackAssembler:
    assembler = StackAssembler()
    (
        assembler.new(TableBuilder, "OrdersTable")
        .table_name(table_name)
        .partition_key("pk", AttributeType.STRING)
        .billing_mode(BillingMode.PAY_PER_REQUEST)
        .finalize()
    )
    (
        assembler.new(QueueBuilder, "Events")
        .kms_master_key(get_att("OrdersTable", "Arn"))
        .finalize()
    )
    return assembler


@pytest.fixture
def queue_stack():
    return make_queue_stack()


@pytest.fixture
def table_stack():
    return make_table_stack()


@pytest.fixture
def queue_stack_factory():
    """Build a fresh queue stack, optionally with a different visibility timeout."""
    return make_queue_stack


@pytest.fixture
def table_stack_factory():
    return make_table_stack


@pytest.fixture
def fake_verifier_factory():
    return FakeVerifier


@pytest.fixture
def fake_client_factory():
    return FakeProvisioningClient
