"""CloudFormation implementation of the provisioning client.

Philosophy:
- One boto3 call per interface method, no waiting (the orchestrator polls)
- Provider stack statuses collapse onto the four ProvisioningStatus values
- Throttling and connection errors are transient; everything else is final
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from stacksmith.deployment.provider import (
    OperationType,
    ProvisioningClient,
    ProvisioningStatus,
    StatusReport,
    SubmissionHandle,
)
from stacksmith.exceptions import SubmissionRejectedError, wrap_provider_exception
from stacksmith.iac.assets import Asset
from stacksmith.iac.emitters import CloudFormationEmitter
from stacksmith.iac.synthesizer import Template
from stacksmith.timeout_config import Timeouts

logger = logging.getLogger(__name__)

__all__ = ["CloudFormationProvisioningClient", "map_stack_status"]

# Largest template accepted inline; bigger ones need an S3 upload
MAX_TEMPLATE_BODY_BYTES = 51200
CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
NO_UPDATES_MESSAGE = "No updates are to be performed"

_SUCCEEDED = frozenset({"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"})
_ROLLED_BACK = frozenset(
    {"ROLLBACK_COMPLETE", "UPDATE_ROLLBACK_COMPLETE", "IMPORT_ROLLBACK_COMPLETE"}
)
_FAILED = frozenset(
    {
        "CREATE_FAILED",
        "DELETE_FAILED",
        "ROLLBACK_FAILED",
        "UPDATE_FAILED",
        "UPDATE_ROLLBACK_FAILED",
        "IMPORT_ROLLBACK_FAILED",
    }
)


def map_stack_status(stack_status: str, operation: OperationType) -> ProvisioningStatus:
    """Map a CloudFormation stack status onto a ProvisioningStatus."""
    if stack_status.endswith("_IN_PROGRESS"):
        return ProvisioningStatus.RUNNING
    if stack_status == "DELETE_COMPLETE":
        if operation is OperationType.DELETE:
            return ProvisioningStatus.SUCCEEDED
        return ProvisioningStatus.FAILED
    if operation is OperationType.DELETE:
        # Any other settled state means the deletion did not go through
        return ProvisioningStatus.FAILED
    if stack_status in _SUCCEEDED:
        return ProvisioningStatus.SUCCEEDED
    if stack_status in _ROLLED_BACK:
        return ProvisioningStatus.ROLLED_BACK
    if stack_status in _FAILED:
        return ProvisioningStatus.FAILED
    logger.warning(f"Unrecognized stack status {stack_status}; treating as running")
    return ProvisioningStatus.RUNNING


def _is_missing_stack(error: ClientError) -> bool:
    details = error.response.get("Error", {})
    return details.get("Code") == "ValidationError" and "does not exist" in details.get(
        "Message", ""
    )


class CloudFormationProvisioningClient(ProvisioningClient):
    """ProvisioningClient backed by the CloudFormation API."""

    def __init__(
        self,
        client: Optional[Any] = None,
        region: Optional[str] = None,
        emitter: Optional[CloudFormationEmitter] = None,
        s3_client: Optional[Any] = None,
    ) -> None:
        """
        Args:
            client: A boto3 ``cloudformation`` client (created lazily if omitted)
            region: Region for the lazily created clients
            emitter: Emitter used to render and parse template bodies
            s3_client: A boto3 ``s3`` client for asset uploads (created lazily if omitted)
        """
        self._client = client
        self._s3_client = s3_client
        self.region = region
        self.emitter = emitter or CloudFormationEmitter({"indent": None})

    def _boto_client(self, service: str) -> Any:
        return boto3.client(
            service,
            region_name=self.region,
            config=Config(
                connect_timeout=Timeouts.API_CONNECT,
                read_timeout=Timeouts.API_READ,
                retries={"mode": "standard"},
            ),
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self._boto_client("cloudformation")
        return self._client

    @property
    def s3_client(self) -> Any:
        if self._s3_client is None:
            self._s3_client = self._boto_client("s3")
        return self._s3_client

    def upload_assets(self, assets: Sequence[Asset]) -> None:
        for asset in assets:
            try:
                with open(asset.path, "rb") as body:
                    self.s3_client.put_object(Bucket=asset.bucket, Key=asset.key, Body=body)
            except OSError as e:
                raise SubmissionRejectedError(
                    f"Cannot read asset {asset.path}: {e.strerror or e}",
                    context={"asset": str(asset)},
                    cause=e,
                ) from e
            except (ClientError, BotoCoreError) as e:
                raise wrap_provider_exception(e, "put_object") from e
            logger.info(f"Uploaded asset {asset}")

    def _describe_stack(self, stack_name: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise wrap_provider_exception(e, "describe_stacks", stack_name) from e
        except BotoCoreError as e:
            raise wrap_provider_exception(e, "describe_stacks", stack_name) from e
        stacks = response.get("Stacks") or []
        return stacks[0] if stacks else None

    def describe(self, stack_name: str) -> Optional[Template]:
        stack = self._describe_stack(stack_name)
        if stack is None or stack.get("StackStatus") in (
            "DELETE_COMPLETE",
            "REVIEW_IN_PROGRESS",
        ):
            logger.info(f"Stack {stack_name} has no deployed template")
            return None

        try:
            response = self.client.get_template(
                StackName=stack_name, TemplateStage="Original"
            )
        except (ClientError, BotoCoreError) as e:
            raise wrap_provider_exception(e, "get_template", stack_name) from e
        return self.emitter.parse(response["TemplateBody"])

    def submit(
        self, stack_name: str, template: Template, tags: Mapping[str, str]
    ) -> SubmissionHandle:
        body = self.emitter.render(template)
        if len(body.encode("utf-8")) > MAX_TEMPLATE_BODY_BYTES:
            raise SubmissionRejectedError(
                f"Template for {stack_name} exceeds {MAX_TEMPLATE_BODY_BYTES} bytes",
                stack_name=stack_name,
                recovery_suggestion="Split the stack into smaller stacks",
            )

        stack = self._describe_stack(stack_name)
        request = {
            "StackName": stack_name,
            "TemplateBody": body,
            "Capabilities": CAPABILITIES,
            "Tags": [{"Key": key, "Value": value} for key, value in tags.items()],
        }

        if stack is None:
            operation = OperationType.CREATE
            call = self.client.create_stack
        elif stack.get("StackStatus") == "ROLLBACK_COMPLETE":
            raise SubmissionRejectedError(
                f"Stack {stack_name} failed its initial creation and cannot be updated",
                stack_name=stack_name,
                state="ROLLBACK_COMPLETE",
                recovery_suggestion="Destroy the stack, then deploy again",
            )
        else:
            operation = OperationType.UPDATE
            call = self.client.update_stack

        try:
            response = call(**request)
        except ClientError as e:
            message = e.response.get("Error", {}).get("Message", "")
            if operation is OperationType.UPDATE and NO_UPDATES_MESSAGE in message:
                logger.info(f"Stack {stack_name} is already up to date")
                return SubmissionHandle(stack_name, OperationType.NOOP, stack.get("StackId"))
            raise wrap_provider_exception(e, f"{operation.value}_stack", stack_name) from e
        except BotoCoreError as e:
            raise wrap_provider_exception(e, f"{operation.value}_stack", stack_name) from e

        logger.info(f"Submitted {operation.value} for stack {stack_name}")
        return SubmissionHandle(stack_name, operation, response.get("StackId"))

    def poll_status(self, handle: SubmissionHandle) -> StatusReport:
        if handle.operation is OperationType.NOOP:
            return StatusReport(ProvisioningStatus.SUCCEEDED, "No changes")

        # Deleted stacks can only be looked up by id
        stack = self._describe_stack(handle.operation_id or handle.stack_name)
        if stack is None:
            if handle.operation is OperationType.DELETE:
                return StatusReport(ProvisioningStatus.SUCCEEDED, "Stack deleted")
            return StatusReport(
                ProvisioningStatus.FAILED, "Stack no longer exists", "MISSING"
            )

        stack_status = stack.get("StackStatus", "")
        status = map_stack_status(stack_status, handle.operation)
        reason = stack.get("StackStatusReason")
        if status in (ProvisioningStatus.FAILED, ProvisioningStatus.ROLLED_BACK):
            reason = self._failure_reason(handle) or reason
        return StatusReport(status, reason, stack_status)

    def _failure_reason(self, handle: SubmissionHandle) -> Optional[str]:
        """Reason of the earliest failed resource event, if it can be fetched."""
        try:
            response = self.client.describe_stack_events(
                StackName=handle.operation_id or handle.stack_name
            )
        except (ClientError, BotoCoreError) as e:
            logger.debug(f"Could not fetch events for {handle.stack_name}: {e}")
            return None
        failures = [
            event
            for event in response.get("StackEvents", [])
            if str(event.get("ResourceStatus", "")).endswith("_FAILED")
            and event.get("ResourceStatusReason")
        ]
        if not failures:
            return None
        # Events are returned newest first
        earliest = failures[-1]
        return f"{earliest.get('LogicalResourceId')}: {earliest['ResourceStatusReason']}"

    def destroy(self, stack_name: str) -> SubmissionHandle:
        stack = self._describe_stack(stack_name)
        if stack is None or stack.get("StackStatus") == "DELETE_COMPLETE":
            logger.info(f"Stack {stack_name} does not exist; nothing to destroy")
            return SubmissionHandle(stack_name, OperationType.NOOP)

        try:
            self.client.delete_stack(StackName=stack_name)
        except (ClientError, BotoCoreError) as e:
            raise wrap_provider_exception(e, "delete_stack", stack_name) from e

        logger.info(f"Submitted delete for stack {stack_name}")
        return SubmissionHandle(stack_name, OperationType.DELETE, stack.get("StackId"))
