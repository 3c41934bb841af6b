"""Deployment: provider interface, CloudFormation adapter and orchestrator."""

from .cloudformation_client import CloudFormationProvisioningClient, map_stack_status
from .orchestrator import (
    DeploymentOrchestrator,
    DeploymentOutcome,
    DeploymentState,
    ResultCode,
    deploy_stack,
    destroy_stack,
    diff_stack,
)
from .provider import (
    OperationType,
    ProvisioningClient,
    ProvisioningStatus,
    StatusReport,
    SubmissionHandle,
)

__all__ = [
    "CloudFormationProvisioningClient",
    "DeploymentOrchestrator",
    "DeploymentOutcome",
    "DeploymentState",
    "OperationType",
    "ProvisioningClient",
    "ProvisioningStatus",
    "ResultCode",
    "StatusReport",
    "SubmissionHandle",
    "deploy_stack",
    "destroy_stack",
    "diff_stack",
    "map_stack_status",
]
