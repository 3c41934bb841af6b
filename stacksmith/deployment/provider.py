"""Provisioning client interface.

The orchestrator talks to a cloud control plane only through this interface,
so any provider (or a fake in tests) can be plugged in.

Adapters must raise:
- TransientProviderError for failures worth retrying (throttling, network)
- SubmissionRejectedError when the provider refuses a request outright
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from stacksmith.iac.assets import Asset
from stacksmith.iac.synthesizer import Template


class ProvisioningStatus(Enum):
    """Status of an external operation as reported by the provider."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self is not ProvisioningStatus.RUNNING


class OperationType(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


@dataclass(frozen=True)
class SubmissionHandle:
    """Opaque token for a submitted operation."""

    stack_name: str
    operation: OperationType
    operation_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class StatusReport:
    status: ProvisioningStatus
    reason: Optional[str] = None
    provider_status: Optional[str] = None


class ProvisioningClient(ABC):
    """Abstract external provisioning API."""

    @abstractmethod
    def describe(self, stack_name: str) -> Optional[Template]:
        """Return the currently deployed template, or None if the stack does not exist."""
        raise NotImplementedError

    @abstractmethod
    def upload_assets(self, assets: Sequence[Asset]) -> None:
        """Publish local deployment packages so a submitted template can use them."""
        raise NotImplementedError

    @abstractmethod
    def submit(
        self, stack_name: str, template: Template, tags: Mapping[str, str]
    ) -> SubmissionHandle:
        """Create or update the stack so it matches ``template``."""
        raise NotImplementedError

    @abstractmethod
    def poll_status(self, handle: SubmissionHandle) -> StatusReport:
        """Report the current status of a submitted operation."""
        raise NotImplementedError

    @abstractmethod
    def destroy(self, stack_name: str) -> SubmissionHandle:
        """Delete the stack and every resource it manages."""
        raise NotImplementedError
