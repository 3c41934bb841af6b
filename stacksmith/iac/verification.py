"""
Existence checks for resources referenced from outside the stack.

ExternalReference values point at resources the stack does not manage. The
stack assembler can ask an IdentityVerifier whether they exist: a missing or
unverifiable resource is a warning by default and a build error in strict
mode.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import is_transient_error_code

logger = logging.getLogger(__name__)


class VerificationStatus(str, Enum):
    EXISTS = "exists"
    MISSING = "missing"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class VerificationResult:
    """Result of an existence check."""

    resource_type: str
    identifier: str
    status: VerificationStatus
    error: Optional[str] = None
    cached: bool = False

    @property
    def exists(self) -> bool:
        return self.status is VerificationStatus.EXISTS


class IdentityVerifier(ABC):
    """Answers whether an external resource exists."""

    @abstractmethod
    def verify(self, resource_type: str, identifier: str) -> VerificationResult:
        raise NotImplementedError

    def verify_exists(self, resource_type: str, identifier: str) -> Optional[bool]:
        """True/False when known, None when the check could not be completed."""
        result = self.verify(resource_type, identifier)
        if result.status is VerificationStatus.UNKNOWN:
            return None
        return result.exists


class CloudControlVerifier(IdentityVerifier):
    """
    Verifies external resources with the Cloud Control API.

    Features:
    - One generic ``get_resource`` call for every resource type
    - Caches results to minimize API calls
    - Retries throttled calls with exponential backoff
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        region: Optional[str] = None,
        max_retries: int = 3,
        cache_ttl: int = 300,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the verifier.

        Args:
            client: A boto3 ``cloudcontrol`` client (created lazily if omitted)
            region: Region for the lazily created client
            max_retries: Maximum attempts for throttled calls
            cache_ttl: Cache time-to-live in seconds (default 5 minutes)
            sleep: Sleep function used between retries
        """
        self._client = client
        self.region = region
        self.max_retries = max(1, max_retries)
        self.cache_ttl = cache_ttl
        self._sleep = sleep

        # {(type, identifier): (status, timestamp)}
        self._cache: Dict[Tuple[str, str], Tuple[VerificationStatus, float]] = {}

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("cloudcontrol", region_name=self.region)
        return self._client

    def _check_cache(self, key: Tuple[str, str]) -> Optional[VerificationStatus]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        status, timestamp = entry
        if time.time() - timestamp > self.cache_ttl:
            del self._cache[key]
            return None
        return status

    def clear_cache(self) -> None:
        self._cache.clear()

    def verify(self, resource_type: str, identifier: str) -> VerificationResult:
        key = (resource_type, identifier)
        cached = self._check_cache(key)
        if cached is not None:
            logger.debug(f"Cache hit for {resource_type} {identifier}")
            return VerificationResult(resource_type, identifier, cached, cached=True)

        last_error: Optional[str] = None
        for attempt in range(self.max_retries):
            try:
                self.client.get_resource(TypeName=resource_type, Identifier=identifier)
                status = VerificationStatus.EXISTS
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code")
                if code == "ResourceNotFoundException":
                    status = VerificationStatus.MISSING
                elif is_transient_error_code(code) and attempt < self.max_retries - 1:
                    logger.warning(
                        f"Throttled checking {resource_type} {identifier} "
                        f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    self._sleep(2**attempt)
                    continue
                else:
                    last_error = str(e)
                    break
            except BotoCoreError as e:
                last_error = str(e)
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Transient error checking {resource_type} {identifier} "
                        f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    self._sleep(2**attempt)
                    continue
                break

            self._cache[key] = (status, time.time())
            logger.debug(f"Existence check: {resource_type} {identifier} -> {status.value}")
            return VerificationResult(resource_type, identifier, status)

        logger.error(f"Could not verify {resource_type} {identifier}: {last_error}")
        return VerificationResult(
            resource_type, identifier, VerificationStatus.UNKNOWN, error=last_error
        )
