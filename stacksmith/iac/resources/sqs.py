"""SQS queue builder."""

from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict, Union

from ...exceptions import ValidationError, ValidationErrorKind
from ..constraints import (
    ViolationCollector,
    boolean,
    ensure_suffix,
    integer,
    obj,
    only_allowed_when,
    string,
)
from ..references import ExternalReference, Reference
from .builder import ResourceBuilder
from .registry import ResourceKindDescriptor, register_kind

KIND = "AWS::SQS::Queue"
FIFO_SUFFIX = ".fifo"


class QueueType(str, Enum):
    STANDARD = "standard"
    FIFO = "fifo"


class DeduplicationScope(str, Enum):
    QUEUE = "queue"
    MESSAGE_GROUP = "messageGroup"


class FifoThroughputLimit(str, Enum):
    PER_QUEUE = "perQueue"
    PER_MESSAGE_GROUP_ID = "perMessageGroupId"


FIFO_ONLY_PROPERTIES = (
    "ContentBasedDeduplication",
    "DeduplicationScope",
    "FifoThroughputLimit",
)

PROPERTIES = {
    "QueueName": string(
        min_length=1,
        max_length=80,
        pattern=r"^[A-Za-z0-9_-]+(\.fifo)?$",
        pattern_description="letters, digits, hyphens and underscores",
    ),
    "FifoQueue": boolean(),
    "DelaySeconds": integer(minimum=0, maximum=900),
    "MaximumMessageSize": integer(minimum=1024, maximum=1048576),
    "MessageRetentionPeriod": integer(minimum=60, maximum=1209600),
    "ReceiveMessageWaitTimeSeconds": integer(minimum=0, maximum=20),
    "VisibilityTimeout": integer(minimum=0, maximum=43200),
    "ContentBasedDeduplication": boolean(),
    "DeduplicationScope": string(choices=[s.value for s in DeduplicationScope]),
    "FifoThroughputLimit": string(choices=[s.value for s in FifoThroughputLimit]),
    "SqsManagedSseEnabled": boolean(),
    "KmsMasterKeyId": string(),
    "RedrivePolicy": obj(
        {
            "deadLetterTargetArn": string(required=True),
            "maxReceiveCount": integer(required=True, minimum=1),
        }
    ),
}


def _normalize_fifo_name(properties: Dict[str, Any]) -> Dict[str, Any]:
    name = properties.get("QueueName")
    if properties.get("FifoQueue") is True and isinstance(name, str):
        properties["QueueName"] = ensure_suffix(name, FIFO_SUFFIX)
    return properties


def _check_fifo(properties: Mapping) -> None:
    collector = ViolationCollector()
    is_fifo = properties.get("FifoQueue") is True
    for name in FIFO_ONLY_PROPERTIES:
        collector.check(
            only_allowed_when, properties, name, "FifoQueue", is_fifo, "FIFO queues"
        )

    queue_name = properties.get("QueueName")
    if (
        not is_fifo
        and isinstance(queue_name, str)
        and queue_name.endswith(FIFO_SUFFIX)
    ):
        collector.add(
            ValidationError(
                ValidationErrorKind.PATTERN_MISMATCH,
                f"Only FIFO queue names may end with '{FIFO_SUFFIX}'",
                field="QueueName",
                value=queue_name,
            )
        )
    collector.raise_if_any()


DESCRIPTOR = register_kind(
    ResourceKindDescriptor(
        kind=KIND,
        properties=PROPERTIES,
        rules=(_check_fifo,),
        normalizers=(_normalize_fifo_name,),
        identity_affecting=frozenset({"QueueName", "FifoQueue"}),
        attributes=frozenset({"Arn", "QueueName", "QueueUrl"}),
        physical_name_property="QueueName",
        description="SQS queue",
    )
)


class QueueBuilder(ResourceBuilder):
    """Builds an ``AWS::SQS::Queue``.

    ``queue_type(QueueType.FIFO)`` unlocks the FIFO-only settings and makes
    finalize() append ``.fifo`` to the queue name when it is missing.
    """

    KIND = KIND

    def queue_name(self, name: str) -> "QueueBuilder":
        return self._set("QueueName", name)

    def queue_type(self, queue_type: QueueType) -> "QueueBuilder":
        if QueueType(queue_type) is QueueType.FIFO:
            return self._set("FifoQueue", True)
        self._ensure_open()
        self._properties.pop("FifoQueue", None)
        return self

    def delay_seconds(self, seconds: int) -> "QueueBuilder":
        return self._set("DelaySeconds", seconds)

    def maximum_message_size(self, size: int) -> "QueueBuilder":
        return self._set("MaximumMessageSize", size)

    def message_retention_period(self, seconds: int) -> "QueueBuilder":
        return self._set("MessageRetentionPeriod", seconds)

    def receive_message_wait_time(self, seconds: int) -> "QueueBuilder":
        return self._set("ReceiveMessageWaitTimeSeconds", seconds)

    def visibility_timeout(self, seconds: int) -> "QueueBuilder":
        return self._set("VisibilityTimeout", seconds)

    def content_based_deduplication(self, enabled: bool = True) -> "QueueBuilder":
        return self._set("ContentBasedDeduplication", enabled)

    def deduplication_scope(self, scope: DeduplicationScope) -> "QueueBuilder":
        return self._set("DeduplicationScope", DeduplicationScope(scope).value)

    def fifo_throughput_limit(self, limit: FifoThroughputLimit) -> "QueueBuilder":
        return self._set("FifoThroughputLimit", FifoThroughputLimit(limit).value)

    def sqs_managed_sse(self, enabled: bool = True) -> "QueueBuilder":
        return self._set("SqsManagedSseEnabled", enabled)

    def kms_master_key(self, key_id: Union[str, Reference, ExternalReference]) -> "QueueBuilder":
        return self._set("KmsMasterKeyId", key_id)

    def dead_letter_queue(
        self,
        target: Union[str, Reference, ExternalReference],
        max_receive_count: int,
    ) -> "QueueBuilder":
        """Send messages to ``target`` after ``max_receive_count`` receives.

        ``target`` is usually ``get_att(queue_id, "Arn")``.
        """
        if isinstance(target, Reference) and target.attribute is None:
            target = Reference(target.resource_id, "Arn")
        return self._set(
            "RedrivePolicy",
            {"deadLetterTargetArn": target, "maxReceiveCount": max_receive_count},
        )
