"""SNS topic and subscription builders."""

from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict, Union

from ...exceptions import ValidationError, ValidationErrorKind
from ..constraints import (
    ViolationCollector,
    boolean,
    ensure_suffix,
    obj,
    only_allowed_when,
    string,
)
from ..references import ExternalReference, Reference
from .builder import ResourceBuilder
from .registry import ResourceKindDescriptor, register_kind

TOPIC_KIND = "AWS::SNS::Topic"
SUBSCRIPTION_KIND = "AWS::SNS::Subscription"
FIFO_SUFFIX = ".fifo"


class TopicType(str, Enum):
    STANDARD = "standard"
    FIFO = "fifo"


class FifoThroughputScope(str, Enum):
    TOPIC = "Topic"
    MESSAGE_GROUP = "MessageGroup"


class SubscriptionProtocol(str, Enum):
    HTTP = "http"
    HTTPS = "https"
    EMAIL = "email"
    EMAIL_JSON = "email-json"
    SMS = "sms"
    SQS = "sqs"
    APPLICATION = "application"
    LAMBDA = "lambda"
    FIREHOSE = "firehose"


RAW_DELIVERY_PROTOCOLS = frozenset(
    {
        SubscriptionProtocol.HTTP.value,
        SubscriptionProtocol.HTTPS.value,
        SubscriptionProtocol.SQS.value,
        SubscriptionProtocol.FIREHOSE.value,
    }
)

TOPIC_PROPERTIES = {
    "TopicName": string(
        min_length=1,
        max_length=256,
        pattern=r"^[A-Za-z0-9_-]+(\.fifo)?$",
        pattern_description="letters, digits, hyphens and underscores",
    ),
    "DisplayName": string(max_length=100),
    "FifoTopic": boolean(),
    "ContentBasedDeduplication": boolean(),
    "FifoThroughputScope": string(choices=[s.value for s in FifoThroughputScope]),
    "KmsMasterKeyId": string(),
}

SUBSCRIPTION_PROPERTIES = {
    "TopicArn": string(required=True),
    "Protocol": string(required=True, choices=[p.value for p in SubscriptionProtocol]),
    "Endpoint": string(required=True),
    "RawMessageDelivery": boolean(),
    "FilterPolicy": obj(),
    "RedrivePolicy": obj({"deadLetterTargetArn": string(required=True)}),
}


def _normalize_fifo_name(properties: Dict[str, Any]) -> Dict[str, Any]:
    name = properties.get("TopicName")
    if properties.get("FifoTopic") is True and isinstance(name, str):
        properties["TopicName"] = ensure_suffix(name, FIFO_SUFFIX)
    return properties


def _check_fifo_topic(properties: Mapping) -> None:
    collector = ViolationCollector()
    is_fifo = properties.get("FifoTopic") is True
    for name in ("ContentBasedDeduplication", "FifoThroughputScope"):
        collector.check(
            only_allowed_when, properties, name, "FifoTopic", is_fifo, "FIFO topics"
        )
    topic_name = properties.get("TopicName")
    if not is_fifo and isinstance(topic_name, str) and topic_name.endswith(FIFO_SUFFIX):
        collector.add(
            ValidationError(
                ValidationErrorKind.PATTERN_MISMATCH,
                f"Only FIFO topic names may end with '{FIFO_SUFFIX}'",
                field="TopicName",
                value=topic_name,
            )
        )
    collector.raise_if_any()


def _check_raw_delivery(properties: Mapping) -> None:
    protocol = properties.get("Protocol")
    if protocol is None:
        return
    only_allowed_when(
        properties,
        "RawMessageDelivery",
        "Protocol",
        protocol in RAW_DELIVERY_PROTOCOLS,
        f"protocols {sorted(RAW_DELIVERY_PROTOCOLS)}",
    )


TOPIC_DESCRIPTOR = register_kind(
    ResourceKindDescriptor(
        kind=TOPIC_KIND,
        properties=TOPIC_PROPERTIES,
        rules=(_check_fifo_topic,),
        normalizers=(_normalize_fifo_name,),
        identity_affecting=frozenset({"TopicName", "FifoTopic"}),
        attributes=frozenset({"TopicArn", "TopicName"}),
        physical_name_property="TopicName",
        description="SNS topic",
    )
)

SUBSCRIPTION_DESCRIPTOR = register_kind(
    ResourceKindDescriptor(
        kind=SUBSCRIPTION_KIND,
        properties=SUBSCRIPTION_PROPERTIES,
        rules=(_check_raw_delivery,),
        identity_affecting=frozenset({"TopicArn", "Protocol", "Endpoint"}),
        attributes=frozenset({"Arn"}),
        description="SNS subscription",
    )
)


class TopicBuilder(ResourceBuilder):
    """Builds an ``AWS::SNS::Topic``."""

    KIND = TOPIC_KIND

    def topic_name(self, name: str) -> "TopicBuilder":
        return self._set("TopicName", name)

    def display_name(self, name: str) -> "TopicBuilder":
        return self._set("DisplayName", name)

    def topic_type(self, topic_type: TopicType) -> "TopicBuilder":
        if TopicType(topic_type) is TopicType.FIFO:
            return self._set("FifoTopic", True)
        self._ensure_open()
        self._properties.pop("FifoTopic", None)
        return self

    def content_based_deduplication(self, enabled: bool = True) -> "TopicBuilder":
        return self._set("ContentBasedDeduplication", enabled)

    def fifo_throughput_scope(self, scope: FifoThroughputScope) -> "TopicBuilder":
        return self._set("FifoThroughputScope", FifoThroughputScope(scope).value)

    def kms_master_key(self, key_id: Union[str, Reference, ExternalReference]) -> "TopicBuilder":
        return self._set("KmsMasterKeyId", key_id)


class SubscriptionBuilder(ResourceBuilder):
    """Builds an ``AWS::SNS::Subscription``.

    The topic is normally ``ref(topic_id)``, which resolves to the topic ARN.
    """

    KIND = SUBSCRIPTION_KIND

    def topic(self, topic: Union[str, Reference, ExternalReference]) -> "SubscriptionBuilder":
        return self._set("TopicArn", topic)

    def protocol(self, protocol: SubscriptionProtocol) -> "SubscriptionBuilder":
        return self._set("Protocol", SubscriptionProtocol(protocol).value)

    def endpoint(self, endpoint: Union[str, Reference, ExternalReference]) -> "SubscriptionBuilder":
        return self._set("Endpoint", endpoint)

    def raw_message_delivery(self, enabled: bool = True) -> "SubscriptionBuilder":
        return self._set("RawMessageDelivery", enabled)

    def filter_policy(self, policy: Dict[str, Any]) -> "SubscriptionBuilder":
        return self._set("FilterPolicy", policy)

    def dead_letter_queue(self, target: Union[str, Reference, ExternalReference]) -> "SubscriptionBuilder":
        return self._set("RedrivePolicy", {"deadLetterTargetArn": target})
