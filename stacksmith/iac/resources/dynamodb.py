"""DynamoDB table builder."""

from collections.abc import Mapping
from enum import Enum
from typing import Optional

from ...exceptions import ValidationError, ValidationErrorKind
from ..constraints import (
    ViolationCollector,
    boolean,
    integer,
    list_of,
    mutually_exclusive,
    obj,
    only_allowed_when,
    require,
    string,
)
from .builder import ResourceBuilder
from .registry import ResourceKindDescriptor, register_kind

KIND = "AWS::DynamoDB::Table"


class AttributeType(str, Enum):
    STRING = "S"
    NUMBER = "N"
    BINARY = "B"


class KeyType(str, Enum):
    HASH = "HASH"
    RANGE = "RANGE"


class BillingMode(str, Enum):
    """Capacity mode. Each mode permits a different set of throughput settings."""

    PROVISIONED = "PROVISIONED"
    PAY_PER_REQUEST = "PAY_PER_REQUEST"


class StreamViewType(str, Enum):
    KEYS_ONLY = "KEYS_ONLY"
    NEW_IMAGE = "NEW_IMAGE"
    OLD_IMAGE = "OLD_IMAGE"
    NEW_AND_OLD_IMAGES = "NEW_AND_OLD_IMAGES"


KEY_NAME_PATTERN = r"^[A-Za-z0-9_]+$"

_key_attribute = string(
    required=True,
    min_length=1,
    max_length=255,
    pattern=KEY_NAME_PATTERN,
    pattern_description="letters, digits and underscores",
)

PROPERTIES = {
    "TableName": string(
        min_length=3,
        max_length=255,
        pattern=r"^[A-Za-z0-9_.-]+$",
        pattern_description="letters, digits, underscores, hyphens and periods",
    ),
    "KeySchema": list_of(
        obj(
            {
                "AttributeName": _key_attribute,
                "KeyType": string(required=True, choices=[k.value for k in KeyType]),
            }
        ),
        required=True,
        min_length=1,
        max_length=2,
    ),
    "AttributeDefinitions": list_of(
        obj(
            {
                "AttributeName": _key_attribute,
                "AttributeType": string(
                    required=True, choices=[t.value for t in AttributeType]
                ),
            }
        ),
        required=True,
        min_length=1,
    ),
    "BillingMode": string(required=True, choices=[m.value for m in BillingMode]),
    "ProvisionedThroughput": obj(
        {
            "ReadCapacityUnits": integer(required=True, minimum=1),
            "WriteCapacityUnits": integer(required=True, minimum=1),
        }
    ),
    "OnDemandThroughput": obj(
        {
            "MaxReadRequestUnits": integer(minimum=1),
            "MaxWriteRequestUnits": integer(minimum=1),
        }
    ),
    "TimeToLiveSpecification": obj(
        {
            "AttributeName": string(min_length=1, max_length=255),
            "Enabled": boolean(required=True),
        }
    ),
    "PointInTimeRecoverySpecification": obj(
        {"PointInTimeRecoveryEnabled": boolean(required=True)}
    ),
    "StreamSpecification": obj(
        {
            "StreamViewType": string(
                required=True, choices=[v.value for v in StreamViewType]
            )
        }
    ),
    "DeletionProtectionEnabled": boolean(),
}


def _check_keys(properties: Mapping) -> None:
    collector = ViolationCollector()
    key_schema = properties.get("KeySchema") or []
    definitions = properties.get("AttributeDefinitions") or []
    if not isinstance(key_schema, (list, tuple)) or not isinstance(
        definitions, (list, tuple)
    ):
        return

    key_types = [k.get("KeyType") for k in key_schema if isinstance(k, Mapping)]
    if key_schema and key_types.count(KeyType.HASH.value) != 1:
        collector.add(
            ValidationError(
                ValidationErrorKind.REQUIRED_FIELD_MISSING,
                "KeySchema needs exactly one HASH (partition) key",
                field="KeySchema",
            )
        )
    if key_types.count(KeyType.RANGE.value) > 1:
        collector.add(
            ValidationError(
                ValidationErrorKind.DUPLICATE_IDENTITY,
                "KeySchema allows at most one RANGE (sort) key",
                field="KeySchema",
            )
        )

    defined = [d.get("AttributeName") for d in definitions if isinstance(d, Mapping)]
    for key in key_schema:
        name = key.get("AttributeName") if isinstance(key, Mapping) else None
        if name is not None and name not in defined:
            collector.add(
                ValidationError(
                    ValidationErrorKind.REQUIRED_FIELD_MISSING,
                    f"Key attribute '{name}' is missing from AttributeDefinitions",
                    field="AttributeDefinitions",
                    value=name,
                )
            )
    seen = set()
    for name in defined:
        if name in seen:
            collector.add(
                ValidationError(
                    ValidationErrorKind.DUPLICATE_IDENTITY,
                    f"Attribute '{name}' is defined more than once",
                    field="AttributeDefinitions",
                    value=name,
                )
            )
        seen.add(name)
    collector.raise_if_any()


def _check_billing(properties: Mapping) -> None:
    mode = properties.get("BillingMode")
    mutually_exclusive(
        properties,
        "ProvisionedThroughput",
        "OnDemandThroughput",
        "ProvisionedThroughput and OnDemandThroughput cannot both be set",
    )
    if mode == BillingMode.PROVISIONED.value:
        require(
            properties,
            "ProvisionedThroughput",
            "ProvisionedThroughput is required when BillingMode is PROVISIONED",
        )
        only_allowed_when(
            properties, "OnDemandThroughput", "BillingMode", False, "PAY_PER_REQUEST"
        )
    elif mode == BillingMode.PAY_PER_REQUEST.value:
        only_allowed_when(
            properties, "ProvisionedThroughput", "BillingMode", False, "PROVISIONED"
        )


def _check_ttl(properties: Mapping) -> None:
    ttl = properties.get("TimeToLiveSpecification")
    if isinstance(ttl, Mapping) and ttl.get("Enabled") is True:
        if not ttl.get("AttributeName"):
            raise ValidationError(
                ValidationErrorKind.REQUIRED_FIELD_MISSING,
                "TimeToLiveSpecification.AttributeName is required when TTL is enabled",
                field="TimeToLiveSpecification.AttributeName",
            )


DESCRIPTOR = register_kind(
    ResourceKindDescriptor(
        kind=KIND,
        properties=PROPERTIES,
        rules=(_check_keys, _check_billing, _check_ttl),
        identity_affecting=frozenset({"TableName", "KeySchema"}),
        attributes=frozenset({"Arn", "StreamArn"}),
        physical_name_property="TableName",
        supports_snapshot=True,
        description="DynamoDB table",
    )
)


class TableBuilder(ResourceBuilder):
    """Builds an ``AWS::DynamoDB::Table``."""

    KIND = KIND

    def table_name(self, name: str) -> "TableBuilder":
        return self._set("TableName", name)

    def _key(self, name: str, attribute_type: AttributeType, key_type: KeyType) -> "TableBuilder":
        self._append("KeySchema", {"AttributeName": name, "KeyType": key_type.value})
        return self._append(
            "AttributeDefinitions",
            {"AttributeName": name, "AttributeType": AttributeType(attribute_type).value},
        )

    def partition_key(self, name: str, attribute_type: AttributeType) -> "TableBuilder":
        return self._key(name, attribute_type, KeyType.HASH)

    def sort_key(self, name: str, attribute_type: AttributeType) -> "TableBuilder":
        return self._key(name, attribute_type, KeyType.RANGE)

    def billing_mode(self, mode: BillingMode) -> "TableBuilder":
        return self._set("BillingMode", BillingMode(mode).value)

    def provisioned_throughput(self, read_capacity: int, write_capacity: int) -> "TableBuilder":
        self._set_member("ProvisionedThroughput", "ReadCapacityUnits", read_capacity)
        return self._set_member("ProvisionedThroughput", "WriteCapacityUnits", write_capacity)

    def on_demand_throughput(
        self, max_read: Optional[int] = None, max_write: Optional[int] = None
    ) -> "TableBuilder":
        self._set("OnDemandThroughput", {})
        if max_read is not None:
            self._set_member("OnDemandThroughput", "MaxReadRequestUnits", max_read)
        if max_write is not None:
            self._set_member("OnDemandThroughput", "MaxWriteRequestUnits", max_write)
        return self

    def time_to_live(self, attribute_name: str, enabled: bool = True) -> "TableBuilder":
        return self._set(
            "TimeToLiveSpecification",
            {"AttributeName": attribute_name, "Enabled": enabled},
        )

    def point_in_time_recovery(self, enabled: bool = True) -> "TableBuilder":
        return self._set(
            "PointInTimeRecoverySpecification", {"PointInTimeRecoveryEnabled": enabled}
        )

    def stream(self, view_type: StreamViewType) -> "TableBuilder":
        return self._set(
            "StreamSpecification", {"StreamViewType": StreamViewType(view_type).value}
        )

    def deletion_protection(self, enabled: bool = True) -> "TableBuilder":
        return self._set("DeletionProtectionEnabled", enabled)
