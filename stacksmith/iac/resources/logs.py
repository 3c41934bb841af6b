"""CloudWatch Logs log group builder."""

from enum import Enum
from typing import Union

from ..constraints import integer, string
from ..references import ExternalReference, Reference
from .builder import ResourceBuilder
from .registry import ResourceKindDescriptor, register_kind

KIND = "AWS::Logs::LogGroup"

RETENTION_DAYS = (
    1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365, 400, 545,
    731, 1096, 1827, 2192, 2557, 2922, 3288, 3653,
)


class LogGroupClass(str, Enum):
    STANDARD = "STANDARD"
    INFREQUENT_ACCESS = "INFREQUENT_ACCESS"


PROPERTIES = {
    "LogGroupName": string(
        min_length=1,
        max_length=512,
        pattern=r"^[A-Za-z0-9.\-_#/\\]+$",
        pattern_description=r"letters, digits and . - _ # / \ ",
    ),
    "RetentionInDays": integer(choices=RETENTION_DAYS),
    "LogGroupClass": string(choices=[c.value for c in LogGroupClass]),
    "KmsKeyId": string(),
}

DESCRIPTOR = register_kind(
    ResourceKindDescriptor(
        kind=KIND,
        properties=PROPERTIES,
        identity_affecting=frozenset({"LogGroupName", "LogGroupClass"}),
        attributes=frozenset({"Arn"}),
        physical_name_property="LogGroupName",
        description="CloudWatch Logs log group",
    )
)


class LogGroupBuilder(ResourceBuilder):
    """Builds an ``AWS::Logs::LogGroup``."""

    KIND = KIND

    def log_group_name(self, name: str) -> "LogGroupBuilder":
        return self._set("LogGroupName", name)

    def retention_in_days(self, days: int) -> "LogGroupBuilder":
        return self._set("RetentionInDays", days)

    def log_group_class(self, log_group_class: LogGroupClass) -> "LogGroupBuilder":
        return self._set("LogGroupClass", LogGroupClass(log_group_class).value)

    def kms_key(self, key_id: Union[str, Reference, ExternalReference]) -> "LogGroupBuilder":
        return self._set("KmsKeyId", key_id)
