"""Resource-kind descriptors and their validated builders.

Importing this package registers every built-in kind.
"""

from .builder import ResourceBuilder
from .registry import (
    ResourceKindDescriptor,
    exported_attributes,
    find_descriptor,
    get_descriptor,
    get_kind_registry,
    identity_affecting_properties,
    register_kind,
)

# Import kind modules to auto-register them
from . import awslambda, dynamodb, iam, logs, s3, sns, sqs  # noqa: E402,F401
from .awslambda import Architecture, FunctionBuilder, PackageType, Runtime  # noqa: E402
from .dynamodb import (  # noqa: E402
    AttributeType,
    BillingMode,
    StreamViewType,
    TableBuilder,
)
from .iam import (  # noqa: E402
    RoleBuilder,
    policy_document,
    policy_statement,
    service_trust_policy,
)
from .logs import LogGroupBuilder, LogGroupClass  # noqa: E402
from .s3 import BucketBuilder, RedirectProtocol  # noqa: E402
from .sns import (  # noqa: E402
    FifoThroughputScope,
    SubscriptionBuilder,
    SubscriptionProtocol,
    TopicBuilder,
    TopicType,
)
from .sqs import (  # noqa: E402
    DeduplicationScope,
    FifoThroughputLimit,
    QueueBuilder,
    QueueType,
)

__all__ = [
    "Architecture",
    "AttributeType",
    "BillingMode",
    "BucketBuilder",
    "DeduplicationScope",
    "FifoThroughputLimit",
    "FifoThroughputScope",
    "FunctionBuilder",
    "LogGroupBuilder",
    "LogGroupClass",
    "PackageType",
    "QueueBuilder",
    "QueueType",
    "RedirectProtocol",
    "ResourceBuilder",
    "ResourceKindDescriptor",
    "RoleBuilder",
    "Runtime",
    "StreamViewType",
    "SubscriptionBuilder",
    "SubscriptionProtocol",
    "TableBuilder",
    "TopicBuilder",
    "TopicType",
    "exported_attributes",
    "find_descriptor",
    "get_descriptor",
    "get_kind_registry",
    "identity_affecting_properties",
    "policy_document",
    "policy_statement",
    "register_kind",
    "service_trust_policy",
]
