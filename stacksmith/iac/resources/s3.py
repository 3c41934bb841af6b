"""S3 bucket builder."""

from collections.abc import Mapping
from enum import Enum
from typing import Optional

from ...exceptions import ValidationError, ValidationErrorKind
from ..constraints import boolean, mutually_exclusive, obj, string
from .builder import ResourceBuilder
from .registry import ResourceKindDescriptor, register_kind

KIND = "AWS::S3::Bucket"

# Lowercase letters, digits, dots and hyphens; alphanumeric at both ends;
# no consecutive dots; not formatted like an IPv4 address.
BUCKET_NAME_PATTERN = (
    r"^(?!\d{1,3}(\.\d{1,3}){3}$)(?!.*\.\.)[a-z0-9][a-z0-9.-]*[a-z0-9]$"
)


class VersioningStatus(str, Enum):
    ENABLED = "Enabled"
    SUSPENDED = "Suspended"


class RedirectProtocol(str, Enum):
    HTTP = "http"
    HTTPS = "https"


PROPERTIES = {
    "BucketName": string(
        min_length=3,
        max_length=63,
        pattern=BUCKET_NAME_PATTERN,
        pattern_description="lowercase letters, digits, periods and hyphens",
    ),
    "VersioningConfiguration": obj(
        {"Status": string(required=True, choices=[s.value for s in VersioningStatus])}
    ),
    "WebsiteConfiguration": obj(
        {
            "IndexDocument": string(min_length=1),
            "ErrorDocument": string(min_length=1),
            "RedirectAllRequestsTo": obj(
                {
                    "HostName": string(required=True, min_length=1),
                    "Protocol": string(choices=[p.value for p in RedirectProtocol]),
                }
            ),
        }
    ),
    "PublicAccessBlockConfiguration": obj(
        {
            "BlockPublicAcls": boolean(),
            "BlockPublicPolicy": boolean(),
            "IgnorePublicAcls": boolean(),
            "RestrictPublicBuckets": boolean(),
        }
    ),
}


def _check_website(properties: Mapping) -> None:
    website = properties.get("WebsiteConfiguration")
    if not isinstance(website, Mapping):
        return
    mutually_exclusive(
        {
            "WebsiteConfiguration.IndexDocument": website.get("IndexDocument"),
            "WebsiteConfiguration.RedirectAllRequestsTo": website.get(
                "RedirectAllRequestsTo"
            ),
        },
        "WebsiteConfiguration.IndexDocument",
        "WebsiteConfiguration.RedirectAllRequestsTo",
        "A website either serves an index document or redirects all requests",
    )
    if website.get("ErrorDocument") is not None and website.get("IndexDocument") is None:
        raise ValidationError(
            ValidationErrorKind.REQUIRED_FIELD_MISSING,
            "WebsiteConfiguration.ErrorDocument requires an IndexDocument",
            field="WebsiteConfiguration.IndexDocument",
        )
    if website.get("IndexDocument") is None and website.get("RedirectAllRequestsTo") is None:
        raise ValidationError(
            ValidationErrorKind.REQUIRED_FIELD_MISSING,
            "WebsiteConfiguration needs an IndexDocument or RedirectAllRequestsTo",
            field="WebsiteConfiguration",
        )


DESCRIPTOR = register_kind(
    ResourceKindDescriptor(
        kind=KIND,
        properties=PROPERTIES,
        rules=(_check_website,),
        identity_affecting=frozenset({"BucketName"}),
        attributes=frozenset({"Arn", "DomainName", "RegionalDomainName", "WebsiteURL"}),
        physical_name_property="BucketName",
        description="S3 bucket",
    )
)


class BucketBuilder(ResourceBuilder):
    """Builds an ``AWS::S3::Bucket``."""

    KIND = KIND

    def bucket_name(self, name: str) -> "BucketBuilder":
        return self._set("BucketName", name)

    def versioning(self, enabled: bool = True) -> "BucketBuilder":
        status = VersioningStatus.ENABLED if enabled else VersioningStatus.SUSPENDED
        return self._set("VersioningConfiguration", {"Status": status.value})

    def website(self, index_document: str, error_document: Optional[str] = None) -> "BucketBuilder":
        self._set_member("WebsiteConfiguration", "IndexDocument", index_document)
        if error_document is not None:
            self._set_member("WebsiteConfiguration", "ErrorDocument", error_document)
        return self

    def redirect_all_requests_to(
        self, host_name: str, protocol: Optional[RedirectProtocol] = None
    ) -> "BucketBuilder":
        redirect = {"HostName": host_name}
        if protocol is not None:
            redirect["Protocol"] = RedirectProtocol(protocol).value
        return self._set_member("WebsiteConfiguration", "RedirectAllRequestsTo", redirect)

    def block_public_access(self, enabled: bool = True) -> "BucketBuilder":
        return self._set(
            "PublicAccessBlockConfiguration",
            {
                "BlockPublicAcls": enabled,
                "BlockPublicPolicy": enabled,
                "IgnorePublicAcls": enabled,
                "RestrictPublicBuckets": enabled,
            },
        )
