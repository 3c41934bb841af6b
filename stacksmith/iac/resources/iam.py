"""IAM role builder and policy document helpers."""

from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Union

from ..constraints import ViolationCollector, integer, list_of, obj, string, unique
from ..references import ExternalReference, Reference
from .builder import ResourceBuilder
from .registry import ResourceKindDescriptor, register_kind

KIND = "AWS::IAM::Role"
POLICY_VERSION = "2012-10-17"

_policy_document = obj(
    {
        "Version": string(choices=[POLICY_VERSION, "2008-10-17"]),
        "Statement": list_of(obj(), required=True, min_length=1),
        "Id": string(),
    },
    required=True,
)

PROPERTIES = {
    "RoleName": string(
        min_length=1,
        max_length=64,
        pattern=r"^[\w+=,.@-]+$",
        pattern_description="letters, digits and +=,.@_-",
    ),
    "Description": string(max_length=1000),
    "Path": string(
        min_length=1,
        max_length=512,
        pattern=r"^/([\x21-\x7e]*/)?$",
        pattern_description="a path that starts and ends with '/'",
    ),
    "AssumeRolePolicyDocument": _policy_document,
    "ManagedPolicyArns": list_of(string(), unique_items=True, max_length=20),
    "Policies": list_of(
        obj(
            {
                "PolicyName": string(
                    required=True,
                    min_length=1,
                    max_length=128,
                    pattern=r"^[\w+=,.@-]+$",
                    pattern_description="letters, digits and +=,.@_-",
                ),
                "PolicyDocument": _policy_document,
            }
        )
    ),
    "MaxSessionDuration": integer(minimum=3600, maximum=43200),
    "PermissionsBoundary": string(),
}


def _check_policy_names(properties: Mapping) -> None:
    policies = properties.get("Policies")
    if not isinstance(policies, (list, tuple)):
        return
    collector = ViolationCollector()
    names = [p.get("PolicyName") for p in policies if isinstance(p, Mapping)]
    collector.check(unique, [n for n in names if n is not None], "Policies.PolicyName")
    collector.raise_if_any()


DESCRIPTOR = register_kind(
    ResourceKindDescriptor(
        kind=KIND,
        properties=PROPERTIES,
        rules=(_check_policy_names,),
        identity_affecting=frozenset({"RoleName", "Path"}),
        attributes=frozenset({"Arn", "RoleId"}),
        physical_name_property="RoleName",
        description="IAM role",
    )
)


def policy_statement(
    actions: List[str],
    resources: Optional[List[Any]] = None,
    effect: str = "Allow",
    principal: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    statement: Dict[str, Any] = {"Effect": effect, "Action": list(actions)}
    if resources is not None:
        statement["Resource"] = list(resources)
    if principal is not None:
        statement["Principal"] = principal
    return statement


def policy_document(statements: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"Version": POLICY_VERSION, "Statement": list(statements)}


def service_trust_policy(service: str) -> Dict[str, Any]:
    """Trust policy that lets ``service`` (e.g. ``lambda.amazonaws.com``) assume the role."""
    return policy_document(
        [
            policy_statement(
                ["sts:AssumeRole"], principal={"Service": [service]}
            )
        ]
    )


class RoleBuilder(ResourceBuilder):
    """Builds an ``AWS::IAM::Role``."""

    KIND = KIND

    def role_name(self, name: str) -> "RoleBuilder":
        return self._set("RoleName", name)

    def description(self, text: str) -> "RoleBuilder":
        return self._set("Description", text)

    def path(self, path: str) -> "RoleBuilder":
        return self._set("Path", path)

    def assume_role_policy(self, document: Dict[str, Any]) -> "RoleBuilder":
        return self._set("AssumeRolePolicyDocument", document)

    def assumed_by_service(self, service: str) -> "RoleBuilder":
        return self.assume_role_policy(service_trust_policy(service))

    def managed_policy(self, arn: Union[str, Reference, ExternalReference]) -> "RoleBuilder":
        return self._append("ManagedPolicyArns", arn)

    def inline_policy(self, name: str, document: Dict[str, Any]) -> "RoleBuilder":
        return self._append("Policies", {"PolicyName": name, "PolicyDocument": document})

    def max_session_duration(self, seconds: int) -> "RoleBuilder":
        return self._set("MaxSessionDuration", seconds)

    def permissions_boundary(self, arn: Union[str, Reference, ExternalReference]) -> "RoleBuilder":
        return self._set("PermissionsBoundary", arn)
