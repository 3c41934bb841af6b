"""Lambda function builder."""

import logging
import os
import re
from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from ...exceptions import ResourceValidationError, ValidationError, ValidationErrorKind
from ..assets import Asset, zip_asset
from ..constraints import (
    ViolationCollector,
    integer,
    list_of,
    mutually_exclusive,
    obj,
    only_allowed_when,
    require,
    string,
)
from ..references import ExternalReference, Reference, get_att, ref
from ..resource import Resource
from .builder import ResourceBuilder
from .iam import RoleBuilder, policy_document, policy_statement
from .logs import LogGroupBuilder
from .registry import ResourceKindDescriptor, register_kind

if TYPE_CHECKING:
    from ..stack import StackAssembler

logger = logging.getLogger(__name__)

KIND = "AWS::Lambda::Function"

LAMBDA_SERVICE = "lambda.amazonaws.com"
BASIC_EXECUTION_POLICY_ARN = (
    "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
)
DEFAULT_LOG_RETENTION_DAYS = 731

ENV_VAR_KEY_PATTERN = r"^[A-Za-z][A-Za-z0-9_]+$"
RESERVED_ENV_VAR_KEYS = frozenset(
    {
        "_HANDLER",
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "AWS_EXECUTION_ENV",
        "AWS_LAMBDA_FUNCTION_NAME",
        "AWS_LAMBDA_FUNCTION_MEMORY_SIZE",
        "AWS_LAMBDA_FUNCTION_VERSION",
        "AWS_LAMBDA_LOG_GROUP_NAME",
        "AWS_LAMBDA_LOG_STREAM_NAME",
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SESSION_TOKEN",
        "LAMBDA_TASK_ROOT",
        "LAMBDA_RUNTIME_DIR",
    }
)


class PackageType(str, Enum):
    """How the function code is delivered. Zip needs a handler and runtime."""

    ZIP = "Zip"
    IMAGE = "Image"


class Architecture(str, Enum):
    X86_64 = "x86_64"
    ARM64 = "arm64"


class Runtime(str, Enum):
    PYTHON_3_13 = "python3.13"
    PYTHON_3_12 = "python3.12"
    PYTHON_3_11 = "python3.11"
    NODEJS_22 = "nodejs22.x"
    NODEJS_20 = "nodejs20.x"
    JAVA_21 = "java21"
    JAVA_17 = "java17"
    DOTNET_8 = "dotnet8"
    RUBY_3_3 = "ruby3.3"
    PROVIDED_AL2023 = "provided.al2023"
    PROVIDED_AL2 = "provided.al2"


PROPERTIES = {
    "FunctionName": string(
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9_-]+$",
        pattern_description="letters, digits, hyphens and underscores",
    ),
    "Description": string(max_length=256),
    "Role": string(required=True),
    "PackageType": string(choices=[p.value for p in PackageType]),
    "Runtime": string(choices=[r.value for r in Runtime]),
    "Handler": string(min_length=1, max_length=128, pattern=r"^[^\s]+$"),
    "Code": obj(
        {
            "S3Bucket": string(min_length=3, max_length=63),
            "S3Key": string(min_length=1, max_length=1024),
            "S3ObjectVersion": string(min_length=1, max_length=1024),
            "ZipFile": string(min_length=1, max_length=4096),
            "ImageUri": string(min_length=1),
        },
        required=True,
    ),
    "MemorySize": integer(minimum=128, maximum=10240),
    "Timeout": integer(minimum=1, maximum=900),
    "Architectures": list_of(
        string(choices=[a.value for a in Architecture]), min_length=1, max_length=1
    ),
    "Environment": obj({"Variables": obj()}),
    "ReservedConcurrentExecutions": integer(minimum=0),
    "EphemeralStorage": obj({"Size": integer(required=True, minimum=512, maximum=10240)}),
    "LoggingConfig": obj({"LogGroup": string(min_length=1, max_length=512)}),
}


def _check_code(properties: Mapping) -> None:
    code = properties.get("Code")
    if not isinstance(code, Mapping):
        return
    collector = ViolationCollector()
    sources = {
        "Code.S3Bucket": code.get("S3Bucket") or code.get("S3Key"),
        "Code.ZipFile": code.get("ZipFile"),
        "Code.ImageUri": code.get("ImageUri"),
    }
    names = list(sources)
    for index, first in enumerate(names):
        for second in names[index + 1:]:
            collector.check(mutually_exclusive, sources, first, second)
    if code.get("S3Bucket") is not None or code.get("S3Key") is not None:
        for member in ("S3Bucket", "S3Key"):
            collector.check(
                require, code, member, f"Code.{member} is required for S3 deployment packages"
            )
    if all(value is None for value in sources.values()):
        collector.add(
            ValidationError(
                ValidationErrorKind.REQUIRED_FIELD_MISSING,
                "Code needs S3Bucket/S3Key, ZipFile or ImageUri",
                field="Code",
            )
        )
    collector.raise_if_any()


def _check_package_type(properties: Mapping) -> None:
    collector = ViolationCollector()
    is_image = properties.get("PackageType") == PackageType.IMAGE.value
    code = properties.get("Code") if isinstance(properties.get("Code"), Mapping) else {}

    if is_image:
        for name in ("Handler", "Runtime"):
            collector.check(
                only_allowed_when, properties, name, "PackageType", False, "Zip packages"
            )
        if code and code.get("ImageUri") is None:
            collector.add(
                ValidationError(
                    ValidationErrorKind.REQUIRED_FIELD_MISSING,
                    "Code.ImageUri is required when PackageType is Image",
                    field="Code.ImageUri",
                )
            )
    else:
        if code.get("ImageUri") is not None:
            collector.add(
                ValidationError(
                    ValidationErrorKind.MUTUAL_EXCLUSION,
                    "Code.ImageUri requires PackageType Image",
                    field="Code.ImageUri",
                    fields=("PackageType", "Code.ImageUri"),
                )
            )
        for name in ("Handler", "Runtime"):
            collector.check(
                require, properties, name, f"{name} is required for Zip packages"
            )
    collector.raise_if_any()


def _check_environment(properties: Mapping) -> None:
    environment = properties.get("Environment")
    if not isinstance(environment, Mapping):
        return
    variables = environment.get("Variables") or {}
    if not isinstance(variables, Mapping):
        return
    collector = ViolationCollector()
    for key in variables:
        field_name = f"Environment.Variables.{key}"
        if not re.fullmatch(ENV_VAR_KEY_PATTERN, key):
            collector.add(
                ValidationError(
                    ValidationErrorKind.PATTERN_MISMATCH,
                    f"Environment variable name {key!r} must start with a letter "
                    "and contain only letters, digits and underscores",
                    field=field_name,
                    value=key,
                )
            )
        elif key in RESERVED_ENV_VAR_KEYS:
            collector.add(
                ValidationError(
                    ValidationErrorKind.PATTERN_MISMATCH,
                    f"Environment variable name {key!r} is reserved by the runtime",
                    field=field_name,
                    value=key,
                )
            )
    collector.raise_if_any()


DESCRIPTOR = register_kind(
    ResourceKindDescriptor(
        kind=KIND,
        properties=PROPERTIES,
        rules=(_check_code, _check_package_type, _check_environment),
        identity_affecting=frozenset({"FunctionName", "PackageType"}),
        attributes=frozenset({"Arn"}),
        physical_name_property="FunctionName",
        description="Lambda function",
    )
)


class FunctionBuilder(ResourceBuilder):
    """Builds an ``AWS::Lambda::Function``.

    Zip packages (the default) need ``handler`` and ``runtime`` plus code from
    S3, a local archive or inline source; image packages need
    ``code_from_image`` and must not set a handler or runtime.

    A builder created through a StackAssembler also generates what the
    function needs to run: an execution role ``<id>Role`` (basic execution
    plus every ``add_permission`` statement) unless ``role`` is given, and a
    log group ``<id>LogGroup`` retained for two years unless ``log_group`` is
    given. Generated resources are registered together with the function.
    """

    KIND = KIND

    def __init__(
        self, resource_id: str, assembler: Optional["StackAssembler"] = None
    ) -> None:
        super().__init__(resource_id, assembler)
        self._zip: Optional[Tuple[Any, str]] = None
        self._permissions: List[Dict[str, Any]] = []

    def function_name(self, name: str) -> "FunctionBuilder":
        return self._set("FunctionName", name)

    def description(self, text: str) -> "FunctionBuilder":
        return self._set("Description", text)

    def role(self, role: Union[str, Reference, ExternalReference]) -> "FunctionBuilder":
        if isinstance(role, Reference) and role.attribute is None:
            role = Reference(role.resource_id, "Arn")
        return self._set("Role", role)

    def runtime(self, runtime: Runtime) -> "FunctionBuilder":
        return self._set("Runtime", Runtime(runtime).value)

    def handler(self, handler: str) -> "FunctionBuilder":
        return self._set("Handler", handler)

    def code_from_s3(
        self,
        bucket: Union[str, Reference, ExternalReference],
        key: str,
        object_version: Optional[str] = None,
    ) -> "FunctionBuilder":
        self._ensure_open()
        self._zip = None
        self._set_member("Code", "S3Bucket", bucket)
        self._set_member("Code", "S3Key", key)
        if object_version is not None:
            self._set_member("Code", "S3ObjectVersion", object_version)
        return self

    def code_from_zip(self, bucket: str, path: Union[str, "os.PathLike[str]"]) -> "FunctionBuilder":
        """Deploy a local zip archive, uploaded to ``bucket`` before the stack is submitted."""
        self._set_member("Code", "S3Bucket", bucket)
        self._zip = (bucket, os.fspath(path))
        return self

    def inline_code(self, source: str) -> "FunctionBuilder":
        return self._set_member("Code", "ZipFile", source)

    def code_from_image(self, image_uri: str) -> "FunctionBuilder":
        self._set("PackageType", PackageType.IMAGE.value)
        return self._set_member("Code", "ImageUri", image_uri)

    def memory_size(self, megabytes: int) -> "FunctionBuilder":
        return self._set("MemorySize", megabytes)

    def timeout(self, seconds: int) -> "FunctionBuilder":
        return self._set("Timeout", seconds)

    def architecture(self, architecture: Architecture) -> "FunctionBuilder":
        return self._set("Architectures", [Architecture(architecture).value])

    def environment_variable(
        self, key: str, value: Union[str, Reference, ExternalReference]
    ) -> "FunctionBuilder":
        self._ensure_open()
        environment = dict(self._properties.get("Environment") or {})
        variables = dict(environment.get("Variables") or {})
        variables[key] = value
        environment["Variables"] = variables
        return self._set("Environment", environment)

    def reserved_concurrency(self, executions: int) -> "FunctionBuilder":
        return self._set("ReservedConcurrentExecutions", executions)

    def ephemeral_storage(self, megabytes: int) -> "FunctionBuilder":
        return self._set("EphemeralStorage", {"Size": megabytes})

    def log_group(self, group: Union[str, Reference, ExternalReference]) -> "FunctionBuilder":
        """Log to an existing group instead of a generated one."""
        return self._set_member("LoggingConfig", "LogGroup", group)

    def add_permission(
        self, actions: List[str], resources: List[Union[str, Reference, ExternalReference]]
    ) -> "FunctionBuilder":
        """Allow the generated execution role ``actions`` on ``resources``."""
        self._ensure_open()
        self._permissions.append(policy_statement(actions, resources))
        return self

    def _companions(self) -> List[ResourceBuilder]:
        """Builders for the generated role and log group, wired into the properties."""
        builders: List[ResourceBuilder] = []
        if self._assembler is None:
            return builders

        if self._properties.get("Role") is None:
            role = (
                RoleBuilder(f"{self.resource_id}Role")
                .assumed_by_service(LAMBDA_SERVICE)
                .managed_policy(BASIC_EXECUTION_POLICY_ARN)
            )
            if self._permissions:
                role.inline_policy(
                    f"{self.resource_id}Permissions", policy_document(self._permissions)
                )
            builders.append(role)
            self._set("Role", get_att(role.resource_id, "Arn"))

        logging_config = self._properties.get("LoggingConfig")
        if not isinstance(logging_config, Mapping) or logging_config.get("LogGroup") is None:
            group = LogGroupBuilder(f"{self.resource_id}LogGroup").retention_in_days(
                DEFAULT_LOG_RETENTION_DAYS
            )
            function_name = self._properties.get("FunctionName")
            if isinstance(function_name, str):
                group.log_group_name(f"/aws/lambda/{function_name}")
            builders.append(group)
            self._set_member("LoggingConfig", "LogGroup", ref(group.resource_id))
        return builders

    def finalize(self) -> Resource:
        """Validate the function and any generated role and log group.

        Returns:
            The function Resource

        Raises:
            ResourceValidationError: With every violation of the function and
                its generated resources; nothing is registered
            BuilderStateError: If the builder was already finalized
            ValidationError: DuplicateIdentity if an id is already taken
        """
        self._ensure_open()
        saved = dict(self._properties)
        violations: List[ValidationError] = []

        if self._permissions and (saved.get("Role") is not None or self._assembler is None):
            violations.append(
                ValidationError(
                    ValidationErrorKind.MUTUAL_EXCLUSION,
                    "add_permission() only applies to the generated execution role; "
                    "grant permissions on the supplied role instead",
                    field="Role",
                    resource_id=self.resource_id,
                )
            )

        assets: Tuple[Asset, ...] = ()
        if self._zip is not None:
            bucket, path = self._zip
            try:
                asset = zip_asset(bucket, path)
            except ValidationError as e:
                violations.append(e.with_resource(self.resource_id))
                # Placeholder key; the properties are restored below
                key = os.path.basename(path) or "package.zip"
            else:
                assets = (asset,)
                key = asset.key
            self._set_member("Code", "S3Key", key)

        companions = self._companions()
        generated: List[Resource] = []
        for builder in companions:
            try:
                generated.append(builder.finalize())
            except ResourceValidationError as e:
                violations.extend(e.violations)

        properties: Dict[str, Any] = {}
        try:
            properties = self._validate()
        except ResourceValidationError as e:
            violations[:0] = e.violations

        if violations:
            self._properties = saved
            raise ResourceValidationError(
                violations, resource_id=self.resource_id, resource_kind=self.KIND
            )

        resource = self._build_resource(properties, assets)
        if self._assembler is not None:
            registered = self._assembler.resources
            for item in generated + [resource]:
                if item.id in registered:
                    self._properties = saved
                    raise ValidationError(
                        ValidationErrorKind.DUPLICATE_IDENTITY,
                        f"Resource id '{item.id}' is already used by a {registered[item.id].kind}",
                        field="id",
                        resource_id=item.id,
                        value=item.id,
                    )
            for item in generated + [resource]:
                self._assembler.add(item)

        self._resource = resource
        logger.debug(
            f"Finalized {self.KIND} '{self.resource_id}' with "
            f"{len(generated)} generated resource(s) and {len(assets)} asset(s)"
        )
        return resource
