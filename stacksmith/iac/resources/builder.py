"""Validated, single-use resource builders.

Setters only record values. All checking happens in finalize(), over the
whole accumulated property set, so every violation is reported at once and a
Resource is never returned half-valid.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from ...exceptions import (
    BuilderStateError,
    ResourceValidationError,
    ValidationError,
    ValidationErrorKind,
)
from ..assets import Asset
from ..constraints import ViolationCollector, failed, validate_logical_id
from ..resource import DeletionPolicy, Resource
from .registry import ResourceKindDescriptor, get_descriptor

if TYPE_CHECKING:
    from ..stack import StackAssembler

logger = logging.getLogger(__name__)


class ResourceBuilder:
    """Base class for the per-kind builders.

    Subclasses set ``KIND`` and add fluent setters that write provider
    property names through ``_set``. ``set_property`` remains available for
    properties without a dedicated setter.
    """

    KIND: str = ""

    def __init__(
        self, resource_id: str, assembler: Optional["StackAssembler"] = None
    ) -> None:
        self.resource_id = resource_id
        self._assembler = assembler
        self._properties: Dict[str, Any] = {}
        self._deletion_policy: Optional[DeletionPolicy] = None
        self._update_replace_policy: Optional[DeletionPolicy] = None
        self._resource: Optional[Resource] = None

    @property
    def descriptor(self) -> ResourceKindDescriptor:
        return get_descriptor(self.KIND)

    @property
    def finalized(self) -> bool:
        return self._resource is not None

    def _ensure_open(self) -> None:
        if self._resource is not None:
            raise BuilderStateError(
                f"Builder for '{self.resource_id}' was already finalized",
                resource_id=self.resource_id,
            )

    def _set(self, name: str, value: Any) -> "ResourceBuilder":
        self._ensure_open()
        self._properties[name] = value
        return self

    def _set_member(self, parent: str, name: str, value: Any) -> "ResourceBuilder":
        self._ensure_open()
        current = dict(self._properties.get(parent) or {})
        current[name] = value
        self._properties[parent] = current
        return self

    def _append(self, name: str, value: Any) -> "ResourceBuilder":
        self._ensure_open()
        self._properties[name] = list(self._properties.get(name) or []) + [value]
        return self

    def set_property(self, name: str, value: Any) -> "ResourceBuilder":
        return self._set(name, value)

    def deletion_policy(self, policy: DeletionPolicy) -> "ResourceBuilder":
        self._ensure_open()
        self._deletion_policy = DeletionPolicy(policy)
        return self

    def update_replace_policy(self, policy: DeletionPolicy) -> "ResourceBuilder":
        self._ensure_open()
        self._update_replace_policy = DeletionPolicy(policy)
        return self

    def _validate(self) -> Dict[str, Any]:
        descriptor = self.descriptor
        collector = ViolationCollector()
        collector.check(validate_logical_id, self.resource_id)

        properties = descriptor.normalize(self._properties)
        accepted: Dict[str, Any] = {}
        rejected = False
        for name, value in properties.items():
            spec = descriptor.properties.get(name)
            if spec is None:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.PATTERN_MISMATCH,
                        f"{descriptor.kind} has no property '{name}'",
                        field=name,
                    )
                )
                continue
            result = collector.check(spec.validate, value, name)
            if not failed(result):
                accepted[name] = result
            else:
                rejected = True

        for name, spec in descriptor.properties.items():
            if spec.required and properties.get(name) is None:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.REQUIRED_FIELD_MISSING,
                        f"{name} is required for {descriptor.kind}",
                        field=name,
                    )
                )

        # Cross-field rules assume well-typed members
        if not rejected:
            for rule in descriptor.rules:
                collector.check(rule, accepted)

        for label, policy in (
            ("DeletionPolicy", self._deletion_policy),
            ("UpdateReplacePolicy", self._update_replace_policy),
        ):
            if policy is DeletionPolicy.SNAPSHOT and not descriptor.supports_snapshot:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.PATTERN_MISMATCH,
                        f"{label} Snapshot is not supported by {descriptor.kind}",
                        field=label,
                        value=policy.value,
                    )
                )

        if collector:
            raise ResourceValidationError(
                [v.with_resource(self.resource_id) for v in collector.violations],
                resource_id=self.resource_id,
                resource_kind=descriptor.kind,
            )
        return accepted

    def _build_resource(
        self, properties: Dict[str, Any], assets: Tuple[Asset, ...] = ()
    ) -> Resource:
        return Resource(
            id=self.resource_id,
            kind=self.KIND,
            properties=properties,
            deletion_policy=self._deletion_policy,
            update_replace_policy=self._update_replace_policy,
            assets=assets,
        )

    def finalize(self) -> Resource:
        """Validate everything and produce the immutable Resource.

        Returns:
            The Resource (also registered with the assembler, if one was given)

        Raises:
            ResourceValidationError: With every violation found
            BuilderStateError: If the builder was already finalized
            ValidationError: DuplicateIdentity from the assembler
        """
        self._ensure_open()
        resource = self._build_resource(self._validate())
        if self._assembler is not None:
            self._assembler.add(resource)
        self._resource = resource
        logger.debug(f"Finalized {self.KIND} '{self.resource_id}'")
        return resource
