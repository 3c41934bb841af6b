"""Stack assembly: references, dependency graph and stack-wide constraints.

Philosophy:
- The assembler is the only way to obtain a Stack
- build() reports every violation at once and never fixes or drops anything
- A built Stack is immutable and safe to share between threads
"""

import logging
import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple, Type, TypeVar

import networkx as nx

from ..exceptions import StackValidationError, ValidationError, ValidationErrorKind
from .assets import Asset
from .constraints import ViolationCollector
from .references import (
    ExternalReference,
    collect_external_references,
    collect_references,
    resolve_reference,
)
from .resource import Resource
from .resources import ResourceBuilder, exported_attributes, find_descriptor
from .verification import IdentityVerifier, VerificationStatus

logger = logging.getLogger(__name__)

MAX_TAGS = 50
TAG_KEY_PATTERN = r"^[\w\s.:/=+\-@]+$"
RESERVED_TAG_PREFIX = "aws:"

B = TypeVar("B", bound=ResourceBuilder)


class Stack:
    """An assembled, validated and immutable set of resources.

    Attributes:
        resources: Resource id -> Resource, in insertion order
        tags: Deploy-time stack tags (not part of the template)
        graph: Frozen dependency graph; an edge X -> Y means X references Y
        deployment_order: Resource ids with dependencies first
        warnings: Non-fatal findings from build()
        assets: Local files the resources need uploaded before deployment
    """

    def __init__(
        self,
        resources: Dict[str, Resource],
        tags: Dict[str, str],
        graph: nx.DiGraph,
        deployment_order: Tuple[str, ...],
        warnings: Tuple[str, ...] = (),
    ) -> None:
        self._resources = MappingProxyType(dict(resources))
        self._tags = MappingProxyType(dict(tags))
        self._graph = nx.freeze(graph.copy())
        self._deployment_order = tuple(deployment_order)
        self._warnings = tuple(warnings)

    @property
    def resources(self) -> Mapping:
        return self._resources

    @property
    def tags(self) -> Mapping:
        return self._tags

    @property
    def graph(self) -> nx.DiGraph:
        return self._graph

    @property
    def deployment_order(self) -> Tuple[str, ...]:
        return self._deployment_order

    @property
    def warnings(self) -> Tuple[str, ...]:
        return self._warnings

    @property
    def assets(self) -> Tuple[Asset, ...]:
        """Files to upload before submitting, without duplicates."""
        assets: Dict[Asset, None] = {}
        for resource in self._resources.values():
            assets.update(dict.fromkeys(resource.assets))
        return tuple(assets)

    def dependencies_of(self, resource_id: str) -> FrozenSet[str]:
        """Ids that ``resource_id`` references."""
        return frozenset(self._graph.successors(resource_id))

    def dependents_of(self, resource_id: str) -> FrozenSet[str]:
        """Ids that reference ``resource_id``."""
        return frozenset(self._graph.predecessors(resource_id))

    def __getitem__(self, resource_id: str) -> Resource:
        return self._resources[resource_id]

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._resources

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def __repr__(self) -> str:
        return f"Stack(resources={list(self._resources)}, tags={dict(self._tags)})"


class StackAssembler:
    """Collects finalized resources and tags, then builds a Stack."""

    def __init__(self) -> None:
        self._resources: Dict[str, Resource] = {}
        self._tags: List[Tuple[str, str]] = []

    @property
    def resources(self) -> Mapping:
        return MappingProxyType(self._resources)

    def new(self, builder_class: Type[B], resource_id: str) -> B:
        """Create a builder whose finalize() adds the resource to this assembler."""
        return builder_class(resource_id, assembler=self)

    def add(self, resource: Resource) -> Resource:
        """Add a finalized resource.

        Raises:
            ValidationError: DuplicateIdentity if the id is already taken
        """
        if resource.id in self._resources:
            existing = self._resources[resource.id]
            raise ValidationError(
                ValidationErrorKind.DUPLICATE_IDENTITY,
                f"Resource id '{resource.id}' is already used by a {existing.kind}",
                field="id",
                resource_id=resource.id,
                value=resource.id,
            )
        self._resources[resource.id] = resource
        return resource

    def add_tag(self, key: str, value: str) -> "StackAssembler":
        """Attach a deploy-time tag. Validated by build()."""
        self._tags.append((key, value))
        return self

    def build(
        self,
        verifier: Optional[IdentityVerifier] = None,
        strict: bool = False,
    ) -> Stack:
        """Validate the whole set and produce an immutable Stack.

        Args:
            verifier: Optional checker for ExternalReference targets
            strict: Treat missing or unverifiable external resources as errors

        Returns:
            The assembled Stack

        Raises:
            StackValidationError: With every violation found; the assembler
                is left unchanged and may be fixed and built again
        """
        collector = ViolationCollector()
        resource_kinds = {rid: r.kind for rid, r in self._resources.items()}

        graph = nx.DiGraph()
        graph.add_nodes_from(self._resources)
        for resource in self._resources.values():
            for reference in collect_references(resource.properties):
                target = collector.check(
                    resolve_reference,
                    reference,
                    resource_kinds,
                    exported_attributes,
                    owner_id=resource.id,
                )
                if target in resource_kinds:
                    graph.add_edge(resource.id, target)

        cycles = self._find_cycles(graph)
        for cycle in cycles:
            path = " -> ".join(cycle)
            collector.add(
                ValidationError(
                    ValidationErrorKind.CYCLIC_DEPENDENCY,
                    f"Cyclic dependency: {path}",
                    resource_id=cycle[0],
                    value=list(cycle),
                )
            )

        self._check_physical_names(collector)
        tags = self._check_tags(collector)
        warnings = self._verify_external(collector, verifier, strict)

        if collector:
            logger.info(
                f"Stack build failed with {len(collector.violations)} violation(s)"
            )
            raise StackValidationError(collector.violations)

        order = tuple(nx.lexicographical_topological_sort(graph.reverse(copy=True)))
        logger.debug(f"Built stack with {len(order)} resources: {list(order)}")
        return Stack(self._resources, tags, graph, order, tuple(warnings))

    def _find_cycles(self, graph: nx.DiGraph) -> List[List[str]]:
        """One representative cycle per strongly connected component."""
        cycles = []
        components = sorted(
            (sorted(c) for c in nx.strongly_connected_components(graph)),
            key=lambda c: c[0],
        )
        for component in components:
            start = component[0]
            if len(component) == 1 and not graph.has_edge(start, start):
                continue
            edges = nx.find_cycle(graph.subgraph(component), source=start)
            cycle = [edge[0] for edge in edges]
            cycle.append(edges[-1][1])
            cycles.append(cycle)
        return cycles

    def _check_physical_names(self, collector: ViolationCollector) -> None:
        seen: Dict[Tuple[str, str], str] = {}
        for resource in self._resources.values():
            descriptor = find_descriptor(resource.kind)
            if descriptor is None or descriptor.physical_name_property is None:
                continue
            name = resource.properties.get(descriptor.physical_name_property)
            if not isinstance(name, str):
                continue
            key = (resource.kind, name)
            if key in seen:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.DUPLICATE_IDENTITY,
                        f"{resource.kind} name '{name}' is used by both "
                        f"'{seen[key]}' and '{resource.id}'",
                        field=descriptor.physical_name_property,
                        resource_id=resource.id,
                        value=name,
                    )
                )
            else:
                seen[key] = resource.id

    def _check_tags(self, collector: ViolationCollector) -> Dict[str, str]:
        tags: Dict[str, str] = {}
        if len(self._tags) > MAX_TAGS:
            collector.add(
                ValidationError(
                    ValidationErrorKind.OUT_OF_RANGE,
                    f"A stack supports at most {MAX_TAGS} tags, got {len(self._tags)}",
                    field="tags",
                )
            )
        for key, value in self._tags:
            field_name = f"tags.{key}"
            if not isinstance(key, str) or not 1 <= len(key) <= 128:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.OUT_OF_RANGE,
                        "Tag keys must be 1 to 128 characters long",
                        field=field_name,
                        value=key,
                    )
                )
                continue
            if key.lower().startswith(RESERVED_TAG_PREFIX):
                collector.add(
                    ValidationError(
                        ValidationErrorKind.PATTERN_MISMATCH,
                        f"Tag key '{key}' uses the reserved '{RESERVED_TAG_PREFIX}' prefix",
                        field=field_name,
                        value=key,
                    )
                )
            elif re.fullmatch(TAG_KEY_PATTERN, key) is None:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.PATTERN_MISMATCH,
                        f"Tag key '{key}' contains unsupported characters",
                        field=field_name,
                        value=key,
                    )
                )
            if not isinstance(value, str) or len(value) > 256:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.OUT_OF_RANGE,
                        "Tag values must be strings of at most 256 characters",
                        field=field_name,
                        value=value,
                    )
                )
            if key in tags:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.DUPLICATE_IDENTITY,
                        f"Tag key '{key}' is set more than once",
                        field=field_name,
                        value=key,
                    )
                )
            tags[key] = value
        return tags

    def _verify_external(
        self,
        collector: ViolationCollector,
        verifier: Optional[IdentityVerifier],
        strict: bool,
    ) -> List[str]:
        warnings: List[str] = []
        if verifier is None:
            return warnings

        checked: Dict[ExternalReference, VerificationStatus] = {}
        for resource in self._resources.values():
            for external in collect_external_references(resource.properties):
                if external not in checked:
                    result = verifier.verify(external.resource_type, external.identifier)
                    checked[external] = result.status
                status = checked[external]
                if status is VerificationStatus.EXISTS:
                    continue
                problem = (
                    "does not exist"
                    if status is VerificationStatus.MISSING
                    else "could not be verified"
                )
                message = (
                    f"'{resource.id}' references {external.resource_type} "
                    f"'{external.identifier}', which {problem}"
                )
                if strict:
                    collector.add(
                        ValidationError(
                            ValidationErrorKind.UNRESOLVABLE_REFERENCE,
                            message,
                            resource_id=resource.id,
                            value=str(external),
                        )
                    )
                else:
                    logger.warning(message)
                    warnings.append(message)
        return warnings
