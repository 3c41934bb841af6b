"""Registry of resource-kind descriptors.

A descriptor is the single source of truth about a kind: its property
schema, cross-field rules, exported attributes and which properties force a
replacement when they change. Builders, the stack assembler and the diff
engine all read it from here.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

from ..constraints import PropertySpec

Rule = Callable[[Mapping], None]
Normalizer = Callable[[Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class ResourceKindDescriptor:
    """Static facts about one resource kind."""

    kind: str
    properties: Dict[str, PropertySpec]
    rules: Tuple[Rule, ...] = ()
    normalizers: Tuple[Normalizer, ...] = ()
    identity_affecting: FrozenSet[str] = frozenset()
    attributes: FrozenSet[str] = frozenset()
    physical_name_property: Optional[str] = None
    supports_snapshot: bool = False
    description: str = field(default="", compare=False)

    def normalize(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        result = dict(properties)
        for normalizer in self.normalizers:
            result = normalizer(result)
        return result

    def replaces_on_change(self, property_name: str) -> bool:
        return property_name in self.identity_affecting


# Global kind registry
_KIND_REGISTRY: Dict[str, ResourceKindDescriptor] = {}


def register_kind(descriptor: ResourceKindDescriptor) -> ResourceKindDescriptor:
    """Register a descriptor under its kind tag.

    Args:
        descriptor: Descriptor to register

    Returns:
        The registered descriptor
    """
    _KIND_REGISTRY[descriptor.kind] = descriptor
    return descriptor


def get_kind_registry() -> Dict[str, ResourceKindDescriptor]:
    """Get a copy of the current kind registry."""
    return _KIND_REGISTRY.copy()


def get_descriptor(kind: str) -> ResourceKindDescriptor:
    """Get the descriptor for ``kind``.

    Raises:
        KeyError: If the kind is not registered
    """
    if kind not in _KIND_REGISTRY:
        available_kinds = sorted(_KIND_REGISTRY)
        raise KeyError(
            f"No descriptor registered for kind '{kind}'. "
            f"Available kinds: {available_kinds}"
        )
    return _KIND_REGISTRY[kind]


def find_descriptor(kind: str) -> Optional[ResourceKindDescriptor]:
    return _KIND_REGISTRY.get(kind)


def exported_attributes(kind: str) -> Optional[FrozenSet[str]]:
    """Attributes ``kind`` exports, or None when the kind is unknown."""
    descriptor = _KIND_REGISTRY.get(kind)
    return descriptor.attributes if descriptor else None


def identity_affecting_properties(kind: str) -> FrozenSet[str]:
    descriptor = _KIND_REGISTRY.get(kind)
    return descriptor.identity_affecting if descriptor else frozenset()
