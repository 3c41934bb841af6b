"""Immutable resource model produced by builders."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, Optional, Tuple

from .assets import Asset
from .references import collect_references


class DeletionPolicy(str, Enum):
    """What the provider does with the physical resource when it leaves the stack."""

    DELETE = "Delete"
    RETAIN = "Retain"
    SNAPSHOT = "Snapshot"
    RETAIN_EXCEPT_ON_CREATE = "RetainExceptOnCreate"


def freeze(value: Any) -> Any:
    """Deep-copy ``value`` into read-only mappings and tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


@dataclass(frozen=True)
class Resource:
    """A validated resource.

    Only ResourceBuilder.finalize() creates these. ``properties`` is a
    read-only, insertion-ordered mapping and ``dependencies`` is derived from
    the references the properties contain. ``assets`` lists local files that
    must be uploaded before the resource can be deployed; they are not part
    of the template.
    """

    id: str
    kind: str
    properties: Mapping[str, Any]
    deletion_policy: Optional[DeletionPolicy] = None
    update_replace_policy: Optional[DeletionPolicy] = None
    assets: Tuple[Asset, ...] = ()
    dependencies: FrozenSet[str] = field(init=False)

    def __post_init__(self) -> None:
        frozen = freeze(self.properties)
        object.__setattr__(self, "properties", frozen)
        object.__setattr__(self, "assets", tuple(self.assets))
        object.__setattr__(
            self,
            "dependencies",
            frozenset(r.resource_id for r in collect_references(frozen)),
        )

    def get(self, name: str, default: Any = None) -> Any:
        return self.properties.get(name, default)

    def __hash__(self) -> int:
        return hash((self.id, self.kind))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Resource):
            return NotImplemented
        return (
            self.id == other.id
            and self.kind == other.kind
            and dict(self.properties) == dict(other.properties)
            and self.deletion_policy == other.deletion_policy
            and self.update_replace_policy == other.update_replace_policy
        )
