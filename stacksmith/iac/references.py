"""Cross-resource references.

A reference is a symbolic pointer to another resource in the same stack (or,
for ExternalReference, to a resource created elsewhere). It never holds a
concrete value: the provider substitutes the value at deploy time.

Philosophy:
- Immutable value objects
- Resolution is checked eagerly when a stack is assembled
- Lowering to template nodes happens only in the synthesizer
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional

from ..exceptions import ValidationError, ValidationErrorKind

REF_KEY = "Ref"
GET_ATT_KEY = "Fn::GetAtt"


class ReferenceKind(str, Enum):
    """What a reference asks for."""

    IDENTIFIER = "identifier"
    ATTRIBUTE = "attribute"


@dataclass(frozen=True)
class Reference:
    """Pointer to a resource in the same stack.

    With ``attribute=None`` it stands for the resource's literal identifier,
    otherwise for the named attribute (for example ``Arn``).
    """

    resource_id: str
    attribute: Optional[str] = None

    @property
    def kind(self) -> ReferenceKind:
        if self.attribute is None:
            return ReferenceKind.IDENTIFIER
        return ReferenceKind.ATTRIBUTE

    def lower(self) -> dict[str, Any]:
        if self.attribute is None:
            return {REF_KEY: self.resource_id}
        return {GET_ATT_KEY: [self.resource_id, self.attribute]}

    def __str__(self) -> str:
        if self.attribute is None:
            return f"ref({self.resource_id})"
        return f"get_att({self.resource_id}.{self.attribute})"


@dataclass(frozen=True)
class ExternalReference:
    """Identifier of a resource managed outside the stack."""

    resource_type: str
    identifier: str

    def lower(self) -> str:
        return self.identifier

    def __str__(self) -> str:
        return f"external({self.resource_type}:{self.identifier})"


def ref(resource_id: str) -> Reference:
    return Reference(resource_id)


def get_att(resource_id: str, attribute: str) -> Reference:
    return Reference(resource_id, attribute)


def external(resource_type: str, identifier: str) -> ExternalReference:
    return ExternalReference(resource_type, identifier)


def _walk(value: Any) -> Iterator[Any]:
    if isinstance(value, (Reference, ExternalReference)):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _walk(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _walk(item)


def collect_references(value: Any) -> List[Reference]:
    """Return every in-stack Reference nested anywhere inside ``value``."""
    return [item for item in _walk(value) if isinstance(item, Reference)]


def collect_external_references(value: Any) -> List[ExternalReference]:
    return [item for item in _walk(value) if isinstance(item, ExternalReference)]


def resolve_reference(
    reference: Reference,
    resource_kinds: Mapping[str, str],
    exported_attributes: Optional[Callable[[str], Optional[frozenset]]] = None,
    owner_id: Optional[str] = None,
) -> str:
    """Check that ``reference`` points at a resource in the stack.

    Args:
        reference: The reference to resolve
        resource_kinds: Resource id -> kind tag for every resource in the stack
        exported_attributes: Optional lookup of the attributes a kind exports;
            ``None`` from the lookup means the kind is unknown and any
            attribute is accepted
        owner_id: Id of the resource holding the reference, for error context

    Returns:
        The id of the referenced resource

    Raises:
        ValidationError: UnresolvableReference
    """
    target_kind = resource_kinds.get(reference.resource_id)
    if target_kind is None:
        raise ValidationError(
            ValidationErrorKind.UNRESOLVABLE_REFERENCE,
            f"{owner_id or 'resource'} references '{reference.resource_id}', "
            "which is not part of the stack",
            resource_id=owner_id,
            value=str(reference),
        )

    if reference.attribute is not None and exported_attributes is not None:
        attributes = exported_attributes(target_kind)
        if attributes is not None and reference.attribute not in attributes:
            raise ValidationError(
                ValidationErrorKind.UNRESOLVABLE_REFERENCE,
                f"{target_kind} '{reference.resource_id}' has no attribute "
                f"'{reference.attribute}' (available: {sorted(attributes)})",
                resource_id=owner_id,
                value=str(reference),
            )

    return reference.resource_id


def lower(value: Any) -> Any:
    """Convert a property value into plain JSON-compatible data.

    References become intrinsic-function nodes, read-only mappings become
    dicts and tuples become lists.
    """
    if isinstance(value, (Reference, ExternalReference)):
        return value.lower()
    if isinstance(value, Mapping):
        return {str(key): lower(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [lower(item) for item in value]
    return value
