"""Template synthesis.

Turns a built Stack into the canonical template document:

    {"resources": {logicalId: {"kind": ..., "properties": {...}}}}

Keys are sorted at every level and references become ``Ref`` / ``Fn::GetAtt``
nodes, so the same Stack always yields byte-identical JSON.
"""

import copy
import json
from collections.abc import Mapping
from typing import Any, Dict, Iterator, Optional

from ..exceptions import TemplateFormatError
from .references import lower
from .stack import Stack

RESOURCES_KEY = "resources"
KIND_KEY = "kind"
PROPERTIES_KEY = "properties"
DELETION_POLICY_KEY = "deletionPolicy"
UPDATE_REPLACE_POLICY_KEY = "updateReplacePolicy"

_ENTRY_KEYS = frozenset(
    {
        KIND_KEY,
        PROPERTIES_KEY,
        DELETION_POLICY_KEY,
        UPDATE_REPLACE_POLICY_KEY,
    }
)


def canonicalize(value: Any) -> Any:
    """Return ``value`` with every mapping's keys sorted."""
    if isinstance(value, Mapping):
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    if isinstance(value, float):
        raise TemplateFormatError(f"Non-integer number {value!r} in template")
    return value


class Template:
    """Immutable canonical template document.

    Equality is equality of the canonical document.
    """

    def __init__(self, document: Mapping) -> None:
        self._document = canonicalize(document)
        self._json = json.dumps(
            self._document, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )

    @classmethod
    def from_document(cls, document: Any) -> "Template":
        """Validate the shape of a parsed document and wrap it.

        Raises:
            TemplateFormatError: If the document is not a canonical template
        """
        if not isinstance(document, Mapping) or set(document) != {RESOURCES_KEY}:
            raise TemplateFormatError(
                f"Template must be an object with a single '{RESOURCES_KEY}' key"
            )
        resources = document[RESOURCES_KEY]
        if not isinstance(resources, Mapping):
            raise TemplateFormatError(f"'{RESOURCES_KEY}' must be an object")
        for logical_id, entry in resources.items():
            if not isinstance(entry, Mapping):
                raise TemplateFormatError(
                    f"Resource '{logical_id}' must be an object",
                    context={"logical_id": logical_id},
                )
            unknown = set(entry) - _ENTRY_KEYS
            if unknown:
                raise TemplateFormatError(
                    f"Resource '{logical_id}' has unknown keys {sorted(unknown)}",
                    context={"logical_id": logical_id},
                )
            if not isinstance(entry.get(KIND_KEY), str):
                raise TemplateFormatError(
                    f"Resource '{logical_id}' has no kind",
                    context={"logical_id": logical_id},
                )
            if not isinstance(entry.get(PROPERTIES_KEY, {}), Mapping):
                raise TemplateFormatError(
                    f"Resource '{logical_id}' properties must be an object",
                    context={"logical_id": logical_id},
                )
        return cls(document)

    @classmethod
    def from_json(cls, text: str) -> "Template":
        try:
            document = json.loads(text)
        except ValueError as e:
            raise TemplateFormatError(f"Template is not valid JSON: {e}", cause=e) from e
        return cls.from_document(document)

    @property
    def document(self) -> Dict[str, Any]:
        """A deep copy of the canonical document."""
        return copy.deepcopy(self._document)

    @property
    def resources(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._document[RESOURCES_KEY])

    def resource(self, logical_id: str) -> Optional[Dict[str, Any]]:
        entry = self._document[RESOURCES_KEY].get(logical_id)
        return copy.deepcopy(entry) if entry is not None else None

    def logical_ids(self) -> Iterator[str]:
        return iter(self._document[RESOURCES_KEY])

    def to_json(self, indent: Optional[int] = None) -> str:
        if indent is None:
            return self._json
        return json.dumps(self._document, sort_keys=True, indent=indent, ensure_ascii=False)

    def __len__(self) -> int:
        return len(self._document[RESOURCES_KEY])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Template):
            return NotImplemented
        return self._json == other._json

    def __hash__(self) -> int:
        return hash(self._json)

    def __repr__(self) -> str:
        return f"Template(resources={list(self.logical_ids())})"


def synthesize(stack: Stack) -> Template:
    """Compile a built Stack into its canonical Template."""
    resources: Dict[str, Any] = {}
    for resource in stack:
        entry: Dict[str, Any] = {
            KIND_KEY: resource.kind,
            PROPERTIES_KEY: lower(resource.properties),
        }
        if resource.deletion_policy is not None:
            entry[DELETION_POLICY_KEY] = resource.deletion_policy.value
        if resource.update_replace_policy is not None:
            entry[UPDATE_REPLACE_POLICY_KEY] = resource.update_replace_policy.value
        resources[resource.id] = entry
    return Template({RESOURCES_KEY: resources})
