"""
Template Diff Engine

Compares the previously deployed template with a newly synthesized one and
classifies every logical id as unchanged, added, removed or modified. A
modified resource is additionally flagged as replaced when a property that
determines its physical identity changed, since the provider will then
delete and recreate it.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .resources import identity_affecting_properties
from .synthesizer import (
    DELETION_POLICY_KEY,
    KIND_KEY,
    PROPERTIES_KEY,
    UPDATE_REPLACE_POLICY_KEY,
    Template,
)

logger = logging.getLogger(__name__)


class ChangeType(Enum):
    """How a logical id differs between two templates."""

    UNCHANGED = "unchanged"
    ADDED = "added"  # Only in the next template
    REMOVED = "removed"  # Only in the previous template
    MODIFIED = "modified"  # In both, content differs


@dataclass(frozen=True)
class ResourceChange:
    """Change of a single logical id."""

    logical_id: str
    change_type: ChangeType
    kind: Optional[str] = None
    changed_paths: Tuple[str, ...] = ()
    replacement_paths: Tuple[str, ...] = ()

    @property
    def replaced(self) -> bool:
        """True when the change forces the provider to recreate the resource."""
        return self.change_type is ChangeType.MODIFIED and bool(self.replacement_paths)

    @property
    def label(self) -> str:
        if self.replaced:
            return "replaced"
        return self.change_type.value


@dataclass(frozen=True)
class DiffResult:
    """Per-resource changes between two templates, sorted by logical id."""

    entries: Tuple[ResourceChange, ...] = field(default_factory=tuple)

    @property
    def changes(self) -> List[ResourceChange]:
        """Every entry that is not UNCHANGED."""
        return [e for e in self.entries if e.change_type is not ChangeType.UNCHANGED]

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def has_replacements(self) -> bool:
        return any(e.replaced for e in self.entries)

    def get(self, logical_id: str) -> Optional[ResourceChange]:
        return next((e for e in self.entries if e.logical_id == logical_id), None)

    def of_type(self, change_type: ChangeType) -> List[ResourceChange]:
        return [e for e in self.entries if e.change_type is change_type]

    @property
    def summary(self) -> Dict[str, int]:
        """Counts per ChangeType, plus the number of replacements."""
        summary = {change_type.value: 0 for change_type in ChangeType}
        for entry in self.entries:
            summary[entry.change_type.value] += 1
        summary["replaced"] = sum(1 for e in self.entries if e.replaced)
        return summary


def changed_paths(previous: Any, current: Any, prefix: str = "") -> List[str]:
    """Paths at which two JSON-compatible values differ.

    Mapping members are joined with ``.``, list positions with ``[i]``. When
    two lists differ in length the list itself is reported.
    """
    if isinstance(previous, dict) and isinstance(current, dict):
        paths: List[str] = []
        for key in sorted(set(previous) | set(current)):
            path = f"{prefix}.{key}" if prefix else key
            if key not in previous or key not in current:
                paths.append(path)
            else:
                paths.extend(changed_paths(previous[key], current[key], path))
        return paths
    if (
        isinstance(previous, list)
        and isinstance(current, list)
        and len(previous) == len(current)
    ):
        paths = []
        for index, (before, after) in enumerate(zip(previous, current)):
            paths.extend(changed_paths(before, after, f"{prefix}[{index}]"))
        return paths
    if previous == current and type(previous) is type(current):
        return []
    return [prefix]


def _top_level_property(path: str) -> str:
    name = path.split(".", 1)[0]
    return name.split("[", 1)[0]


def _compare_entry(
    logical_id: str, previous: Dict[str, Any], current: Dict[str, Any]
) -> ResourceChange:
    kind = current.get(KIND_KEY)
    if previous.get(KIND_KEY) != kind:
        return ResourceChange(
            logical_id,
            ChangeType.MODIFIED,
            kind=kind,
            changed_paths=(KIND_KEY,),
            replacement_paths=(KIND_KEY,),
        )

    paths = changed_paths(
        previous.get(PROPERTIES_KEY, {}), current.get(PROPERTIES_KEY, {})
    )
    for key in (DELETION_POLICY_KEY, UPDATE_REPLACE_POLICY_KEY):
        if previous.get(key) != current.get(key):
            paths.append(key)

    if not paths:
        return ResourceChange(logical_id, ChangeType.UNCHANGED, kind=kind)

    identity = identity_affecting_properties(kind)
    replacement = tuple(p for p in paths if _top_level_property(p) in identity)
    return ResourceChange(
        logical_id,
        ChangeType.MODIFIED,
        kind=kind,
        changed_paths=tuple(paths),
        replacement_paths=replacement,
    )


def diff(previous: Optional[Template], current: Optional[Template]) -> DiffResult:
    """Compare two templates. Either side may be None (no stack deployed / stack removed).

    Args:
        previous: The last deployed template, if any
        current: The newly synthesized template, if any

    Returns:
        DiffResult with one entry per logical id present in either template
    """
    before = previous.resources if previous is not None else {}
    after = current.resources if current is not None else {}

    entries: List[ResourceChange] = []
    for logical_id in sorted(set(before) | set(after)):
        if logical_id not in before:
            entries.append(
                ResourceChange(
                    logical_id, ChangeType.ADDED, kind=after[logical_id].get(KIND_KEY)
                )
            )
        elif logical_id not in after:
            entries.append(
                ResourceChange(
                    logical_id, ChangeType.REMOVED, kind=before[logical_id].get(KIND_KEY)
                )
            )
        else:
            entries.append(_compare_entry(logical_id, before[logical_id], after[logical_id]))

    result = DiffResult(tuple(entries))
    summary = result.summary
    logger.info(
        f"Template diff: {summary[ChangeType.ADDED.value]} added, "
        f"{summary[ChangeType.REMOVED.value]} removed, "
        f"{summary[ChangeType.MODIFIED.value]} modified "
        f"({summary['replaced']} replaced), "
        f"{summary[ChangeType.UNCHANGED.value]} unchanged"
    )
    return result
