"""Constraint library for resource properties.

Every check is a pure function: it returns the accepted (possibly normalized)
value or raises ValidationError. PropertySpec bundles the checks that apply
to one property so descriptors can declare their schema instead of coding it.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Type

from ..exceptions import (
    ResourceValidationError,
    ValidationError,
    ValidationErrorKind,
)
from .references import ExternalReference, Reference

LOGICAL_ID_PATTERN = r"^[A-Za-z][A-Za-z0-9]{0,254}$"

_FAILED = object()


def is_reference(value: Any) -> bool:
    return isinstance(value, (Reference, ExternalReference))


def matches_pattern(
    value: str, field: str, pattern: str, description: Optional[str] = None
) -> str:
    if not isinstance(value, str) or re.fullmatch(pattern, value) is None:
        expected = description or f"pattern {pattern}"
        raise ValidationError(
            ValidationErrorKind.PATTERN_MISMATCH,
            f"{field} must match {expected}, got {value!r}",
            field=field,
            value=value,
        )
    return value


def not_blank(value: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            ValidationErrorKind.PATTERN_MISMATCH,
            f"{field} must not be blank",
            field=field,
            value=value,
        )
    return value


def length_between(value: Sequence, field: str, minimum: int, maximum: int) -> Sequence:
    if not minimum <= len(value) <= maximum:
        raise ValidationError(
            ValidationErrorKind.OUT_OF_RANGE,
            f"{field} length must be between {minimum} and {maximum}, got {len(value)}",
            field=field,
            value=value,
        )
    return value


def in_range(
    value: int, field: str, minimum: Optional[int] = None, maximum: Optional[int] = None
) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            ValidationErrorKind.PATTERN_MISMATCH,
            f"{field} must be an integer, got {value!r}",
            field=field,
            value=value,
        )
    if (minimum is not None and value < minimum) or (
        maximum is not None and value > maximum
    ):
        low = "-inf" if minimum is None else minimum
        high = "inf" if maximum is None else maximum
        raise ValidationError(
            ValidationErrorKind.OUT_OF_RANGE,
            f"{field} must be between {low} and {high} inclusive, got {value}",
            field=field,
            value=value,
        )
    return value


def one_of(value: Any, field: str, choices: Iterable[Any]) -> Any:
    allowed = list(choices)
    # bool is an int subclass; True must not satisfy a choice of 1
    if any(value == c and type(value) is type(c) for c in allowed):
        return value
    raise ValidationError(
        ValidationErrorKind.PATTERN_MISMATCH,
        f"{field} must be one of {allowed}, got {value!r}",
        field=field,
        value=value,
    )


def ensure_suffix(value: str, suffix: str) -> str:
    if isinstance(value, str) and not value.endswith(suffix):
        return value + suffix
    return value


def require(properties: Mapping, field: str, reason: Optional[str] = None) -> Any:
    if properties.get(field) is None:
        raise ValidationError(
            ValidationErrorKind.REQUIRED_FIELD_MISSING,
            reason or f"{field} is required",
            field=field,
        )
    return properties[field]


def mutually_exclusive(
    properties: Mapping, first: str, second: str, reason: Optional[str] = None
) -> None:
    if properties.get(first) is not None and properties.get(second) is not None:
        raise ValidationError(
            ValidationErrorKind.MUTUAL_EXCLUSION,
            reason or f"{first} and {second} cannot both be set",
            field=first,
            fields=(first, second),
        )


def only_allowed_when(
    properties: Mapping,
    field: str,
    mode_field: str,
    allowed: bool,
    mode_label: str,
) -> None:
    """Reject ``field`` when the configuration mode does not permit it.

    Reported as a mutual exclusion between ``field`` and ``mode_field``.
    """
    if properties.get(field) is not None and not allowed:
        raise ValidationError(
            ValidationErrorKind.MUTUAL_EXCLUSION,
            f"{field} is only allowed for {mode_label} (set via {mode_field})",
            field=field,
            fields=(mode_field, field),
        )


def unique(values: Iterable[Any], field: str) -> List[Any]:
    seen: List[Any] = []
    for value in values:
        if value in seen:
            raise ValidationError(
                ValidationErrorKind.DUPLICATE_IDENTITY,
                f"{field} contains duplicate value {value!r}",
                field=field,
                value=value,
            )
        seen.append(value)
    return seen


def validate_logical_id(resource_id: Any) -> str:
    if not isinstance(resource_id, str):
        raise ValidationError(
            ValidationErrorKind.PATTERN_MISMATCH,
            f"resource id must be a string, got {resource_id!r}",
            field="id",
            value=resource_id,
        )
    return matches_pattern(
        resource_id,
        "id",
        LOGICAL_ID_PATTERN,
        "a letter followed by up to 254 letters or digits",
    )


def validate_property_value(value: Any, field: str) -> Any:
    """Check that ``value`` belongs to the property value union.

    Accepted: str, int, bool, list/tuple, mapping with string keys, and
    references. Floats and arbitrary objects are rejected so templates stay
    canonical.
    """
    if value is None:
        raise ValidationError(
            ValidationErrorKind.REQUIRED_FIELD_MISSING,
            f"{field} has no value",
            field=field,
        )
    if isinstance(value, (str, bool, int)) or is_reference(value):
        return value
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(
                    ValidationErrorKind.PATTERN_MISMATCH,
                    f"{field} has a non-string key {key!r}",
                    field=field,
                    value=key,
                )
            validate_property_value(item, f"{field}.{key}")
        return value
    if isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            validate_property_value(item, f"{field}[{index}]")
        return value
    raise ValidationError(
        ValidationErrorKind.PATTERN_MISMATCH,
        f"{field} has unsupported value type {type(value).__name__}",
        field=field,
        value=repr(value),
    )


class ViolationCollector:
    """Accumulates violations so a validation pass can report all of them."""

    def __init__(self) -> None:
        self.violations: List[ValidationError] = []

    def add(self, violation: ValidationError) -> None:
        self.violations.extend(violation.violations)

    def check(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``func``; on ValidationError record it and return a sentinel."""
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            self.add(e)
            return _FAILED

    def __bool__(self) -> bool:
        return bool(self.violations)

    def raise_if_any(
        self, error_class: Type[ResourceValidationError] = ResourceValidationError, **kwargs: Any
    ) -> None:
        if self.violations:
            raise error_class(self.violations, **kwargs)


def failed(result: Any) -> bool:
    return result is _FAILED


@dataclass(frozen=True)
class PropertySpec:
    """Declarative checks for one property.

    ``type`` is one of ``string``, ``integer``, ``boolean``, ``list``,
    ``object`` or ``any``. Nested objects list their members in ``fields``;
    list elements are checked against ``items``. References are accepted in
    place of strings when ``allow_reference`` is set and skip content checks.
    """

    type: str = "any"
    required: bool = False
    pattern: Optional[str] = None
    pattern_description: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    choices: Optional[Sequence[Any]] = None
    fields: Dict[str, "PropertySpec"] = field(default_factory=dict)
    items: Optional["PropertySpec"] = None
    unique_items: bool = False
    allow_reference: bool = True

    def validate(self, value: Any, name: str) -> Any:
        """Return the accepted value or raise (possibly aggregated) ValidationError."""
        validate_property_value(value, name)

        if is_reference(value):
            if self.allow_reference and self.type in ("string", "any"):
                return value
            raise ValidationError(
                ValidationErrorKind.PATTERN_MISMATCH,
                f"{name} does not accept a reference",
                field=name,
                value=str(value),
            )

        checker = getattr(self, f"_check_{self.type}")
        value = checker(value, name)

        if self.choices is not None:
            one_of(value, name, self.choices)
        return value

    def _check_any(self, value: Any, name: str) -> Any:
        return value

    def _check_string(self, value: Any, name: str) -> str:
        if not isinstance(value, str):
            raise ValidationError(
                ValidationErrorKind.PATTERN_MISMATCH,
                f"{name} must be a string, got {value!r}",
                field=name,
                value=value,
            )
        if self.min_length is not None or self.max_length is not None:
            length_between(
                value,
                name,
                self.min_length if self.min_length is not None else 0,
                self.max_length if self.max_length is not None else len(value),
            )
        if self.pattern is not None:
            matches_pattern(value, name, self.pattern, self.pattern_description)
        return value

    def _check_integer(self, value: Any, name: str) -> int:
        return in_range(value, name, self.minimum, self.maximum)

    def _check_boolean(self, value: Any, name: str) -> bool:
        if not isinstance(value, bool):
            raise ValidationError(
                ValidationErrorKind.PATTERN_MISMATCH,
                f"{name} must be a boolean, got {value!r}",
                field=name,
                value=value,
            )
        return value

    def _check_list(self, value: Any, name: str) -> List[Any]:
        if not isinstance(value, (list, tuple)):
            raise ValidationError(
                ValidationErrorKind.PATTERN_MISMATCH,
                f"{name} must be a list, got {type(value).__name__}",
                field=name,
            )
        if self.min_length is not None or self.max_length is not None:
            length_between(
                value,
                name,
                self.min_length if self.min_length is not None else 0,
                self.max_length if self.max_length is not None else len(value),
            )
        collector = ViolationCollector()
        accepted = []
        for index, item in enumerate(value):
            if self.items is None:
                accepted.append(item)
                continue
            result = collector.check(self.items.validate, item, f"{name}[{index}]")
            if not failed(result):
                accepted.append(result)
        if self.unique_items:
            collector.check(unique, accepted, name)
        collector.raise_if_any()
        return accepted

    def _check_object(self, value: Any, name: str) -> Dict[str, Any]:
        if not isinstance(value, Mapping):
            raise ValidationError(
                ValidationErrorKind.PATTERN_MISMATCH,
                f"{name} must be an object, got {type(value).__name__}",
                field=name,
            )
        if not self.fields:
            return dict(value)

        collector = ViolationCollector()
        accepted: Dict[str, Any] = {}
        for key, item in value.items():
            spec = self.fields.get(key)
            if spec is None:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.PATTERN_MISMATCH,
                        f"{name} has unknown member {key!r} "
                        f"(known: {sorted(self.fields)})",
                        field=f"{name}.{key}",
                    )
                )
                continue
            result = collector.check(spec.validate, item, f"{name}.{key}")
            if not failed(result):
                accepted[key] = result
        for key, spec in self.fields.items():
            if spec.required and value.get(key) is None:
                collector.add(
                    ValidationError(
                        ValidationErrorKind.REQUIRED_FIELD_MISSING,
                        f"{name}.{key} is required",
                        field=f"{name}.{key}",
                    )
                )
        collector.raise_if_any()
        return accepted


# Shorthands used by resource descriptors
def string(**kwargs: Any) -> PropertySpec:
    return PropertySpec(type="string", **kwargs)


def integer(**kwargs: Any) -> PropertySpec:
    return PropertySpec(type="integer", **kwargs)


def boolean(**kwargs: Any) -> PropertySpec:
    return PropertySpec(type="boolean", **kwargs)


def list_of(items: Optional[PropertySpec] = None, **kwargs: Any) -> PropertySpec:
    return PropertySpec(type="list", items=items, **kwargs)


def obj(fields: Optional[Dict[str, PropertySpec]] = None, **kwargs: Any) -> PropertySpec:
    return PropertySpec(type="object", fields=fields or {}, **kwargs)
