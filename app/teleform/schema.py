# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Form field definitions and their structural validation.

A form is an ordered JSON array of field definitions. The order fixes both
the render order and the key set of the submitted payload. Validation is
fail-fast: the first violation stops the walk and is reported with the
field's index, key and label, and the shape that was expected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from app.teleform.exceptions import SchemaError
from app.teleform.result import Err, Ok, Result

__all__ = ["FieldType", "FieldDefinition", "validate_fields", "validate_field"]


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    EMAIL = "email"
    TEL = "tel"
    SELECT = "select"
    MULTISELECT = "multiselect"


ALLOWED_TYPES: Tuple[str, ...] = tuple(t.value for t in FieldType)
CHOICE_TYPES = frozenset({FieldType.SELECT, FieldType.MULTISELECT})
TEXT_TYPES = frozenset({FieldType.STRING, FieldType.EMAIL, FieldType.TEL, FieldType.DATE})

_MISSING = object()


@dataclass(frozen=True)
class FieldDefinition:
    """One validated form field.

    Attributes:
        key:       Unique, non-empty identifier; the payload key.
        label:     Non-empty display string.
        type:      One of :class:`FieldType`.
        required:  Whether a value must be entered.
        default:   Initial value, already checked against ``type``.
        has_default:  ``True`` when the definition carried a ``default``.
        options:   Choices for select/multiselect, ``None`` otherwise.
    """

    key: str
    label: str
    type: FieldType
    required: bool = False
    default: Any = None
    has_default: bool = False
    options: Optional[Tuple[str, ...]] = None

    @property
    def is_choice(self) -> bool:
        return self.type in CHOICE_TYPES

    def to_dict(self) -> Dict[str, Any]:
        """Render the wire (JSON) shape, omitting absent optionals."""
        data: Dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "type": self.type.value,
        }
        if self.required:
            data["required"] = True
        if self.has_default:
            data["default"] = list(self.default) if isinstance(self.default, tuple) else self.default
        if self.options is not None:
            data["options"] = list(self.options)
        return data


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _json_type_name(value: Any) -> str:
    """Name *value*'s type the way a JSON author would."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if value is None:
        return "null"
    return "object"


def _check_default(
    field_type: FieldType, default: Any, options: Optional[List[str]]
) -> Optional[str]:
    """Return the expected-shape message when *default* does not fit, else ``None``."""
    if field_type in TEXT_TYPES:
        if not isinstance(default, str):
            return f"a string for type '{field_type.value}'."
        return None

    if field_type is FieldType.NUMBER:
        if isinstance(default, bool) or not isinstance(default, (int, float)):
            return "a number for type 'number'."
        return None

    if field_type is FieldType.BOOLEAN:
        if not isinstance(default, bool):
            return "a boolean (true or false) for type 'boolean'."
        return None

    if field_type is FieldType.SELECT:
        if not isinstance(default, str):
            return "a string for type 'select'."
        if default not in (options or []):
            return (
                f"a string value that exists in its 'options' array ([{', '.join(options or [])}]) "
                f"for type 'select'. Current default: \"{default}\"."
            )
        return None

    # multiselect
    if not isinstance(default, list):
        return (
            "an array of strings for type 'multiselect'. "
            f"Current default type: '{_json_type_name(default)}'."
        )
    if not all(isinstance(item, str) for item in default):
        return (
            "an array of strings for type 'multiselect'. "
            "One or more items in the default array are not strings."
        )
    missing = [item for item in default if item not in (options or [])]
    if missing:
        listed = '", "'.join(missing)
        return (
            f"an array of string values that all exist in its 'options' array "
            f"([{', '.join(options or [])}]) for type 'multiselect'. The following default "
            f'values are not in options: "{listed}".'
        )
    return None


def validate_field(raw: Any, index: int) -> FieldDefinition:
    """Validate one raw field definition.

    Raises:
        SchemaError: On the first violated rule.
    """
    if not isinstance(raw, dict):
        raise SchemaError.not_object(index)

    key = raw.get("key")
    label = raw.get("label")
    if not _is_non_empty_string(key):
        raise SchemaError.key_invalid(index, label if isinstance(label, str) else None)

    if not _is_non_empty_string(label):
        raise SchemaError.label_invalid(index, key)

    raw_type = raw.get("type")
    if not isinstance(raw_type, str) or raw_type not in ALLOWED_TYPES:
        raise SchemaError.type_invalid(index, key, label, ALLOWED_TYPES)
    field_type = FieldType(raw_type)

    options = raw.get("options")
    if field_type in CHOICE_TYPES:
        if (
            not isinstance(options, list)
            or not options
            or not all(isinstance(opt, str) for opt in options)
        ):
            raise SchemaError.options_invalid(index, key, label, field_type.value)

    required = raw.get("required", _MISSING)
    if required is not _MISSING and not isinstance(required, bool):
        raise SchemaError.required_invalid(index, key, label)

    default = raw.get("default", _MISSING)
    has_default = default is not _MISSING
    if has_default:
        expected = _check_default(field_type, default, options)
        if expected is not None:
            raise SchemaError.default_invalid(
                index, key, label, _json_type_name(default), expected
            )

    return FieldDefinition(
        key=key,
        label=label,
        type=field_type,
        required=required is True,
        default=(tuple(default) if isinstance(default, list) else default) if has_default else None,
        has_default=has_default,
        options=tuple(options) if field_type in CHOICE_TYPES else None,
    )


def validate_fields(raw: Any) -> Result[Tuple[FieldDefinition, ...], SchemaError]:
    """Validate a decoded ``form`` array, stopping at the first bad field.

    The caller is expected to have checked that *raw* is a list; a non-list
    is reported as a field at index 0 that is not an object.
    """
    if not isinstance(raw, list):
        return Err(SchemaError.not_object(0))

    fields: List[FieldDefinition] = []
    seen: Dict[str, int] = {}
    for index, item in enumerate(raw):
        try:
            field = validate_field(item, index)
        except SchemaError as exc:
            return Err(exc)
        if field.key in seen:
            return Err(SchemaError.key_duplicate(index, field.key, seen[field.key]))
        seen[field.key] = index
        fields.append(field)
    return Ok(tuple(fields))
