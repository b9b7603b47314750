# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Form values and the callback POST body.

The body is ``{"form": {...}}`` plus, when present on the deep link, the
verbatim ``metadata`` and ``signature`` tokens. Those two are copied from
the envelope's pass-through tokens and never rebuilt from decoded values.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, Iterable, Mapping, Optional

from app.teleform.decoder import FormEnvelope
from app.teleform.schema import FieldDefinition, FieldType

__all__ = [
    "assemble_payload",
    "empty_value",
    "initial_values",
    "validate_values",
    "coerce_values",
]

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TEL_PATTERN = re.compile(r"^\+?[0-9\s\-()]*$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def empty_value(field: FieldDefinition) -> Any:
    """The value a field holds before the user touches it."""
    if field.has_default:
        return list(field.default) if field.type is FieldType.MULTISELECT else field.default
    if field.type is FieldType.BOOLEAN:
        return False
    if field.type is FieldType.NUMBER:
        return None
    if field.type is FieldType.MULTISELECT:
        return []
    return ""


def initial_values(fields: Iterable[FieldDefinition]) -> Dict[str, Any]:
    return {f.key: empty_value(f) for f in fields}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() and "." not in value else number
    return None


def _field_error(field: FieldDefinition, value: Any) -> Optional[str]:
    """Return a user-facing message when *value* is not acceptable for *field*."""
    required_msg = f"{field.label} is required."

    if field.type is FieldType.MULTISELECT:
        if value is None:
            value = []
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            return "Select one or more of the listed options."
        if field.required and not value:
            return f"{field.label} is required (select at least one option)."
        unknown = [v for v in value if v not in (field.options or ())]
        if unknown:
            return f"Unknown option(s): {', '.join(unknown)}."
        return None

    if field.type is FieldType.BOOLEAN:
        if value is not None and not isinstance(value, bool):
            return "Must be true or false."
        return None

    if field.type is FieldType.NUMBER:
        if _is_blank(value):
            return required_msg if field.required else None
        if _to_number(value) is None:
            return "Expected a number."
        return None

    if _is_blank(value):
        return required_msg if field.required else None
    if not isinstance(value, str):
        return "Expected text."
    if field.type is FieldType.EMAIL and not EMAIL_PATTERN.match(value):
        return "Invalid email address."
    if field.type is FieldType.TEL and not TEL_PATTERN.match(value):
        return "Invalid phone number."
    if field.type is FieldType.DATE and not DATE_PATTERN.match(value):
        return "Expected a date (YYYY-MM-DD)."
    if field.type is FieldType.SELECT and value not in (field.options or ()):
        return f"Choose one of: {', '.join(field.options or ())}."
    return None


def validate_values(
    fields: Iterable[FieldDefinition], values: Mapping[str, Any]
) -> Dict[str, str]:
    """Check entered *values* against *fields*; returns ``{key: message}`` for failures."""
    errors: Dict[str, str] = {}
    for field in fields:
        message = _field_error(field, values.get(field.key, empty_value(field)))
        if message:
            errors[field.key] = message
    return errors


def coerce_values(
    fields: Iterable[FieldDefinition], values: Mapping[str, Any]
) -> Dict[str, Any]:
    """Shape entered values into their submitted types, in field order.

    Number strings become numbers, multiselect tuples become lists and
    untouched fields get their initial value. Keys not declared by a field
    are dropped.
    """
    coerced: Dict[str, Any] = {}
    for field in fields:
        value = values.get(field.key, empty_value(field))
        if field.type is FieldType.NUMBER:
            value = None if _is_blank(value) else _to_number(value)
        elif field.type is FieldType.MULTISELECT:
            value = list(value or [])
        elif field.type is FieldType.BOOLEAN:
            value = bool(value)
        coerced[field.key] = value
    return coerced


def assemble_payload(envelope: FormEnvelope, values: Mapping[str, Any]) -> Dict[str, Any]:
    """Build the callback POST body for *envelope*."""
    payload: Dict[str, Any] = {"form": dict(values)}
    if envelope.metadata is not None and envelope.metadata_token is not None:
        payload["metadata"] = envelope.metadata_token
    if envelope.signature is not None and envelope.signature_token is not None:
        payload["signature"] = envelope.signature_token
    return payload
