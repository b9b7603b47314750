# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Client side: turn deep-link query parameters into a validated envelope.

Mandatory parameters (``title``, ``form``, ``callbackUrl``) must all be
present and decode cleanly; any failure yields a :class:`ParamError` that
names the parameter and the reason. Optional parameters (``description``,
``metadata``, ``signature``) are decoded best-effort: a bad one is logged
and dropped, and the form stays usable.

The verbatim ``metadata`` and ``signature`` tokens are kept next to their
decoded values. Only the verbatim tokens are ever sent back to the
callback, since re-encoding is not guaranteed to reproduce the signed bytes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from app.teleform import codec
from app.teleform.exceptions import DecodeError, ParamError
from app.teleform.result import Err, Ok, Result
from app.teleform.schema import FieldDefinition, validate_fields

logger = logging.getLogger(__name__)

__all__ = [
    "FormEnvelope",
    "decode_form_params",
    "decode_form_url",
    "is_absolute_http_url",
    "MANDATORY_PARAMS",
]

MANDATORY_PARAMS: Tuple[Tuple[str, str], ...] = (
    ("title", "- `title`: (String, Mandatory) The main title for the form."),
    (
        "form",
        "- `form`: (String, Mandatory) A JSON string representing an array of field "
        "definition objects.",
    ),
    (
        "callbackUrl",
        "- `callbackUrl`: (String, Mandatory) The absolute URL to which the collected form "
        "data will be POSTed.",
    ),
)


@dataclass(frozen=True)
class FormEnvelope:
    """A decoded, validated form ready to be rendered and submitted.

    Attributes:
        title:            Form title.
        fields:           Validated field definitions in render order.
        callback_url:     Absolute submission URL.
        description:      Optional subtitle.
        metadata:         Decoded metadata text, if the token decoded.
        metadata_token:   Verbatim ``metadata`` query token.
        signature:        Raw signature bytes, if the token decoded.
        signature_token:  Verbatim ``signature`` query token.
    """

    title: str
    fields: Tuple[FieldDefinition, ...]
    callback_url: str
    description: Optional[str] = None
    metadata: Optional[str] = None
    metadata_token: Optional[str] = None
    signature: Optional[bytes] = None
    signature_token: Optional[str] = None

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(f.key for f in self.fields)

    def field(self, key: str) -> FieldDefinition:
        for f in self.fields:
            if f.key == key:
                return f
        raise KeyError(key)


def is_absolute_http_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def _decode_optional(
    name: str,
    token: Optional[str],
    decode: Callable[[str], Any] = codec.decode,
) -> Optional[Any]:
    """Decode an optional parameter; failures are logged and yield ``None``."""
    if not token:
        return None
    try:
        return decode(token)
    except DecodeError as exc:
        logger.warning("Failed to decode %s, proceeding without it: %s", name, exc.reason)
        return None


def decode_form_params(params: Mapping[str, str]) -> Result[FormEnvelope, ParamError]:
    """Decode and validate deep-link parameters.

    Returns:
        ``Ok(FormEnvelope)`` for the ``formDisplay`` outcome or
        ``Err(ParamError)`` for ``paramError``.
    """
    missing = [(name, desc) for name, desc in MANDATORY_PARAMS if not params.get(name)]
    if missing:
        return Err(ParamError.missing_params([n for n, _ in missing], [d for _, d in missing]))

    decoded = {}
    for name, _ in MANDATORY_PARAMS:
        result = codec.try_decode(params[name])
        if isinstance(result, Err):
            return Err(ParamError.undecodable(name, result.error))
        decoded[name] = result.value

    if not is_absolute_http_url(decoded["callbackUrl"]):
        return Err(ParamError.callback_url_invalid(decoded["callbackUrl"]))

    try:
        raw_form = json.loads(decoded["form"])
    except json.JSONDecodeError as exc:
        return Err(ParamError.form_not_json(str(exc)))
    if not isinstance(raw_form, list):
        return Err(ParamError.form_not_array())

    validated = validate_fields(raw_form)
    if isinstance(validated, Err):
        return Err(ParamError.schema(validated.error))

    metadata_token = params.get("metadata") or None
    signature_token = params.get("signature") or None
    metadata = _decode_optional("metadata", metadata_token)
    signature = _decode_optional("signature", signature_token, codec.decode_bytes)

    return Ok(
        FormEnvelope(
            title=decoded["title"],
            fields=validated.value,
            callback_url=decoded["callbackUrl"],
            description=_decode_optional("description", params.get("description")),
            metadata=metadata,
            metadata_token=metadata_token if metadata is not None else None,
            signature=signature,
            signature_token=signature_token if signature is not None else None,
        )
    )


def decode_form_url(url: str) -> Result[FormEnvelope, ParamError]:
    """Decode the query string of a Mini App deep link."""
    return decode_form_params(dict(parse_qsl(urlsplit(url).query, keep_blank_values=True)))
