# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Base64url codec for deep-link tokens.

Every value carried in a TMAForm link (title, callback URL, form schema,
metadata, signature) is a base64url token. Encoding always emits the
URL-safe alphabet without ``=`` padding. Decoding is lenient about padding
and alphabet (``+/`` or ``-_``) but strict about everything else: any input
that is not valid base64 after normalisation, or whose bytes are not UTF-8,
fails with :class:`DecodeError` carrying the original input.
"""

from __future__ import annotations

import base64
import binascii

from app.teleform.exceptions import DecodeError
from app.teleform.result import Err, Ok, Result

__all__ = [
    "encode",
    "decode",
    "encode_bytes",
    "decode_bytes",
    "try_decode",
]


def encode_bytes(data: bytes) -> str:
    """Base64url-encode *data* without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def encode(text: str) -> str:
    """Base64url-encode the UTF-8 bytes of *text* without padding."""
    return encode_bytes(text.encode("utf-8"))


def decode_bytes(token: str) -> bytes:
    """Decode a base64url (or standard base64) token to raw bytes.

    Raises:
        DecodeError: If *token* is not a string or not valid base64.
    """
    if not isinstance(token, str):
        raise DecodeError(repr(token), f"expected a string, got {type(token).__name__}")

    normalised = token.strip().replace("-", "+").replace("_", "/")
    if len(normalised) % 4 == 1:
        raise DecodeError(token, "invalid length")
    padded = normalised + "=" * (-len(normalised) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(token, str(exc)) from exc


def decode(token: str) -> str:
    """Decode a base64url token to a UTF-8 string.

    Raises:
        DecodeError: If *token* is not valid base64 or not UTF-8.
    """
    raw = decode_bytes(token)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(token, f"decoded bytes are not UTF-8: {exc}") from exc


def try_decode(token: str) -> Result[str, DecodeError]:
    """Decode *token*, returning :class:`Ok` or :class:`Err` instead of raising."""
    try:
        return Ok(decode(token))
    except DecodeError as exc:
        return Err(exc)
