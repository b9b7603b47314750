# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""RSA-SHA256 signatures over the encoded metadata token.

The issuer signs the ASCII bytes of the *base64url metadata token*, not the
JSON it encodes, so the receiver never has to re-serialise JSON to check a
signature. The scheme is RSASSA-PKCS1-v1_5 with SHA-256, which is what
Node's ``crypto.createSign("SHA256")`` produces for an RSA key; external
issuers and verifiers using that API interoperate with this module.

Verification is a pure function of (public key, metadata token, signature
token). It never raises for bad input; :func:`verify_submission` turns a
failed check into :class:`VerificationError` for the HTTP layer.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from app.teleform import codec
from app.teleform.exceptions import DecodeError, KeyLoadError, VerificationError

logger = logging.getLogger(__name__)

__all__ = [
    "generate_private_key",
    "load_private_key",
    "load_public_key",
    "load_private_key_b64",
    "load_public_key_b64",
    "private_key_pem",
    "public_key_pem",
    "sign_token",
    "verify_token",
    "verify_submission",
    "VerifiedSubmission",
]

DEFAULT_KEY_SIZE = 2048

PemInput = Union[str, bytes]


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------

def generate_private_key(bits: int = DEFAULT_KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate a fresh RSA private key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def private_key_pem(key: rsa.RSAPrivateKey) -> bytes:
    """Serialise *key* as unencrypted PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_key_pem(key: Union[rsa.RSAPrivateKey, rsa.RSAPublicKey]) -> bytes:
    """Serialise the public half of *key* as SubjectPublicKeyInfo PEM."""
    public = key.public_key() if isinstance(key, rsa.RSAPrivateKey) else key
    return public.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _as_bytes(pem: PemInput) -> bytes:
    return pem.encode("utf-8") if isinstance(pem, str) else pem


def load_private_key(pem: PemInput) -> rsa.RSAPrivateKey:
    """Load an unencrypted RSA private key from PEM."""
    try:
        key = serialization.load_pem_private_key(_as_bytes(pem), password=None)
    except (ValueError, TypeError) as exc:
        raise KeyLoadError(f"Cannot load private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyLoadError(f"Private key must be RSA, got {type(key).__name__}")
    return key


def load_public_key(pem: PemInput) -> rsa.RSAPublicKey:
    """Load an RSA public key from PEM."""
    try:
        key = serialization.load_pem_public_key(_as_bytes(pem))
    except (ValueError, TypeError) as exc:
        raise KeyLoadError(f"Cannot load public key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyLoadError(f"Public key must be RSA, got {type(key).__name__}")
    return key


def _b64_pem(value: str, label: str) -> bytes:
    """Decode the standard-base64 wrapping used for PEMs in environment variables."""
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyLoadError(f"{label} is not valid base64: {exc}") from exc


def load_private_key_b64(value: str) -> rsa.RSAPrivateKey:
    """Load a private key given as base64 of its PEM text."""
    return load_private_key(_b64_pem(value, "Private key"))


def load_public_key_b64(value: str) -> rsa.RSAPublicKey:
    """Load a public key given as base64 of its PEM text."""
    return load_public_key(_b64_pem(value, "Public key"))


# ---------------------------------------------------------------------------
# Sign / verify
# ---------------------------------------------------------------------------

def sign_token(private_key: rsa.RSAPrivateKey, metadata_token: str) -> str:
    """Sign *metadata_token* and return the base64url signature token."""
    signature = private_key.sign(
        metadata_token.encode("ascii"),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    return codec.encode_bytes(signature)


def verify_token(
    public_key: rsa.RSAPublicKey,
    metadata_token: str,
    signature_token: str,
) -> bool:
    """Return ``True`` iff *signature_token* is a valid signature of *metadata_token*."""
    if not isinstance(metadata_token, str) or not isinstance(signature_token, str):
        return False
    try:
        signature = codec.decode_bytes(signature_token)
        message = metadata_token.encode("ascii")
    except (DecodeError, UnicodeEncodeError):
        return False
    try:
        public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


@dataclass(frozen=True)
class VerifiedSubmission:
    """A callback payload whose metadata was proven to come from the issuer.

    Attributes:
        metadata:  The decoded metadata JSON object. Safe to trust.
        form:      The submitted form values (user-controlled).
        metadata_token:  The verbatim token that was verified.
    """

    metadata: Dict[str, Any]
    form: Dict[str, Any]
    metadata_token: str

    def claim(self, name: str, default: Any = None) -> Any:
        return self.metadata.get(name, default)


def _decode_metadata(token: str) -> Dict[str, Any]:
    try:
        obj = json.loads(codec.decode(token))
    except DecodeError as exc:
        raise VerificationError.metadata_invalid(exc.reason) from exc
    except json.JSONDecodeError as exc:
        raise VerificationError.metadata_invalid(f"not JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise VerificationError.metadata_invalid(
            f"expected JSON object, got {type(obj).__name__}"
        )
    return obj


def verify_submission(
    public_key: rsa.RSAPublicKey,
    payload: Mapping[str, Any],
) -> VerifiedSubmission:
    """Verify a callback payload's metadata/signature pair.

    Raises:
        VerificationError: If either token is absent, the signature does not
            match, or the signed metadata is not a JSON object.
    """
    metadata_token: Optional[str] = payload.get("metadata")
    signature_token: Optional[str] = payload.get("signature")
    if not metadata_token or not signature_token:
        raise VerificationError.missing()

    if not verify_token(public_key, metadata_token, signature_token):
        raise VerificationError.invalid()

    metadata = _decode_metadata(metadata_token)
    form = payload.get("form") or {}
    logger.debug("Metadata signature verified (%d claims)", len(metadata))
    return VerifiedSubmission(metadata=metadata, form=dict(form), metadata_token=metadata_token)
