# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Issuer side: encode a form, sign its metadata and assemble the deep link."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlencode, urlsplit

from cryptography.hazmat.primitives.asymmetric import rsa

from app.teleform import codec
from app.teleform.decoder import is_absolute_http_url
from app.teleform.exceptions import ParamError
from app.teleform.schema import FieldDefinition, validate_fields
from app.teleform.signing import sign_token

logger = logging.getLogger(__name__)

__all__ = ["FormTokens", "FormLink", "encode_form_tokens", "build_form_url", "FormIssuer"]

FieldsInput = Sequence[Union[FieldDefinition, Mapping[str, Any]]]


def _to_json(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _field_dicts(fields: FieldsInput) -> List[Dict[str, Any]]:
    return [f.to_dict() if isinstance(f, FieldDefinition) else dict(f) for f in fields]


@dataclass(frozen=True)
class FormTokens:
    """Encoded link parameters.

    ``metadata`` and ``signature`` are ``None`` for an unsigned form; a
    signature is never present without metadata.
    """

    title: str
    callback_url: str
    form: str
    description: Optional[str] = None
    metadata: Optional[str] = None
    signature: Optional[str] = None

    def query_params(self) -> List[Tuple[str, str]]:
        params = [("title", self.title), ("callbackUrl", self.callback_url), ("form", self.form)]
        if self.description is not None:
            params.append(("description", self.description))
        if self.metadata is not None:
            params.append(("metadata", self.metadata))
        if self.signature is not None:
            params.append(("signature", self.signature))
        return params


def encode_form_tokens(
    title: str,
    fields: FieldsInput,
    callback_url: str,
    metadata: Optional[Mapping[str, Any]] = None,
    description: Optional[str] = None,
    private_key: Optional[rsa.RSAPrivateKey] = None,
) -> FormTokens:
    """Encode the form parameters and, given a key, sign the metadata token."""
    metadata_token = codec.encode(_to_json(dict(metadata))) if metadata is not None else None
    signature_token = None
    if private_key is not None and metadata_token is not None:
        signature_token = sign_token(private_key, metadata_token)

    return FormTokens(
        title=codec.encode(title),
        callback_url=codec.encode(callback_url),
        form=codec.encode(_to_json(_field_dicts(fields))),
        description=codec.encode(description) if description is not None else None,
        metadata=metadata_token,
        signature=signature_token,
    )


def build_form_url(base_url: str, tokens: FormTokens) -> str:
    """Append *tokens* to *base_url* as query parameters.

    Tokens use only the base64url alphabet, so they are carried unescaped.
    """
    query = urlencode(tokens.query_params(), safe="-_")
    separator = "&" if urlsplit(base_url).query else "?"
    return f"{base_url}{separator}{query}"


@dataclass(frozen=True)
class FormLink:
    url: str
    tokens: FormTokens


class FormIssuer:
    """Builds signed form links for one Mini App base URL and issuer key."""

    def __init__(self, base_url: str, private_key: Optional[rsa.RSAPrivateKey] = None):
        self.base_url = base_url
        self.private_key = private_key

    @property
    def can_sign(self) -> bool:
        return self.private_key is not None

    def issue(
        self,
        title: str,
        fields: FieldsInput,
        callback_url: str,
        metadata: Optional[Mapping[str, Any]] = None,
        description: Optional[str] = None,
    ) -> FormLink:
        """Validate *fields*, encode and sign everything, and return the link.

        Raises:
            SchemaError: If *fields* would be rejected by the client.
            ParamError: If *callback_url* is not an absolute http(s) URL.
        """
        if not is_absolute_http_url(callback_url):
            raise ParamError.callback_url_invalid(callback_url)
        field_dicts = _field_dicts(fields)
        validate_fields(field_dicts).unwrap()

        if metadata is not None and self.private_key is None:
            logger.warning("Issuing form %r with unsigned metadata", title)

        tokens = encode_form_tokens(
            title,
            field_dicts,
            callback_url,
            metadata=metadata,
            description=description,
            private_key=self.private_key,
        )
        url = build_form_url(self.base_url, tokens)
        logger.debug("Issued form link for %r (%d fields)", title, len(field_dicts))
        return FormLink(url=url, tokens=tokens)
