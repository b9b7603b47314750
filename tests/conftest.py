# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Shared test fixtures for the TMAForm test suite.

Provides RSA keypairs, a deep-link parameter factory, issuer/settings
objects and a FastAPI test client wired to known key material.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.teleform.link import FormIssuer
from app.teleform.signing import generate_private_key


# =========================================================================
# Key material
# =========================================================================

@pytest.fixture(scope="session")
def issuer_keypair() -> Tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """The issuer's RSA keypair, shared across the session (generation is slow)."""
    key = generate_private_key(2048)
    return key, key.public_key()


@pytest.fixture(scope="session")
def other_keypair() -> Tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """An unrelated RSA keypair."""
    key = generate_private_key(2048)
    return key, key.public_key()


# =========================================================================
# Deep-link parameters
# =========================================================================

def b64url(text: str) -> str:
    """Base64url-encode text without padding, independently of app code."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


USERNAME_FIELD: Dict[str, Any] = {
    "key": "username",
    "label": "Username",
    "type": "string",
    "required": True,
}


@pytest.fixture
def make_params() -> Callable[..., Dict[str, str]]:
    """Factory fixture: build encoded deep-link query parameters.

    Keyword arguments are plain values; ``None`` omits a parameter and
    ``raw_*`` arguments are inserted verbatim (already encoded or garbage).
    """

    def _make(
        title: Optional[str] = "Test",
        fields: Optional[List[Any]] = None,
        callback_url: Optional[str] = "https://x/cb",
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **raw: str,
    ) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if title is not None:
            params["title"] = b64url(title)
        params["form"] = b64url(json.dumps(fields if fields is not None else [USERNAME_FIELD]))
        if callback_url is not None:
            params["callbackUrl"] = b64url(callback_url)
        if description is not None:
            params["description"] = b64url(description)
        if metadata is not None:
            params["metadata"] = b64url(json.dumps(metadata))
        for name, value in raw.items():
            params[name.removeprefix("raw_")] = value
        return params

    return _make


# =========================================================================
# Issuer / receiver
# =========================================================================

@pytest.fixture
def issuer(issuer_keypair) -> FormIssuer:
    private_key, _ = issuer_keypair
    return FormIssuer("https://tma.example/app", private_key)


@pytest.fixture
def settings(issuer_keypair) -> Settings:
    private_key, public_key = issuer_keypair
    return Settings(
        bot_token="123456:TEST-TOKEN",
        webhook_base_domain="https://bot.example",
        form_base_url="https://tma.example/app",
        private_key=private_key,
        public_key=public_key,
    )


@pytest.fixture
def client(settings: Settings) -> TestClient:
    """Test client for an app using the issuer's public key."""
    return TestClient(create_app(settings))
