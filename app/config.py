# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""TMAForm service configuration.

Process settings (network, logging) are module constants read from the
environment at import. Protocol settings (bot token, key material, URLs)
are gathered once by :func:`load_settings` into an immutable
:class:`Settings` that is handed to the issuer, the bot and the callback
receiver.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from app.teleform.signing import load_private_key_b64, load_public_key_b64

# =============================================================================
# NETWORK
# =============================================================================

HTTP_HOST: str = os.getenv("TMAFORM_HTTP_HOST", "0.0.0.0")
HTTP_PORT: int = int(os.getenv("TMAFORM_HTTP_PORT", "8000"))

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: str = os.getenv("TMAFORM_LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("TMAFORM_LOG_FORMAT", "json")

# =============================================================================
# PROTOCOL DEFAULTS
# =============================================================================

DEFAULT_FORM_BASE_URL = "https://tmaform-ybaxw.kinsta.page/"
DEFAULT_CALLBACK_PATH = "/submitForm"
DEFAULT_SUBMIT_TIMEOUT_SECONDS = 10.0


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Protocol configuration, built once at process start.

    Attributes:
        bot_token:        Telegram bot token; also the webhook path.
        webhook_secret:   Expected ``X-Telegram-Bot-Api-Secret-Token`` (empty = unchecked).
        webhook_base_domain:  Public base URL of this service, used for the
            webhook registration and the demo form's callback URL.
        form_base_url:    Mini App URL the deep links point at.
        callback_path:    Route that receives form submissions.
        private_key:      Issuer signing key (``None`` = links are unsigned).
        public_key:       Verification key (``None`` = submissions cannot be verified).
        allow_unsigned:   Accept submissions that carry no metadata/signature.
        submit_timeout:   Client-side POST timeout in seconds.
    """

    bot_token: str = ""
    webhook_secret: str = ""
    webhook_base_domain: str = ""
    form_base_url: str = DEFAULT_FORM_BASE_URL
    callback_path: str = DEFAULT_CALLBACK_PATH
    private_key: Optional[rsa.RSAPrivateKey] = None
    public_key: Optional[rsa.RSAPublicKey] = None
    allow_unsigned: bool = False
    submit_timeout: float = DEFAULT_SUBMIT_TIMEOUT_SECONDS

    @property
    def callback_url(self) -> str:
        return self.webhook_base_domain.rstrip("/") + self.callback_path

    @property
    def webhook_url(self) -> str:
        return f"{self.webhook_base_domain.rstrip('/')}/{self.bot_token}"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from the environment.

    Keys are given as base64 of their PEM text (``TMAFORM_B64_PRIVATE_KEY``,
    ``TMAFORM_B64_PUBLIC_KEY``). When only the private key is set, the
    public key is derived from it.

    Raises:
        KeyLoadError: If key material is present but unusable.
    """
    env = os.environ if environ is None else environ

    private_key = None
    if env.get("TMAFORM_B64_PRIVATE_KEY"):
        private_key = load_private_key_b64(env["TMAFORM_B64_PRIVATE_KEY"])

    public_key = None
    if env.get("TMAFORM_B64_PUBLIC_KEY"):
        public_key = load_public_key_b64(env["TMAFORM_B64_PUBLIC_KEY"])
    elif private_key is not None:
        public_key = private_key.public_key()

    callback_path = env.get("TMAFORM_CALLBACK_PATH", DEFAULT_CALLBACK_PATH) or DEFAULT_CALLBACK_PATH
    if not callback_path.startswith("/"):
        callback_path = "/" + callback_path

    return Settings(
        bot_token=env.get("TMAFORM_BOT_TOKEN", ""),
        webhook_secret=env.get("TMAFORM_WEBHOOK_SECRET", ""),
        webhook_base_domain=env.get("TMAFORM_WEBHOOK_BASE_DOMAIN", ""),
        form_base_url=env.get("TMAFORM_BASE_URL", DEFAULT_FORM_BASE_URL) or DEFAULT_FORM_BASE_URL,
        callback_path=callback_path,
        private_key=private_key,
        public_key=public_key,
        allow_unsigned=_flag(env.get("TMAFORM_ALLOW_UNSIGNED")),
        submit_timeout=float(
            env.get("TMAFORM_SUBMIT_TIMEOUT", str(DEFAULT_SUBMIT_TIMEOUT_SECONDS))
        ),
    )
