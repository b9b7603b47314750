# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for the HTTP endpoints: callback receiver, CORS, webhook, health."""

import dataclasses
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qsl, urlsplit

import pytest
from fastapi.testclient import TestClient
from telegram import Update
from telegram.ext import Application

from app import __version__
from app.cli import __version__ as cli_version
from app.main import CORS_HEADERS, TELEGRAM_SECRET_HEADER, create_app
from app.teleform.bot import DEMO_FIELDS

USERNAME_FIELDS = [{"key": "username", "label": "Username", "type": "string", "required": True}]


def _signed_payload(issuer, form, metadata=None):
    """Build the POST body a Mini App would send for a freshly issued link."""
    link = issuer.issue(
        "T", USERNAME_FIELDS, "https://x/cb",
        metadata=metadata if metadata is not None else {"userid": 42, "chatid": 7},
    )
    query = dict(parse_qsl(urlsplit(link.url).query))
    return {"form": form, "metadata": query["metadata"], "signature": query["signature"]}


def _assert_cors(response):
    for name, value in CORS_HEADERS.items():
        assert response.headers.get(name) == value


# =========================================================================
# Callback receiver
# =========================================================================


class TestSubmitForm:
    def test_verified_submission_accepted(self, client, issuer):
        """A payload signed by the configured issuer key is accepted."""
        response = client.post("/submitForm", json=_signed_payload(issuer, {"username": "abc"}))
        assert response.status_code == 200
        assert response.json() == {
            "status": "accepted",
            "verified": True,
            "userid": 42,
            "chatid": 7,
        }
        _assert_cors(response)

    def test_other_public_key_rejects(self, settings, other_keypair, issuer):
        """The same payload fails against an unrelated public key."""
        app = create_app(dataclasses.replace(settings, public_key=other_keypair[1]))
        response = TestClient(app).post(
            "/submitForm", json=_signed_payload(issuer, {"username": "abc"})
        )
        assert response.status_code == 403
        assert response.text == "Submission rejected"
        _assert_cors(response)

    def test_tampered_metadata_rejected(self, client, issuer):
        payload = _signed_payload(issuer, {"username": "abc"})
        payload["metadata"] = _signed_payload(issuer, {}, {"userid": 1})["metadata"]
        response = client.post("/submitForm", json=payload)
        assert response.status_code == 403

    def test_unsigned_rejected_by_default(self, client):
        response = client.post("/submitForm", json={"form": {"username": "abc"}})
        assert response.status_code == 403

    def test_unsigned_allowed_when_configured(self, settings):
        app = create_app(dataclasses.replace(settings, allow_unsigned=True))
        response = TestClient(app).post("/submitForm", json={"form": {"username": "abc"}})
        assert response.status_code == 200
        assert response.json()["verified"] is False
        assert response.json()["userid"] is None

    def test_no_public_key_rejects(self, settings, issuer):
        app = create_app(dataclasses.replace(settings, public_key=None))
        response = TestClient(app).post(
            "/submitForm", json=_signed_payload(issuer, {"username": "abc"})
        )
        assert response.status_code == 403

    def test_values_checked_against_signed_schema(self, client, issuer):
        metadata = {"userid": 1, "chatid": 2, "form": USERNAME_FIELDS}
        ok = client.post("/submitForm", json=_signed_payload(issuer, {"username": "a"}, metadata))
        assert ok.status_code == 200

        extra = client.post(
            "/submitForm",
            json=_signed_payload(issuer, {"username": "a", "admin": True}, metadata),
        )
        assert extra.status_code == 422
        assert "admin" in extra.text

        empty = client.post("/submitForm", json=_signed_payload(issuer, {"username": ""}, metadata))
        assert empty.status_code == 422

    def test_malformed_body(self, client):
        response = client.post("/submitForm", json={"form": "not-an-object"})
        assert response.status_code == 422
        assert response.json() == {"detail": "Malformed submission"}

    def test_custom_callback_path(self, settings):
        app = create_app(dataclasses.replace(settings, callback_path="/forms/in", allow_unsigned=True))
        test_client = TestClient(app)
        assert test_client.post("/forms/in", json={"form": {}}).status_code == 200
        assert test_client.get("/submitForm").status_code == 404


class TestCors:
    def test_plain_options(self, client):
        response = client.options("/submitForm")
        assert response.status_code == 200
        _assert_cors(response)

    def test_browser_preflight(self, client):
        response = client.options(
            "/submitForm",
            headers={
                "Origin": "https://tma.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )
        assert response.status_code == 200
        assert response.headers.get("access-control-allow-origin") == "*"

    @pytest.mark.parametrize("path", ["/nope", "/", "/healthz", "/forms/in"])
    def test_preflight_elsewhere_is_not_found(self, client, path):
        response = client.options(
            path,
            headers={"Origin": "https://a", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 404
        assert response.text == "Not Found"


class TestNotFound:
    def test_unknown_path(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.text == "Not Found"
        _assert_cors(response)

    def test_wrong_method_on_callback(self, client):
        assert client.get("/submitForm").status_code == 404
        assert client.put("/submitForm", json={}).status_code == 404


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "signing": True, "verification": True, "bot": True}


# =========================================================================
# Telegram webhook
# =========================================================================

START_UPDATE = {
    "update_id": 1,
    "message": {
        "message_id": 10,
        "date": 1700000000,
        "chat": {"id": 7, "type": "private"},
        "from": {"id": 42, "is_bot": False, "first_name": "Ann", "username": "ann"},
        "text": "/start",
        "entities": [{"type": "bot_command", "offset": 0, "length": 6}],
    },
}


class TestWebhook:
    def test_update_dispatched(self, client, settings):
        with patch.object(Application, "process_update", new_callable=AsyncMock) as process:
            response = client.post(f"/{settings.bot_token}", json=START_UPDATE)
        assert response.status_code == 200
        process.assert_awaited_once()
        update = process.await_args.args[0]
        assert isinstance(update, Update)
        assert update.effective_user.id == 42

    def test_wrong_token(self, client):
        with patch.object(Application, "process_update", new_callable=AsyncMock) as process:
            response = client.post("/123:WRONG", json=START_UPDATE)
        assert response.status_code == 404
        process.assert_not_awaited()

    def test_no_bot_configured(self, settings):
        app = create_app(dataclasses.replace(settings, bot_token=""))
        response = TestClient(app).post("/anything", json=START_UPDATE)
        assert response.status_code == 404

    def test_secret_token_checked(self, settings):
        app = create_app(dataclasses.replace(settings, webhook_secret="s3cret"))
        test_client = TestClient(app)
        with patch.object(Application, "process_update", new_callable=AsyncMock) as process:
            denied = test_client.post(f"/{settings.bot_token}", json=START_UPDATE)
            allowed = test_client.post(
                f"/{settings.bot_token}",
                json=START_UPDATE,
                headers={TELEGRAM_SECRET_HEADER: "s3cret"},
            )
        assert denied.status_code == 404
        assert allowed.status_code == 200
        process.assert_awaited_once()

    def test_handler_failure_still_acknowledged(self, client, settings):
        with patch.object(
            Application, "process_update", new_callable=AsyncMock, side_effect=RuntimeError("boom")
        ):
            response = client.post(f"/{settings.bot_token}", json=START_UPDATE)
        assert response.status_code == 200

    def test_malformed_update(self, client, settings):
        response = client.post(
            f"/{settings.bot_token}",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400


def test_demo_schema_is_valid_for_receiver(client, issuer):
    metadata = {"userid": 1, "chatid": 1, "form": DEMO_FIELDS}
    response = client.post(
        "/submitForm",
        json=_signed_payload(
            issuer, {"username": "ann", "libraries": ["@grammyjs/runner"]}, metadata
        ),
    )
    assert response.status_code == 200


def test_api_and_cli_share_version(settings):
    assert create_app(settings).version == __version__ == cli_version
