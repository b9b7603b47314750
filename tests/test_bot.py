# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for the /start handler that hands out signed demo forms."""

import dataclasses
import json
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qsl, urlsplit

import pytest
from telegram import InlineKeyboardMarkup
from telegram.ext import CommandHandler

from app.teleform import codec
from app.teleform.bot import BUTTON_TEXT, DEMO_FIELDS, DEMO_TITLE, UNAVAILABLE_TEXT, FormBot
from app.teleform.exceptions import ParamError
from app.teleform.signing import verify_token


def _update(with_message: bool = True) -> MagicMock:
    update = MagicMock()
    update.effective_user.username = "ann"
    update.effective_user.id = 42
    update.effective_chat.id = 7
    if with_message:
        update.message.reply_text = AsyncMock()
    else:
        update.message = None
    return update


def _query(url: str) -> dict:
    return dict(parse_qsl(urlsplit(url).query))


class TestDemoLink:
    def test_metadata_carries_identity_and_schema(self, settings):
        metadata = FormBot(settings).demo_metadata(_update())
        assert metadata == {"username": "ann", "userid": 42, "chatid": 7, "form": DEMO_FIELDS}

    def test_link_is_signed_and_targets_callback(self, settings, issuer_keypair):
        link = FormBot(settings).demo_link(_update())
        query = _query(link.url)
        assert link.url.startswith(settings.form_base_url)
        assert codec.decode(query["title"]) == DEMO_TITLE
        assert codec.decode(query["callbackUrl"]) == "https://bot.example/submitForm"
        assert json.loads(codec.decode(query["metadata"]))["userid"] == 42
        assert verify_token(issuer_keypair[1], query["metadata"], query["signature"])


class TestStartCommand:
    @pytest.mark.asyncio
    async def test_replies_with_web_app_button(self, settings):
        update = _update()
        context = MagicMock()

        await FormBot(settings).start(update, context)

        update.message.reply_text.assert_awaited_once()
        args, kwargs = update.message.reply_text.await_args
        assert args == (BUTTON_TEXT,)
        markup = kwargs["reply_markup"]
        assert isinstance(markup, InlineKeyboardMarkup)
        button = markup.inline_keyboard[0][0]
        assert button.text == BUTTON_TEXT
        assert "signature=" in button.web_app.url

    @pytest.mark.asyncio
    async def test_falls_back_to_send_message(self, settings):
        update = _update(with_message=False)
        context = MagicMock()
        context.bot.send_message = AsyncMock()

        await FormBot(settings).start(update, context)

        context.bot.send_message.assert_awaited_once()
        assert context.bot.send_message.await_args.kwargs["chat_id"] == 7


@pytest.mark.asyncio
async def test_start_refuses_without_base_domain(settings):
    """Without a public base domain the callback would be relative, so no link is sent."""
    update = _update()
    bot = FormBot(dataclasses.replace(settings, webhook_base_domain=""))

    with pytest.raises(ParamError):
        bot.demo_link(update)

    await bot.start(update, MagicMock())

    update.message.reply_text.assert_awaited_once()
    args, kwargs = update.message.reply_text.await_args
    assert args == (UNAVAILABLE_TEXT,)
    assert kwargs["reply_markup"] is None


def test_application_registers_start(settings):
    application = FormBot(settings).build_application()
    handlers = application.handlers[0]
    assert any(
        isinstance(h, CommandHandler) and "start" in h.commands for h in handlers
    )
