# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Telegram bot that hands out signed form links.

``/start`` issues the demo form: the caller's identity (username, user id,
chat id) and the form schema go into the signed metadata, and the reply
carries an inline ``web_app`` button that opens the Mini App on the link.
Updates reach the bot through the HTTP webhook in :mod:`app.main`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update, WebAppInfo
from telegram.ext import Application, CommandHandler, ContextTypes

from app.config import Settings
from app.teleform.exceptions import ParamError
from app.teleform.link import FormIssuer, FormLink

logger = logging.getLogger(__name__)

__all__ = ["FormBot", "DEMO_FIELDS", "DEMO_TITLE"]

DEMO_TITLE = "My Demo Form"
BUTTON_TEXT = "TMAForm Demo"
UNAVAILABLE_TEXT = "The demo form is not available right now."

DEMO_FIELDS: List[Dict[str, Any]] = [
    {"key": "username", "label": "Telegram Username", "required": True, "type": "string"},
    {
        "key": "libraries",
        "label": "Libraries Used",
        "required": True,
        "type": "multiselect",
        "options": [
            "@grammyjs/conversations",
            "@grammyjs/runner",
            "@grammyjs/auto-retry",
            "@grammyjs/i18n",
            "@grammyjs/hydrate",
        ],
    },
]


class FormBot:
    """Command handlers plus the python-telegram-bot application wiring."""

    def __init__(self, settings: Settings, issuer: Optional[FormIssuer] = None):
        self.settings = settings
        self.issuer = issuer or FormIssuer(settings.form_base_url, settings.private_key)

    def demo_metadata(self, update: Update) -> Dict[str, Any]:
        user = update.effective_user
        chat = update.effective_chat
        return {
            "username": user.username if user else None,
            "userid": user.id if user else None,
            "chatid": chat.id if chat else None,
            "form": DEMO_FIELDS,
        }

    def demo_link(self, update: Update) -> FormLink:
        return self.issuer.issue(
            DEMO_TITLE,
            DEMO_FIELDS,
            self.settings.callback_url,
            metadata=self.demo_metadata(update),
        )

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        try:
            link = self.demo_link(update)
        except ParamError as exc:
            # callback_url stays relative until TMAFORM_WEBHOOK_BASE_DOMAIN is set.
            logger.error("Cannot issue demo form: %s", exc.message)
            await self._reply(update, context, UNAVAILABLE_TEXT)
            return
        markup = InlineKeyboardMarkup(
            [[InlineKeyboardButton(BUTTON_TEXT, web_app=WebAppInfo(url=link.url))]]
        )
        logger.info(
            "Issued demo form for chat=%s signed=%s",
            update.effective_chat.id if update.effective_chat else None,
            link.tokens.signature is not None,
        )
        await self._reply(update, context, BUTTON_TEXT, markup)

    async def _reply(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
        text: str,
        markup: Optional[InlineKeyboardMarkup] = None,
    ) -> None:
        if update.message:
            await update.message.reply_text(text, reply_markup=markup)
        else:
            await context.bot.send_message(
                chat_id=update.effective_chat.id,
                text=text,
                reply_markup=markup,
            )

    def build_application(self) -> Application:
        """Create the bot application; updates are fed in by the webhook route."""
        application = Application.builder().token(self.settings.bot_token).updater(None).build()
        application.add_handler(CommandHandler("start", self.start))
        return application
