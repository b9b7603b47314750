# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""FastAPI application: bot webhook and form callback receiver.

**HTTP Endpoints**

* ``POST /{bot_token}``: Telegram webhook. The update is handed to the
  python-telegram-bot application, whose ``/start`` handler replies with a
  signed form link.

* ``POST /submitForm`` (``TMAFORM_CALLBACK_PATH``): Form callback. The
  body's metadata token is verified against the issuer's public key before
  any metadata claim is trusted. Accepted submissions return 200; failed
  verification returns a generic 403.

* ``OPTIONS /submitForm``: Permissive CORS answer for the Mini App.

* ``GET /healthz``: Which capabilities (signing, verification, bot) are
  configured.

Every other path or method answers 404.

**Logging**

Structured JSON logging is configured at startup using ``LOG_LEVEL`` and
``LOG_FORMAT``.

**Configuration**

Protocol settings are loaded once into an immutable
:class:`app.config.Settings` and kept on ``app.state.settings``; request
handlers read them from there.
"""

from __future__ import annotations

import hmac
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from telegram import Update

from app import __version__
from app.config import HTTP_HOST, HTTP_PORT, LOG_FORMAT, LOG_LEVEL, Settings, load_settings
from app.teleform.bot import FormBot
from app.teleform.exceptions import SubmissionRejected, VerificationError
from app.teleform.models import HealthResponse, SubmissionAccepted, SubmissionPayload
from app.teleform.receiver import receive_submission

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Allow-Methods": "*",
    "Access-Control-Allow-Origin": "*",
}

TELEGRAM_SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


# ======================================================================
# Structured JSON logging
# ======================================================================


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter.

    Produces one JSON object per log line with ``timestamp``, ``level``,
    ``logger``, ``message``, ``module`` and ``funcName``, plus
    ``exception`` when the record carries one.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _configure_logging() -> None:
    """Install a single stdout handler on the root logger.

    Existing handlers are removed first so uvicorn's own configuration does
    not produce duplicate lines.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT.lower() == "json":
        handler.setFormatter(_JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root.addHandler(handler)
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

    # Suppress noisy third-party loggers.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger("tmaform.main")


# ======================================================================
# Application lifespan
# ======================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the bot application (when configured) and register its webhook."""
    _configure_logging()
    settings: Settings = app.state.settings
    logger.info(
        "TMAForm starting: HTTP=%s:%d, callback=%s, signing=%s, verification=%s",
        HTTP_HOST,
        HTTP_PORT,
        settings.callback_path,
        settings.private_key is not None,
        settings.public_key is not None,
    )

    application = app.state.bot_application
    if application is not None:
        await application.initialize()
        await application.start()
        if settings.webhook_base_domain:
            await application.bot.set_webhook(
                url=settings.webhook_url,
                secret_token=settings.webhook_secret or None,
            )
            logger.info("Webhook registered at %s/<token>", settings.webhook_base_domain)
        else:
            logger.warning(
                "TMAFORM_WEBHOOK_BASE_DOMAIN is not set: no webhook, and /start cannot issue forms"
            )

    yield

    logger.info("TMAForm shutting down")
    if application is not None:
        await application.stop()
        await application.shutdown()


# ======================================================================
# Application factory
# ======================================================================


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application around *settings*.

    When *settings* is omitted they are loaded from the environment.
    """
    settings = settings if settings is not None else load_settings()

    app = FastAPI(
        title="TMAForm",
        description=(
            "Telegram Mini App forms: signed form links, webhook bot and "
            "verified submission callback."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.bot = FormBot(settings) if settings.bot_token else None
    app.state.bot_application = app.state.bot.build_application() if app.state.bot else None

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> Response:
        # Unknown methods are reported as unknown routes.
        status = 404 if exc.status_code == 405 else exc.status_code
        return PlainTextResponse(
            str(exc.detail) if status != 404 else "Not Found",
            status_code=status,
            headers=CORS_HEADERS,
        )

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> Response:
        return JSONResponse(
            {"detail": "Malformed submission"},
            status_code=422,
            headers=CORS_HEADERS,
        )

    callback_path = settings.callback_path

    @app.options(callback_path, include_in_schema=False)
    async def submit_form_preflight() -> Response:
        return Response(status_code=200, headers=CORS_HEADERS)

    @app.post(
        callback_path,
        response_model=SubmissionAccepted,
        summary="Receive a form submission",
        tags=["forms"],
    )
    async def submit_form(payload: SubmissionPayload, request: Request) -> Response:
        """Verify the metadata signature and accept or reject the submission."""
        try:
            received = receive_submission(request.app.state.settings, payload)
        except VerificationError as exc:
            logger.warning("Submission rejected: %s (%s)", exc.code, exc.message)
            return PlainTextResponse("Submission rejected", status_code=403, headers=CORS_HEADERS)
        except SubmissionRejected as exc:
            logger.warning("Submission rejected: %s", exc.message)
            return PlainTextResponse(exc.message, status_code=422, headers=CORS_HEADERS)

        claims = received.trusted_metadata
        body = SubmissionAccepted(
            verified=received.verified is not None,
            userid=claims.get("userid"),
            chatid=claims.get("chatid"),
        )
        return JSONResponse(body.model_dump(), status_code=200, headers=CORS_HEADERS)

    @app.get("/healthz", response_model=HealthResponse, tags=["health"])
    async def healthz(request: Request) -> HealthResponse:
        current: Settings = request.app.state.settings
        return HealthResponse(
            signing=current.private_key is not None,
            verification=current.public_key is not None,
            bot=request.app.state.bot_application is not None,
        )

    @app.post("/{token}", include_in_schema=False)
    async def telegram_webhook(token: str, request: Request) -> Response:
        """Feed a Telegram update to the bot when the path is the bot token."""
        current: Settings = request.app.state.settings
        application = request.app.state.bot_application
        if application is None or not hmac.compare_digest(
            token.encode("utf-8"), current.bot_token.encode("utf-8")
        ):
            return PlainTextResponse("Not Found", status_code=404, headers=CORS_HEADERS)
        if current.webhook_secret and not hmac.compare_digest(
            request.headers.get(TELEGRAM_SECRET_HEADER, "").encode("utf-8"),
            current.webhook_secret.encode("utf-8"),
        ):
            logger.warning("Webhook call with wrong secret token")
            return PlainTextResponse("Not Found", status_code=404, headers=CORS_HEADERS)

        try:
            data = await request.json()
        except ValueError:
            return PlainTextResponse("Malformed update", status_code=400, headers=CORS_HEADERS)
        try:
            await application.process_update(Update.de_json(data, application.bot))
        except Exception:
            # Telegram redelivers on non-2xx; a failing update must not loop.
            logger.exception("Error while handling Telegram update")
        return Response(status_code=200)

    return app


app = create_app()


# ======================================================================
# Application runner (for direct invocation)
# ======================================================================


def main() -> None:
    """Run TMAForm using uvicorn.

    For production deployments, use uvicorn directly::

        uvicorn app.main:app --host 0.0.0.0 --port 8000
    """
    import uvicorn

    _configure_logging()
    logger.info("Starting TMAForm: HTTP=%s:%d", HTTP_HOST, HTTP_PORT)

    uvicorn.run(
        "app.main:app",
        host=HTTP_HOST,
        port=HTTP_PORT,
        log_level=LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
