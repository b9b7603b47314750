# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Client form session: the Mini App lifecycle without the widgets.

A :class:`FormSession` walks the states a Mini App page goes through::

    loading ──► paramError                      (terminal)
        │
        └─────► formDisplay ──► submitting ──► success   (terminal)
                    ▲               │
                    └──── error ◄───┘           (retry re-arms)

Submission is guarded by a lock taken before the first suspension point,
so a second activation while a request is in flight is refused rather than
queued. On success the lock is never released. On failure the entered
values are kept and the lock is released for a manual retry; nothing is
retried automatically.

Submit activations come from a :class:`SubmitTrigger` (the Telegram main
button in the real Mini App). A session subscribes to a trigger only for
the lifetime of :meth:`FormSession.bound`, and the subscription is released
on exit.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional

import httpx

from app.teleform.decoder import FormEnvelope, decode_form_params, decode_form_url
from app.teleform.exceptions import (
    FormValuesInvalid,
    ParamError,
    SubmissionError,
    SubmissionInProgress,
    TeleFormError,
)
from app.teleform.payload import (
    assemble_payload,
    coerce_values,
    initial_values,
    validate_values,
)
from app.teleform.result import Err

logger = logging.getLogger(__name__)

__all__ = ["AppState", "FormSession", "SubmitTrigger", "Subscription"]

DEFAULT_SUBMIT_TIMEOUT = 10.0

Handler = Callable[[], Awaitable[Any]]


class AppState(str, Enum):
    LOADING = "loading"
    PARAM_ERROR = "paramError"
    FORM_DISPLAY = "formDisplay"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    ERROR = "error"


# =============================================================================
# Submit trigger
# =============================================================================


class Subscription:
    """Handle returned by :meth:`SubmitTrigger.subscribe`."""

    def __init__(self, trigger: "SubmitTrigger", handler: Handler):
        self._trigger = trigger
        self._handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._trigger.unsubscribe(self._handler)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class SubmitTrigger:
    """An activatable submit control.

    Handlers are awaited in subscription order each time the trigger fires.
    A disabled trigger ignores activations.
    """

    def __init__(self, text: str = "Submit"):
        self.text = text
        self.enabled = False
        self.visible = False
        self._handlers: List[Handler] = []

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: Handler) -> Subscription:
        self._handlers.append(handler)
        return Subscription(self, handler)

    def unsubscribe(self, handler: Handler) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            logger.debug("Handler %r was not subscribed", handler)

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False

    async def fire(self) -> bool:
        """Activate the trigger; returns ``False`` if it was disabled."""
        if not self.enabled:
            return False
        for handler in list(self._handlers):
            await handler()
        return True


# =============================================================================
# Session
# =============================================================================


class FormSession:
    """One page load of a form: decode, hold values, submit."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_SUBMIT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self._http_client = http_client
        self.state = AppState.LOADING
        self.envelope: Optional[FormEnvelope] = None
        self.error: Optional[TeleFormError] = None
        self.values: Dict[str, Any] = {}
        self._locked = False
        self._trigger: Optional[SubmitTrigger] = None

    # -- construction --------------------------------------------------------

    @classmethod
    def from_params(cls, params: Mapping[str, str], **kwargs) -> "FormSession":
        session = cls(**kwargs)
        session.load(params)
        return session

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "FormSession":
        session = cls(**kwargs)
        session._apply(decode_form_url(url))
        return session

    def load(self, params: Mapping[str, str]) -> AppState:
        """Decode *params* and move to ``formDisplay`` or ``paramError``."""
        return self._apply(decode_form_params(params))

    def _apply(self, result) -> AppState:
        if self.state is not AppState.LOADING:
            raise TeleFormError("SESSION_LOADED", "Session already loaded")
        if isinstance(result, Err):
            self.error = result.error
            self.state = AppState.PARAM_ERROR
            logger.info("Form parameters rejected: %s", result.error.code)
            return self.state
        self.envelope = result.value
        self.values = initial_values(self.envelope.fields)
        self.state = AppState.FORM_DISPLAY
        return self.state

    # -- values --------------------------------------------------------------

    @property
    def error_message(self) -> str:
        return self.error.message if self.error is not None else ""

    def set_value(self, key: str, value: Any) -> None:
        if self.envelope is None:
            raise ParamError("FORM_NOT_LOADED", "No form is loaded")
        self.envelope.field(key)
        self.values[key] = value
        self._sync_trigger()

    def update(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            self.set_value(key, value)

    @property
    def field_errors(self) -> Dict[str, str]:
        if self.envelope is None:
            return {}
        return validate_values(self.envelope.fields, self.values)

    @property
    def is_valid(self) -> bool:
        return self.envelope is not None and not self.field_errors

    def payload(self) -> Dict[str, Any]:
        """The POST body for the current values."""
        if self.envelope is None:
            raise ParamError("FORM_NOT_LOADED", "No form is loaded")
        return assemble_payload(self.envelope, coerce_values(self.envelope.fields, self.values))

    # -- submission ----------------------------------------------------------

    async def submit(self) -> httpx.Response:
        """POST the form to the callback URL.

        Raises:
            SubmissionInProgress: A submission is running or already succeeded.
            FormValuesInvalid: The entered values fail validation.
            SubmissionError: Network failure or non-2xx response; the
                session moves to ``error`` and may be retried.
        """
        if self._locked or self.state not in (AppState.FORM_DISPLAY, AppState.ERROR):
            raise SubmissionInProgress()
        errors = self.field_errors
        if errors:
            raise FormValuesInvalid(errors)

        self._locked = True
        self.state = AppState.SUBMITTING
        self._sync_trigger()
        body = self.payload()
        url = self.envelope.callback_url

        try:
            response = await self._post(url, body)
        except httpx.HTTPError as exc:
            self._fail(SubmissionError.network(str(exc) or type(exc).__name__))
            raise self.error from exc
        except BaseException:
            # Cancellation must not leave the session locked in submitting.
            self._fail(SubmissionError.interrupted())
            raise

        if not response.is_success:
            self._fail(
                SubmissionError.rejected(response.status_code, response.text, response.reason_phrase)
            )
            raise self.error

        self.state = AppState.SUCCESS
        self.error = None
        self._sync_trigger()
        logger.info("Form submitted to %s (%d)", url, response.status_code)
        return response

    async def retry(self) -> httpx.Response:
        if self.state is not AppState.ERROR:
            raise SubmissionInProgress("Nothing to retry")
        return await self.submit()

    async def _post(self, url: str, body: Dict[str, Any]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(url, json=body, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=body)

    def _fail(self, error: SubmissionError) -> None:
        logger.warning("Submission error: %s", error.message)
        self.error = error
        self.state = AppState.ERROR
        self._locked = False
        self._sync_trigger()

    # -- trigger binding -----------------------------------------------------

    async def _on_trigger(self) -> None:
        try:
            await self.submit()
        except SubmissionInProgress:
            logger.debug("Submit trigger ignored while locked")
        except TeleFormError as exc:
            logger.info("Submit trigger failed: %s", exc.code)

    def _sync_trigger(self) -> None:
        trigger = self._trigger
        if trigger is None:
            return
        if self.state in (AppState.FORM_DISPLAY, AppState.ERROR, AppState.SUBMITTING):
            trigger.visible = True
            trigger.text = "Retry" if self.state is AppState.ERROR else "Submit"
        else:
            trigger.visible = False
        if self.state in (AppState.FORM_DISPLAY, AppState.ERROR) and not self._locked and self.is_valid:
            trigger.enable()
        else:
            trigger.disable()

    @contextmanager
    def bound(self, trigger: SubmitTrigger) -> Iterator[Subscription]:
        """Subscribe this session to *trigger* for the duration of the block."""
        subscription = trigger.subscribe(self._on_trigger)
        self._trigger = trigger
        try:
            self._sync_trigger()
            yield subscription
        finally:
            subscription.unsubscribe()
            self._trigger = None
            trigger.disable()
            trigger.visible = False
