# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""TMAForm exceptions with stable error codes.

Decoding and schema failures are usually carried inside
:class:`app.teleform.result.Err` rather than raised; the classes below are
the error values in both cases.
"""

from __future__ import annotations

from typing import Optional, Sequence


class TeleFormError(Exception):
    """Base exception for TMAForm errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class DecodeError(TeleFormError):
    """A token is not valid base64url or does not decode to UTF-8.

    The original input is kept on ``token`` for diagnostics.
    """

    def __init__(self, token: str, reason: str):
        self.token = token
        self.reason = reason
        super().__init__("DECODE_FAILED", f"Invalid base64url string: {reason}")


class KeyLoadError(TeleFormError):
    """PEM key material could not be loaded."""

    def __init__(self, message: str):
        super().__init__("KEY_LOAD_FAILED", message)


class SchemaError(TeleFormError):
    """A field definition is structurally invalid.

    ``index`` is the position of the offending definition in the ``form``
    array; ``key`` is its key when one could be read.
    """

    PREFIX = "Form structure is invalid: "

    def __init__(
        self,
        code: str,
        message: str,
        index: Optional[int] = None,
        key: Optional[str] = None,
    ):
        self.index = index
        self.key = key
        super().__init__(code, self.PREFIX + message)

    @classmethod
    def not_object(cls, index: int) -> "SchemaError":
        return cls(
            "FIELD_NOT_OBJECT",
            f"Field definition at index {index} is not a valid object.\n"
            "Expected: Each item in the 'form' array must be a field definition object.",
            index=index,
        )

    @classmethod
    def key_invalid(cls, index: int, label: Optional[str]) -> "SchemaError":
        return cls(
            "KEY_INVALID",
            f"Field definition at index {index} (Label: \"{label or 'N/A'}\") is missing a 'key' "
            "or 'key' is not a non-empty string.\n"
            "Expected: Each field must have a unique string 'key'. "
            'Example: { "key": "firstName", "label": "First Name", "type": "string" }',
            index=index,
        )

    @classmethod
    def key_duplicate(cls, index: int, key: str, first_index: int) -> "SchemaError":
        return cls(
            "KEY_DUPLICATE",
            f"Field definition at index {index} reuses key \"{key}\" "
            f"already defined at index {first_index}.\n"
            "Expected: Each field must have a unique string 'key'.",
            index=index,
            key=key,
        )

    @classmethod
    def label_invalid(cls, index: int, key: str) -> "SchemaError":
        return cls(
            "LABEL_INVALID",
            f"Field definition for key \"{key}\" (Index: {index}) is missing a 'label' "
            "or 'label' is not a non-empty string.\n"
            f"Expected: Each field must have a display 'label'. "
            f'Example: {{ "key": "{key}", "label": "Your Label", "type": "string" }}',
            index=index,
            key=key,
        )

    @classmethod
    def type_invalid(
        cls, index: int, key: str, label: str, allowed: Sequence[str]
    ) -> "SchemaError":
        return cls(
            "TYPE_INVALID",
            f"Field definition for key \"{key}\" (Label: \"{label}\", Index: {index}) "
            "has a missing or invalid 'type'.\n"
            f"Expected: 'type' must be one of: {', '.join(allowed)}. "
            f'Example: {{ "key": "{key}", "label": "{label}", "type": "string" }}',
            index=index,
            key=key,
        )

    @classmethod
    def options_invalid(
        cls, index: int, key: str, label: str, field_type: str
    ) -> "SchemaError":
        return cls(
            "OPTIONS_INVALID",
            f"Field definition for key \"{key}\" (Label: \"{label}\", Type: '{field_type}', "
            f"Index: {index}) is missing 'options', 'options' is not a non-empty array of "
            "strings, or contains non-string values.\n"
            "Expected: 'options' must be an array of strings. "
            f'Example: {{ ..., "type": "{field_type}", "options": ["Option 1", "Option 2"] }}',
            index=index,
            key=key,
        )

    @classmethod
    def required_invalid(cls, index: int, key: str, label: str) -> "SchemaError":
        return cls(
            "REQUIRED_INVALID",
            f"Field definition for key \"{key}\" (Label: \"{label}\", Index: {index}) "
            "has an invalid 'required' property.\n"
            "Expected: If provided, 'required' must be a boolean (true or false).",
            index=index,
            key=key,
        )

    @classmethod
    def default_invalid(
        cls, index: int, key: str, label: str, actual_type: str, expected: str
    ) -> "SchemaError":
        return cls(
            "DEFAULT_INVALID",
            f"Field definition for key \"{key}\" (Label: \"{label}\", Index: {index}) "
            f"has a 'default' value of type '{actual_type}' but expected {expected}",
            index=index,
            key=key,
        )


class ParamError(TeleFormError):
    """The deep-link parameters cannot produce a form.

    This is the terminal ``paramError`` outcome of decoding. ``param`` names
    the offending query parameter when there is exactly one; ``missing``
    lists absent mandatory parameters.
    """

    def __init__(
        self,
        code: str,
        message: str,
        param: Optional[str] = None,
        missing: Sequence[str] = (),
        cause: Optional[TeleFormError] = None,
    ):
        self.param = param
        self.missing = tuple(missing)
        self.cause = cause
        super().__init__(code, message)

    @classmethod
    def missing_params(cls, missing: Sequence[str], descriptions: Sequence[str]) -> "ParamError":
        return cls(
            "PARAMS_MISSING",
            "Invalid or missing critical form parameters. Please ensure the URL includes "
            "the following parameters, correctly base64url encoded:\n\n" + "\n".join(descriptions),
            missing=missing,
        )

    @classmethod
    def undecodable(cls, param: str, error: DecodeError) -> "ParamError":
        return cls(
            "PARAM_DECODE_FAILED",
            f"Parameter '{param}' could not be decoded: {error.reason}",
            param=param,
            cause=error,
        )

    @classmethod
    def form_not_json(cls, detail: str) -> "ParamError":
        return cls(
            "FORM_JSON_INVALID",
            "Form structure is invalid: 'form' parameter is not a valid JSON string.\n"
            f"Details: {detail}\n"
            'Expected: A JSON array of field objects, e.g., [ { "key": "name", ... }, ... ]',
            param="form",
        )

    @classmethod
    def form_not_array(cls) -> "ParamError":
        return cls(
            "FORM_NOT_ARRAY",
            "Form structure is invalid: The 'form' definition must be a JSON array of field "
            'objects.\nExample: [ { "key": "name", ... }, { "key": "email", ... } ]',
            param="form",
        )

    @classmethod
    def schema(cls, error: SchemaError) -> "ParamError":
        return cls("FORM_SCHEMA_INVALID", error.message, param="form", cause=error)

    @classmethod
    def callback_url_invalid(cls, value: str) -> "ParamError":
        return cls(
            "CALLBACK_URL_INVALID",
            f"Parameter 'callbackUrl' must be an absolute http(s) URL, got {value!r}",
            param="callbackUrl",
        )


class SubmissionError(TeleFormError):
    """Submitting the form to the callback URL failed.

    Recoverable: the session keeps the entered values and may retry.
    """

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(code, message)

    @classmethod
    def rejected(cls, status_code: int, body: str, reason: str = "") -> "SubmissionError":
        return cls(
            "SUBMISSION_FAILED",
            f"Submission failed: {status_code} {body or reason}".rstrip(),
            status_code=status_code,
        )

    @classmethod
    def network(cls, reason: str) -> "SubmissionError":
        return cls("SUBMISSION_NETWORK_ERROR", f"Submission failed: {reason}")

    @classmethod
    def interrupted(cls) -> "SubmissionError":
        return cls("SUBMISSION_INTERRUPTED", "Submission was interrupted before a response arrived")


class SubmissionInProgress(TeleFormError):
    """A submission is already running or the session is finished."""

    def __init__(self, message: str = "Submission already in progress"):
        super().__init__("SUBMISSION_LOCKED", message)


class FormValuesInvalid(TeleFormError):
    """Entered values do not satisfy the field definitions."""

    def __init__(self, errors: dict):
        self.errors = dict(errors)
        summary = "; ".join(f"{k}: {v}" for k, v in self.errors.items())
        super().__init__("FORM_VALUES_INVALID", f"Form values are invalid: {summary}")


class VerificationError(TeleFormError):
    """The submitted metadata could not be proven to come from the issuer."""

    @classmethod
    def missing(cls) -> "VerificationError":
        return cls("SIGNATURE_MISSING", "Submission carries no metadata/signature pair")

    @classmethod
    def invalid(cls) -> "VerificationError":
        return cls("SIGNATURE_INVALID", "Metadata signature verification failed")

    @classmethod
    def metadata_invalid(cls, reason: str) -> "VerificationError":
        return cls("METADATA_INVALID", f"Signed metadata is unusable: {reason}")


class SubmissionRejected(TeleFormError):
    """A verified submission does not match the signed form schema."""

    def __init__(self, message: str):
        super().__init__("SUBMISSION_MISMATCH", message)
