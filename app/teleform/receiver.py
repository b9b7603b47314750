# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Callback receiver: decide whether a submission is trusted.

A submission is accepted only when its metadata token verifies against the
issuer's public key. After that the decoded metadata is trusted, and when
it carries the original form schema the submitted values are checked
against it, since the values themselves come from the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.config import Settings
from app.teleform.exceptions import SubmissionRejected, VerificationError
from app.teleform.models import SubmissionPayload
from app.teleform.payload import validate_values
from app.teleform.result import Err
from app.teleform.schema import validate_fields
from app.teleform.signing import VerifiedSubmission, verify_submission

logger = logging.getLogger(__name__)

__all__ = ["ReceivedSubmission", "receive_submission", "check_against_schema"]


@dataclass(frozen=True)
class ReceivedSubmission:
    """Outcome of an accepted callback.

    ``verified`` is ``None`` only for unsigned submissions accepted under
    ``allow_unsigned``; its metadata must not be trusted.
    """

    form: Dict[str, Any]
    verified: Optional[VerifiedSubmission]

    @property
    def trusted_metadata(self) -> Dict[str, Any]:
        return self.verified.metadata if self.verified is not None else {}


def check_against_schema(verified: VerifiedSubmission) -> None:
    """Check submitted values against the ``form`` schema in signed metadata.

    Metadata without a ``form`` entry is not checked.

    Raises:
        SubmissionRejected: If the values do not fit the signed schema.
    """
    schema = verified.metadata.get("form")
    if schema is None:
        return
    result = validate_fields(schema)
    if isinstance(result, Err):
        raise SubmissionRejected(f"Signed form schema is invalid: {result.error.message}")
    fields = result.value

    declared = {f.key for f in fields}
    unknown = sorted(set(verified.form) - declared)
    if unknown:
        raise SubmissionRejected(f"Undeclared form keys: {', '.join(unknown)}")

    errors = validate_values(fields, verified.form)
    if errors:
        summary = "; ".join(f"{k}: {v}" for k, v in errors.items())
        raise SubmissionRejected(f"Form values do not match the signed schema: {summary}")


def receive_submission(settings: Settings, payload: SubmissionPayload) -> ReceivedSubmission:
    """Verify *payload* under *settings*.

    Raises:
        VerificationError: Signature absent (and unsigned not allowed),
            invalid, or no public key is configured.
        SubmissionRejected: Verified values contradict the signed schema.
    """
    unsigned = not payload.metadata or not payload.signature
    if unsigned and settings.allow_unsigned:
        logger.info("Accepted unsigned submission (%d values)", len(payload.form))
        return ReceivedSubmission(form=dict(payload.form), verified=None)

    if settings.public_key is None:
        raise VerificationError("VERIFIER_UNCONFIGURED", "No public key configured")

    verified = verify_submission(settings.public_key, payload.model_dump())
    check_against_schema(verified)
    logger.info(
        "Accepted verified submission userid=%s chatid=%s",
        verified.claim("userid"),
        verified.claim("chatid"),
    )
    return ReceivedSubmission(form=verified.form, verified=verified)
