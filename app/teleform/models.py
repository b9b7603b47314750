# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""HTTP API models for the callback receiver."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SubmissionPayload(BaseModel):
    """Callback POST body sent by the Mini App."""

    form: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[str] = None
    signature: Optional[str] = None


class SubmissionAccepted(BaseModel):
    status: str = "accepted"
    verified: bool
    userid: Optional[Any] = None
    chatid: Optional[Any] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    signing: bool
    verification: bool
    bot: bool
