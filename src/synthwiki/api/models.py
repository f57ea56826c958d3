"""Pydantic response models for the Synthwiki JSON endpoints.

Models
------
ImageStatusResponse
    Body of ``/images/...`` responses that carry no image: 202 while the
    prompt is being written, 404 and 500 otherwise.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class ImageStatusResponse(BaseModel):
    """Status of an image that cannot be served yet (or at all).

    Attributes:
        status: ``generating`` while the client should poll again,
            ``missing`` or ``unsupported`` for a permanent 404 and
            ``error`` when generation failed.
        message: Human-readable explanation.
        retry_after: Seconds the client should wait before polling again.
    """

    status: Literal["generating", "missing", "unsupported", "error"]
    message: str
    retry_after: float | None = None
