"""Pydantic response models for the Story Image API.

Request bodies are not declared here: ``/generate`` and ``/edit`` accept a
raw JSON object which :mod:`storyimage.core.validation` checks field by
field, so that every rejection carries its own message and a 400 status.

Models
------
RenderResponse
    Success body of ``POST /generate`` and ``POST /edit``.
ErrorResponse
    Body of every non-2xx response.
AppConfigResponse
    Body of ``GET /api/config`` — the choices the page offers.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class RenderResponse(BaseModel):
    """Response body for a successful render.

    Attributes:
        b64: Base64-encoded image.
        mime_type: ``image/png`` or ``image/jpeg``.
    """

    b64: str = Field(..., description="Base64-encoded image payload.")
    mime_type: str = Field(..., description="MIME type of the image.")


class ErrorResponse(BaseModel):
    """Response body for any failed request."""

    error: str = Field(..., description="Message to show to the user.")


class AppConfigResponse(BaseModel):
    """Settings choices exposed to the frontend."""

    version: str
    model: str
    sizes: list[str]
    qualities: list[str]
    output_formats: list[str]
    image_mime_types: list[str]
    max_reference_images: int
    default_output_compression: int
