"""Validated value types passed between the validator and the dispatcher.

Raw request bodies never travel past :mod:`storyimage.core.validation`.
What the rest of the application sees are the frozen models defined here:

RenderSettings
    Normalised size / quality / format / compression choice.
ReferenceImage, SourceImage
    Decoded image payloads with a supported MIME type.
GenerateJob, EditJob
    Tagged request types, one per endpoint.  ``kind`` is the tag.
RenderResult
    The first image returned by the provider.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SUPPORTED_SIZES: tuple[str, ...] = ("1024x1024", "1024x1536", "1536x1024")
QUALITIES: tuple[str, ...] = ("low", "medium", "high")
OUTPUT_FORMATS: tuple[str, ...] = ("jpeg", "png")
IMAGE_MIME_TYPES: tuple[str, ...] = ("image/png", "image/jpeg")
MAX_REFERENCE_IMAGES = 4
DEFAULT_OUTPUT_COMPRESSION = 80

Size = Literal["1024x1024", "1024x1536", "1536x1024"]
Quality = Literal["low", "medium", "high"]
OutputFormat = Literal["jpeg", "png"]
ImageMimeType = Literal["image/png", "image/jpeg"]

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg"}


def extension_for(mime_type: str) -> str:
    """Return the file extension used for a supported image MIME type."""
    if not isinstance(mime_type, str):
        return "png"
    return _EXTENSIONS.get(mime_type, "png")


class RenderSettings(BaseModel):
    """Output settings shared by generation and edit requests.

    ``output_compression`` is only carried for JPEG output.  For PNG it is
    always ``None`` so that it can never be forwarded to the provider.
    """

    model_config = ConfigDict(frozen=True)

    size: Size
    quality: Quality
    output_format: OutputFormat
    output_compression: int | None = Field(default=None, ge=0, le=100)

    @property
    def mime_type(self) -> ImageMimeType:
        return "image/jpeg" if self.output_format == "jpeg" else "image/png"

    def provider_options(self) -> dict:
        """Keyword arguments describing these settings to the provider SDK."""
        options: dict = {
            "size": self.size,
            "quality": self.quality,
            "output_format": self.output_format,
        }
        if self.output_format == "jpeg" and self.output_compression is not None:
            options["output_compression"] = self.output_compression
        return options


class SourceImage(BaseModel):
    """The base image of an edit request."""

    model_config = ConfigDict(frozen=True)

    mime_type: ImageMimeType = "image/png"
    data: bytes

    @property
    def filename(self) -> str:
        return f"source.{extension_for(self.mime_type)}"

    def as_upload(self) -> tuple[str, bytes, str]:
        """Return the ``(filename, content, mime_type)`` tuple the SDK uploads."""
        return (self.filename, self.data, self.mime_type)


class ReferenceImage(BaseModel):
    """An auxiliary image that steers generation or editing."""

    model_config = ConfigDict(frozen=True)

    name: str
    mime_type: ImageMimeType
    data: bytes

    def as_upload(self) -> tuple[str, bytes, str]:
        return (self.name, self.data, self.mime_type)


class GenerateJob(BaseModel):
    """A validated ``POST /generate`` request.

    Generation with reference images is sent to the provider's edit
    endpoint, using the references as the base images.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["generate"] = "generate"
    prompt: str
    settings: RenderSettings
    reference_images: tuple[ReferenceImage, ...] = ()

    @property
    def uses_edit_endpoint(self) -> bool:
        return bool(self.reference_images)

    @property
    def images(self) -> tuple[ReferenceImage, ...]:
        return self.reference_images


class EditJob(BaseModel):
    """A validated ``POST /edit`` request."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["edit"] = "edit"
    prompt: str
    settings: RenderSettings
    source_image: SourceImage
    reference_images: tuple[ReferenceImage, ...] = ()

    @property
    def uses_edit_endpoint(self) -> bool:
        return True

    @property
    def images(self) -> tuple[SourceImage | ReferenceImage, ...]:
        """Images in upload order: the source first, then the references."""
        return (self.source_image, *self.reference_images)


RenderJob = GenerateJob | EditJob


class RenderResult(BaseModel):
    """The image extracted from a successful provider response."""

    model_config = ConfigDict(frozen=True)

    b64: str
    mime_type: ImageMimeType
