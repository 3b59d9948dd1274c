"""Validation of untrusted render requests.

The two public entry points turn a decoded JSON body into a tagged job or
raise :class:`~storyimage.core.errors.RequestValidationError` with a message
meant for the user:

- :func:`validate_generate_request` for ``POST /generate``
- :func:`validate_edit_request` for ``POST /edit``

Checks run in a fixed order and stop at the first failure: prompt, size,
quality, output format, compression, then images.  Nothing in this module
has side effects, so a rejected request never reaches the provider.

Note the deliberate asymmetry between image kinds: an edit's source image
with a missing or unknown MIME type is treated as PNG, while a reference
image with an unsupported MIME type is rejected.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from typing import Any

from .errors import RequestValidationError
from .models import (
    IMAGE_MIME_TYPES,
    MAX_REFERENCE_IMAGES,
    OUTPUT_FORMATS,
    QUALITIES,
    SUPPORTED_SIZES,
    EditJob,
    GenerateJob,
    ReferenceImage,
    RenderSettings,
    SourceImage,
    extension_for,
)


def _choices(values: tuple[str, ...]) -> str:
    return ", ".join(values)


def decode_base64_payload(value: str) -> bytes:
    """Decode a base64 image payload, tolerating a ``data:`` URL prefix.

    Whitespace is ignored, so line-wrapped MIME-style base64 is accepted.

    Raises:
        ValueError: If the payload is not valid base64.
    """
    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("not valid base64") from e


def validate_prompt(payload: Mapping[str, Any]) -> str:
    """Return the prompt as sent, or reject it when missing or empty."""
    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not prompt:
        raise RequestValidationError("Missing prompt")
    return prompt


def validate_settings(payload: Mapping[str, Any]) -> RenderSettings:
    """Validate size, quality, output format and compression.

    For JPEG output ``output_compression`` must be an integer from 0 to 100.
    Booleans, floats and numeric strings are rejected.  For PNG output the
    compression field is ignored whatever it holds.

    Raises:
        RequestValidationError: On the first invalid setting.
    """
    size = payload.get("size")
    if size not in SUPPORTED_SIZES:
        raise RequestValidationError(f"Invalid size: expected one of {_choices(SUPPORTED_SIZES)}")

    quality = payload.get("quality")
    if quality not in QUALITIES:
        raise RequestValidationError(f"Invalid quality: expected one of {_choices(QUALITIES)}")

    output_format = payload.get("output_format")
    if output_format not in OUTPUT_FORMATS:
        raise RequestValidationError(
            f"Invalid output_format: expected one of {_choices(OUTPUT_FORMATS)}"
        )

    compression = None
    if output_format == "jpeg":
        compression = payload.get("output_compression")
        # bool is a subclass of int, so it has to be excluded explicitly.
        if (
            not isinstance(compression, int)
            or isinstance(compression, bool)
            or not 0 <= compression <= 100
        ):
            raise RequestValidationError(
                "Invalid output_compression: JPEG output needs an integer from 0 to 100"
            )

    return RenderSettings(
        size=size,
        quality=quality,
        output_format=output_format,
        output_compression=compression,
    )


def validate_reference_images(raw: Any) -> tuple[ReferenceImage, ...]:
    """Validate the optional ``reference_images`` list.

    Each entry is an object with ``name`` (optional), ``mime_type`` and a
    base64 ``b64`` payload, which may also be sent as ``data``.  Errors identify the offending entry by position
    and name.

    Raises:
        RequestValidationError: If the collection or any entry is invalid.
    """
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise RequestValidationError("reference_images must be a list")
    if len(raw) > MAX_REFERENCE_IMAGES:
        raise RequestValidationError(
            f"Too many reference images: at most {MAX_REFERENCE_IMAGES} are allowed"
        )

    references: list[ReferenceImage] = []
    for index, entry in enumerate(raw, start=1):
        if not isinstance(entry, Mapping):
            raise RequestValidationError(f"Reference image {index}: expected an object")

        mime_type = entry.get("mime_type")
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            name = f"reference-{index}.{extension_for(mime_type)}"
        label = f"Reference image {index} ({name})"

        if mime_type not in IMAGE_MIME_TYPES:
            raise RequestValidationError(
                f"{label}: unsupported mime_type, expected one of {_choices(IMAGE_MIME_TYPES)}"
            )

        payload = entry.get("b64")
        if payload is None:
            payload = entry.get("data")
        if not isinstance(payload, str) or not payload:
            raise RequestValidationError(f"{label}: missing image data")
        try:
            data = decode_base64_payload(payload)
        except ValueError as e:
            raise RequestValidationError(f"{label}: image data is {e}") from e
        if not data:
            raise RequestValidationError(f"{label}: image data is empty")

        references.append(ReferenceImage(name=name.strip(), mime_type=mime_type, data=data))

    return tuple(references)


def validate_source_image(payload: Mapping[str, Any]) -> SourceImage:
    """Validate the edit base image carried in ``image_b64``.

    An unknown or missing ``image_mime_type`` falls back to ``image/png``.

    Raises:
        RequestValidationError: If the image is missing, empty or undecodable.
    """
    raw = payload.get("image_b64")
    if not isinstance(raw, str) or not raw:
        raise RequestValidationError("Missing source image")
    try:
        data = decode_base64_payload(raw)
    except ValueError as e:
        raise RequestValidationError("Source image is not valid base64") from e
    if not data:
        raise RequestValidationError("Missing source image")

    mime_type = payload.get("image_mime_type")
    if mime_type not in IMAGE_MIME_TYPES:
        mime_type = "image/png"
    return SourceImage(mime_type=mime_type, data=data)


def validate_generate_request(payload: Mapping[str, Any]) -> GenerateJob:
    """Validate a ``POST /generate`` body.

    Args:
        payload: Decoded JSON object from the client.

    Returns:
        A :class:`GenerateJob`.  When reference images are present the job
        is dispatched as an edit using the references as base images.

    Raises:
        RequestValidationError: On the first failed check.
    """
    prompt = validate_prompt(payload)
    settings = validate_settings(payload)
    references = validate_reference_images(payload.get("reference_images"))
    return GenerateJob(prompt=prompt, settings=settings, reference_images=references)


def validate_edit_request(payload: Mapping[str, Any]) -> EditJob:
    """Validate a ``POST /edit`` body.

    Same checks as :func:`validate_generate_request`, plus a mandatory source
    image.  The source image is checked before the optional references.

    Raises:
        RequestValidationError: On the first failed check.
    """
    prompt = validate_prompt(payload)
    settings = validate_settings(payload)
    source = validate_source_image(payload)
    references = validate_reference_images(payload.get("reference_images"))
    return EditJob(
        prompt=prompt,
        settings=settings,
        source_image=source,
        reference_images=references,
    )
