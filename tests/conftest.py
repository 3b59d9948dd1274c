"""Shared pytest fixtures for Story Image tests."""

from __future__ import annotations

import base64
import io
from collections.abc import Generator
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from storyimage.api.main import app, get_dispatcher
from storyimage.core.dispatcher import ImageDispatcher
from storyimage.core.history import HistoryStore


def _encode(fmt: str, color: tuple[int, int, int]) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    """A tiny real PNG image."""
    return _encode("PNG", (200, 60, 20))


@pytest.fixture
def png_b64(png_bytes: bytes) -> str:
    return base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def jpeg_b64() -> str:
    return base64.b64encode(_encode("JPEG", (20, 60, 200))).decode("ascii")


def _images_response(*payloads: str | None) -> SimpleNamespace:
    """Build an object shaped like the SDK's ``ImagesResponse``."""
    return SimpleNamespace(data=[SimpleNamespace(b64_json=p) for p in payloads])


@pytest.fixture
def provider_response():
    """Factory for fake provider responses carrying the given payloads."""
    return _images_response


@pytest.fixture
def fake_provider(png_b64: str) -> MagicMock:
    """A stand-in for ``openai.OpenAI`` whose image calls always succeed.

    Returns:
        MagicMock with ``images.generate`` and ``images.edit`` configured.
    """
    client = MagicMock()
    client.images.generate.return_value = _images_response(png_b64)
    client.images.edit.return_value = _images_response(png_b64)
    return client


@pytest.fixture
def dispatcher(fake_provider: MagicMock) -> ImageDispatcher:
    return ImageDispatcher(fake_provider, model="gpt-image-1")


@pytest.fixture
def test_client(dispatcher: ImageDispatcher) -> Generator[TestClient, None, None]:
    """TestClient for the app with the provider replaced by ``fake_provider``.

    The lifespan is not entered, so no API key is needed.
    """
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def store() -> HistoryStore:
    return HistoryStore()


@pytest.fixture
def generate_payload() -> dict:
    """A valid ``POST /generate`` body."""
    return {
        "prompt": "a red fox",
        "size": "1024x1024",
        "quality": "low",
        "output_format": "png",
    }


@pytest.fixture
def edit_payload(generate_payload: dict, png_b64: str) -> dict:
    """A valid ``POST /edit`` body."""
    return {
        **generate_payload,
        "prompt": "make it sunset",
        "image_b64": png_b64,
        "image_mime_type": "image/png",
    }
