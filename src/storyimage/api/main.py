"""Story Image Studio — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, the REST routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
The server is stateless between requests:

- **Validation** of every request body happens in
  :mod:`storyimage.core.validation`; a rejected request never reaches the
  provider.
- **Provider access** goes through one
  :class:`~storyimage.core.dispatcher.ImageDispatcher`, built at startup
  and stored on ``app.state``.  Routes obtain it via :func:`get_dispatcher`
  so tests can substitute a stub.
- **History** lives entirely in the client (the page script, or
  :class:`storyimage.client.StoryImageSession`).  The server keeps none.
- **Errors** of every kind are answered as ``{"error": message}`` with a
  status code from :mod:`storyimage.core.errors`.

Endpoints
---------
========  ==================  ==========================================
Method    Path                Purpose
========  ==================  ==========================================
GET       ``/``               Serve the interactive HTML page
GET       ``/api/config``     Supported sizes, qualities, formats, limits
GET       ``/health``         Liveness check
POST      ``/generate``       Generate a new image (optionally from refs)
POST      ``/edit``           Edit a source image with an instruction
========  ==================  ==========================================

Usage
-----
CLI (installed entry point)::

    storyimage

Direct invocation::

    python -m storyimage.api.main
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from storyimage import __version__
from storyimage.api.models import AppConfigResponse, ErrorResponse, RenderResponse
from storyimage.core.config import config
from storyimage.core.dispatcher import ImageDispatcher
from storyimage.core.errors import RequestValidationError, StoryImageError
from storyimage.core.models import (
    DEFAULT_OUTPUT_COMPRESSION,
    IMAGE_MIME_TYPES,
    MAX_REFERENCE_IMAGES,
    OUTPUT_FORMATS,
    QUALITIES,
    SUPPORTED_SIZES,
    RenderJob,
)
from storyimage.core.validation import validate_edit_request, validate_generate_request

logger = logging.getLogger(__name__)

STATIC_DIR: Path = config.static_dir
TEMPLATES_DIR: Path = config.templates_dir

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    500: {"model": ErrorResponse, "description": "Provider or transport failure"},
    502: {"model": ErrorResponse, "description": "Provider returned no image"},
}


# ---------------------------------------------------------------------------
# Application lifecycle: dispatcher setup.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the provider dispatcher on startup.

    A dispatcher already present on ``app.state`` is kept as is.

    Raises:
        RuntimeError: If no API key is configured.
    """
    if getattr(app.state, "dispatcher", None) is None:
        if not config.has_api_key:
            raise RuntimeError(
                "Missing OPENAI_API_KEY. Copy .env.example to .env and set your key."
            )
        app.state.dispatcher = ImageDispatcher.from_api_key(
            config.openai_api_key,
            model=config.image_model,
            timeout=config.request_timeout,
        )
        logger.info("Image dispatcher ready (model=%s).", config.image_model)

    yield


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Story Image Studio",
    description="Generate an image from a prompt, then iteratively edit it.",
    version=__version__,
    lifespan=lifespan,
)

# The page is served from the same origin; this only matters when the
# frontend is developed from another port.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


# ---------------------------------------------------------------------------
# Error handling: every failure becomes ``{"error": message}``.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(StoryImageError)
async def handle_story_image_error(request: Request, exc: StoryImageError) -> JSONResponse:
    return _error(exc.status_code, str(exc))


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


async def read_json_object(request: Request) -> dict[str, Any]:
    """Decode the request body as a JSON object.

    An empty body is treated as an empty object, so the usual field checks
    report what is missing.

    Raises:
        RequestValidationError: If the body is not a JSON object.
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise RequestValidationError("Request body must be a JSON object") from e
    if not isinstance(payload, dict):
        raise RequestValidationError("Request body must be a JSON object")
    return payload


def get_dispatcher(request: Request) -> ImageDispatcher:
    """Return the dispatcher created during application startup."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise StoryImageError("Image provider is not configured")
    return dispatcher


def _render(dispatcher: ImageDispatcher, job: RenderJob, fallback: str) -> RenderResponse:
    """Dispatch ``job`` and wrap unexpected failures as user-facing errors."""
    try:
        result = dispatcher.dispatch(job)
    except StoryImageError:
        raise
    except Exception as e:
        logger.exception("Unexpected error while dispatching %s request.", job.kind)
        raise StoryImageError(str(e) or fallback) from e
    return RenderResponse(b64=result.b64, mime_type=result.mime_type)


def _handle(
    validate: Callable[[dict[str, Any]], RenderJob],
    payload: dict[str, Any],
    dispatcher: ImageDispatcher,
    fallback: str,
) -> RenderResponse:
    job = validate(payload)
    return _render(dispatcher, job, fallback)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/", response_class=HTMLResponse)
async def index() -> HTMLResponse:
    """Serve the interactive page.

    Raises:
        HTTPException: 404 if ``index.html`` is not found.
    """
    index_path = TEMPLATES_DIR / "index.html"
    if index_path.exists():
        return HTMLResponse(content=index_path.read_text(encoding="utf-8"))
    raise HTTPException(status_code=404, detail="index.html not found")


@app.get("/api/config", response_model=AppConfigResponse)
async def get_config() -> AppConfigResponse:
    """Return the choices the page offers for each render setting."""
    return AppConfigResponse(
        version=__version__,
        model=config.image_model,
        sizes=list(SUPPORTED_SIZES),
        qualities=list(QUALITIES),
        output_formats=list(OUTPUT_FORMATS),
        image_mime_types=list(IMAGE_MIME_TYPES),
        max_reference_images=MAX_REFERENCE_IMAGES,
        default_output_compression=DEFAULT_OUTPUT_COMPRESSION,
    )


@app.get("/health")
async def health() -> dict:
    """Liveness check."""
    return {"status": "healthy"}


@app.post("/generate", response_model=RenderResponse, responses=_ERROR_RESPONSES)
def generate(
    payload: dict[str, Any] = Depends(read_json_object),
    dispatcher: ImageDispatcher = Depends(get_dispatcher),
) -> RenderResponse:
    """Generate a new image from a prompt.

    Body: ``{prompt, size, quality, output_format, output_compression?,
    reference_images?}``.  With reference images the provider's edit
    endpoint is used, with the references as base images.

    Declared as a plain ``def`` so FastAPI runs the blocking provider call
    in its threadpool.

    Returns:
        ``{b64, mime_type}``.
    """
    return _handle(validate_generate_request, payload, dispatcher, "Image generation failed")


@app.post("/edit", response_model=RenderResponse, responses=_ERROR_RESPONSES)
def edit(
    payload: dict[str, Any] = Depends(read_json_object),
    dispatcher: ImageDispatcher = Depends(get_dispatcher),
) -> RenderResponse:
    """Edit a source image with an instruction.

    Body: ``{prompt, size, quality, output_format, output_compression?,
    image_b64, image_mime_type, reference_images?}``.  The source image is
    sent first, followed by any references.

    Returns:
        ``{b64, mime_type}``.
    """
    return _handle(validate_edit_request, payload, dispatcher, "Image edit failed")


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Host, port and log level come from :data:`~storyimage.core.config.config`
    (``STORYIMAGE_SERVER_HOST``, ``PORT``, ``STORYIMAGE_LOG_LEVEL``).  Exits
    with status 1 when no API key is configured.

    This function is registered as the ``storyimage`` console script in
    ``pyproject.toml``.
    """
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not config.has_api_key:
        logger.error("Missing OPENAI_API_KEY. Copy .env.example to .env and set your key.")
        sys.exit(1)

    import uvicorn

    logger.info("Open http://localhost:%d", config.server_port)
    uvicorn.run(
        "storyimage.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
