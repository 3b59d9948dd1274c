"""Single-call dispatch of validated jobs to the external image provider.

:class:`ImageDispatcher` is the only place that talks to the provider.  It
takes a :class:`~storyimage.core.models.GenerateJob` or
:class:`~storyimage.core.models.EditJob`, performs exactly one synchronous
SDK call, and either returns a :class:`~storyimage.core.models.RenderResult`
or raises one of two distinct errors:

- :class:`~storyimage.core.errors.NoImageReturnedError` when the provider
  answered but the first result carried no ``b64_json`` payload.
- :class:`~storyimage.core.errors.ProviderError` for everything the SDK
  reports as a failure, whether an API rejection or a transport problem.

There are no retries.  Timeouts are whatever the SDK client was built with.

Usage
-----
::

    from openai import OpenAI

    dispatcher = ImageDispatcher(OpenAI(api_key=...), model="gpt-image-1")
    result = dispatcher.dispatch(validate_generate_request(body))
"""

from __future__ import annotations

import logging
from typing import Any

from openai import OpenAI, OpenAIError

from .errors import NoImageReturnedError, ProviderError
from .models import EditJob, RenderJob, RenderResult

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-image-1"


def _short(prompt: str, limit: int = 60) -> str:
    return prompt if len(prompt) <= limit else prompt[: limit - 3] + "..."


def provider_error_from(exc: Exception) -> ProviderError:
    """Translate an SDK exception into a :class:`ProviderError`.

    The SDK exposes the provider's ``error`` object as ``exc.body``; its
    ``message`` is preferred over the SDK's own composite message.

    Args:
        exc: Exception raised by the provider SDK.

    Returns:
        A ``ProviderError`` carrying status code, request id and message.
    """
    message = None
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        message = body.get("message")
    if not message:
        message = getattr(exc, "message", None) or str(exc) or "Image request failed"

    return ProviderError(
        str(message),
        status_code=getattr(exc, "status_code", None),
        request_id=getattr(exc, "request_id", None),
    )


class ImageDispatcher:
    """Send validated render jobs to the image provider.

    Args:
        client: An :class:`openai.OpenAI` client, or any object exposing
            ``images.generate`` and ``images.edit`` with the same signature.
        model: Provider model identifier.
    """

    def __init__(self, client: OpenAI | Any, model: str = DEFAULT_MODEL) -> None:
        self.client = client
        self.model = model

    @classmethod
    def from_api_key(
        cls,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        timeout: float | None = None,
    ) -> ImageDispatcher:
        """Build a dispatcher around a fresh OpenAI client."""
        kwargs: dict[str, Any] = {"api_key": api_key}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return cls(OpenAI(**kwargs), model=model)

    def dispatch(self, job: RenderJob) -> RenderResult:
        """Perform one provider call for ``job`` and return the first image.

        Raises:
            NoImageReturnedError: The response contained no image payload.
            ProviderError: The provider or transport reported a failure.
        """
        request: dict[str, Any] = {
            "model": self.model,
            "prompt": job.prompt,
            **job.settings.provider_options(),
        }

        logger.info(
            "Dispatching %s request (size=%s, quality=%s, format=%s, images=%d): %s",
            job.kind,
            job.settings.size,
            job.settings.quality,
            job.settings.output_format,
            len(job.images),
            _short(job.prompt),
        )

        try:
            if job.uses_edit_endpoint:
                request["image"] = [image.as_upload() for image in job.images]
                response = self.client.images.edit(**request)
            else:
                response = self.client.images.generate(**request)
        except OpenAIError as e:
            error = provider_error_from(e)
            logger.warning("Image provider call failed: %s", error)
            raise error from e

        b64 = self._first_image(response)
        if not b64:
            if isinstance(job, EditJob):
                raise NoImageReturnedError("No edited image returned by API")
            raise NoImageReturnedError("No image returned by API")

        return RenderResult(b64=b64, mime_type=job.settings.mime_type)

    @staticmethod
    def _first_image(response: Any) -> str | None:
        data = getattr(response, "data", None)
        if not data:
            return None
        return getattr(data[0], "b64_json", None)
