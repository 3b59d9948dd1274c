"""Configuration management for the Story Image Studio.

This module provides centralized configuration using Pydantic Settings.
Values are read from environment variables (``STORYIMAGE_`` prefix, plus the
conventional ``OPENAI_API_KEY`` and ``PORT``), then from a ``.env`` file in
the working directory, then from the defaults below.

Example .env file:
    OPENAI_API_KEY=sk-...
    PORT=3000
    STORYIMAGE_IMAGE_MODEL=gpt-image-1
    STORYIMAGE_LOG_LEVEL=DEBUG

Global Configuration Instance
------------------------------
A global ``config`` instance is created at import time and is the single
source of truth for the server::

    from storyimage.core.config import config

    print(config.server_port)

The API key is optional at import so that the package and its tests load
without credentials.  The server itself refuses to start without it, see
:func:`storyimage.api.main.main`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parents[1]


class StoryImageConfig(BaseSettings):
    """Runtime settings for the Story Image server.

    Attributes
    ----------
    Provider:
        openai_api_key : str | None
            Credential for the image provider (``OPENAI_API_KEY``).
        image_model : str
            Provider model used for generation and edits.
        request_timeout : float | None
            Seconds before a provider call times out; ``None`` keeps the
            SDK default.

    Server:
        server_host : str
            Bind address.
        server_port : int
            Listen port (``PORT``, default 3000).
        log_level : str
            Root logging level applied by ``main()``.

    Paths:
        templates_dir : Path
            Directory holding ``index.html``.
        static_dir : Path
            Directory mounted at ``/static``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STORYIMAGE_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "STORYIMAGE_OPENAI_API_KEY"),
        description="API key for the image provider (required to serve requests)",
    )
    image_model: str = Field(
        default="gpt-image-1",
        description="Provider model identifier",
    )
    request_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Provider call timeout in seconds (None = SDK default)",
    )

    server_host: str = Field(
        default="127.0.0.1",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3000,
        validation_alias=AliasChoices("PORT", "STORYIMAGE_SERVER_PORT"),
        ge=1,
        le=65535,
        description="Server port",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    templates_dir: Path = Field(default=PACKAGE_DIR / "templates")
    static_dir: Path = Field(default=PACKAGE_DIR / "static")

    @property
    def has_api_key(self) -> bool:
        return bool(self.openai_api_key and self.openai_api_key.strip())


# Global configuration instance
config = StoryImageConfig()
