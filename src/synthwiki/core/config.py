"""Configuration management for Synthwiki.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the SYNTHWIKI_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (SYNTHWIKI_* prefix)
2. .env file in the project root
3. Default values defined in SynthwikiConfig

Example .env file:
    SYNTHWIKI_LLM_API_KEY=gsk_...
    SYNTHWIKI_IMAGE_API_TOKEN=r8_...
    SYNTHWIKI_CACHE_DIR=cache
    SYNTHWIKI_SERVER_PORT=3000

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from synthwiki.core.config import config

    print(config.llm_model)
    print(config.cache_dir)

Directory Management
--------------------
The configuration automatically creates the cache directory on
initialization.  The valid-page registry file lives inside it unless
``valid_pages_file`` is set explicitly.

Collaborator Settings
---------------------
- The language model is reached through an OpenAI-compatible
  ``/chat/completions`` endpoint (Groq by default).
- Images are produced through the Replicate predictions API
  (``black-forest-labs/flux-schnell`` by default).
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent.parent


class SynthwikiConfig(BaseSettings):
    """Main configuration for Synthwiki.

    Values are loaded from environment variables with the SYNTHWIKI_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Language Model Settings:
        llm_api_base : str
            Base URL of the OpenAI-compatible API
        llm_api_key : str
            Bearer token for the language model API
        llm_model : str
            Model used for article text, outlines and infoboxes
        llm_fast_model : str
            Smaller model used for search suggestions, validation and image prompts

    Image Settings:
        image_api_base : str
            Base URL of the Replicate API
        image_api_token : str
            Bearer token for the image API
        image_model : str
            ``owner/name`` of the image model
        image_output_format : Literal["webp", "png", "jpg"]
            Format requested from the provider
        image_poll_interval : float
            Seconds between prediction status polls

    Cache Settings:
        cache_dir : Path
            Directory holding one file per cache key
        valid_pages_file : Path | None
            Registry file; defaults to ``<cache_dir>/validPages.json``
        page_cache_hours : float
            Max age of a cached article
        image_cache_hours : float
            Max age of a cached image or image prompt

    Server Settings:
        server_host : str
            Bind address
        server_port : int
            Port (1024-65535)
        log_level : str
            Root log level used by ``main()``

    Notes
    -----
    - The cache directory is created automatically if it doesn't exist
    - To modify config, set environment variables and restart the application
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SYNTHWIKI_",
        case_sensitive=False,
    )

    # Language model collaborator
    llm_api_base: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Base URL of the OpenAI-compatible chat completions API",
    )
    llm_api_key: str = Field(default="", description="API key for the language model")
    llm_model: str = Field(
        default="llama-3.1-8b-instant",
        description="Model for outlines, sections, openings and infoboxes",
    )
    llm_fast_model: str = Field(
        default="gemma2-9b-it",
        description="Model for search suggestions, topic validation and image prompts",
    )

    # Image collaborator
    image_api_base: str = Field(
        default="https://api.replicate.com/v1",
        description="Base URL of the Replicate API",
    )
    image_api_token: str = Field(default="", description="API token for Replicate")
    image_model: str = Field(
        default="black-forest-labs/flux-schnell",
        description="Replicate model used to draw illustrations",
    )
    image_output_format: Literal["webp", "png", "jpg"] = Field(default="webp")
    image_output_quality: int = Field(default=60, ge=1, le=100)
    image_megapixels: str = Field(default="0.25")
    image_poll_interval: float = Field(
        default=1.0,
        description="Seconds between prediction status polls",
        gt=0,
    )

    # Outbound HTTP
    http_timeout: float = Field(
        default=120.0,
        description="Timeout in seconds applied to every collaborator request",
        gt=0,
    )

    # Cache
    cache_dir: Path = Field(default=Path("cache"), description="Flat-file cache directory")
    valid_pages_file: Path | None = Field(
        default=None,
        description="Valid-page registry file (defaults to <cache_dir>/validPages.json)",
    )
    page_cache_hours: float = Field(default=24.0, ge=0)
    image_cache_hours: float = Field(default=168.0, ge=0)

    # Paths to packaged assets
    templates_dir: Path = Field(default=PACKAGE_DIR / "templates")
    static_dir: Path = Field(default=PACKAGE_DIR / "static")

    # Server
    server_host: str = Field(default="0.0.0.0", description="Server bind address")
    server_port: int = Field(default=3000, description="Server port", ge=1024, le=65535)
    log_level: str = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create the cache directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        if self.valid_pages_file is None:
            self.valid_pages_file = self.cache_dir / "validPages.json"


# Global configuration instance
# It loads values from environment variables (SYNTHWIKI_* prefix) and .env file.
config = SynthwikiConfig()
