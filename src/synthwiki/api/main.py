"""Synthwiki: FastAPI Application.

This module is the single entry point for the web application.  It builds
the FastAPI ``app``, defines every route, and provides the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Services** (cache, valid-page registry, collaborators and pipelines)
  are created in the lifespan handler and stored on ``app.state``.
  :func:`create_app` accepts ready-made collaborators so that tests can
  run the whole application without network access.
- **Articles** are resolved before any byte is sent.  A page that has to
  be written is streamed: the document shell goes out first, the article
  follows inside a ``<template>`` element once it is ready.
- **Images** are generated lazily when the browser asks for them; the
  lazy loader polls while the image prompt is still being written.
- **Static assets** (CSS, lazy-loader JS) are served by ``StaticFiles``.

Endpoints
---------
=========  ============================  ====================================
Method     Path                          Purpose
=========  ============================  ====================================
GET        ``/``                         Landing page
GET        ``/wiki/{slug}``              Cached or freshly generated article
GET, HEAD  ``/images/{slug}.{ext}``      Generated illustration
GET        ``/api/search``               Search suggestions
GET        ``/api/cache-stats``          Cache directory summary
=========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    synthwiki
    synthwiki clear-cache --max-age-hours 24

Direct invocation::

    python -m synthwiki.api.main
"""

from __future__ import annotations

import argparse
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles

from synthwiki import __version__
from synthwiki.api.models import ImageStatusResponse
from synthwiki.core.config import SynthwikiConfig, config
from synthwiki.core.errors import CollaboratorError, GenerationError, SynthwikiError
from synthwiki.core.file_cache import FileCache
from synthwiki.core.generator import ContentGenerator
from synthwiki.core.image_client import ImageClient
from synthwiki.core.image_pipeline import ImagePipeline
from synthwiki.core.llm_client import LLMClient
from synthwiki.core.models import CacheStats, SearchSuggestion
from synthwiki.core.pipeline import ArticlePipeline
from synthwiki.core.templates import PageRenderer
from synthwiki.core.valid_pages import ValidPageRegistry

logger = logging.getLogger(__name__)

IMAGE_CACHE_CONTROL = "public, max-age=604800"
IMAGE_RETRY_SECONDS = 1.0
MIN_QUERY_LENGTH = 2

router = APIRouter()


# ---------------------------------------------------------------------------
# Application factory and lifecycle.
# ---------------------------------------------------------------------------


def create_app(
    cfg: SynthwikiConfig | None = None,
    *,
    generator: ContentGenerator | None = None,
    image_client: ImageClient | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        cfg: Configuration; defaults to the global
            :data:`~synthwiki.core.config.config`.
        generator: Language-model collaborator.  When omitted, one backed by
            an :class:`LLMClient` is created and closed with the app.
        image_client: Image-model collaborator.  When omitted, an
            :class:`ImageClient` is created and closed with the app.

    Returns:
        The configured application.
    """
    cfg = cfg or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create the services on startup, drain and close them on shutdown."""
        # --- Startup -------------------------------------------------------
        llm = None
        content = generator
        if content is None:
            llm = LLMClient(cfg)
            content = ContentGenerator(llm, fast_model=cfg.llm_fast_model)
        images_client = image_client or ImageClient(cfg)

        cache = FileCache(cfg.cache_dir)
        renderer = PageRenderer(cfg.templates_dir)
        app.state.cache = cache
        app.state.registry = ValidPageRegistry(cfg.valid_pages_file)
        app.state.renderer = renderer
        app.state.generator = content
        app.state.images = ImagePipeline(
            cache,
            content,
            images_client,
            image_cache_hours=cfg.image_cache_hours,
            output_quality=cfg.image_output_quality,
        )
        app.state.pipeline = ArticlePipeline(
            cache,
            app.state.registry,
            content,
            app.state.images,
            renderer,
            page_cache_hours=cfg.page_cache_hours,
        )

        stats = cache.stats()
        logger.info(
            "Cache ready at %s: %d files (%s MB), %d valid pages",
            cache.cache_dir,
            stats.file_count,
            stats.total_size_mb,
            len(app.state.registry),
        )

        yield  # Application runs here.

        # --- Shutdown ------------------------------------------------------
        await app.state.images.drain()
        if llm is not None:
            await llm.aclose()
        if image_client is None:
            await images_client.aclose()
        logger.info("Synthwiki services shut down.")

    app = FastAPI(
        title="Synthwiki",
        description="An encyclopedia written on demand by a language model.",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)
    app.mount("/static", StaticFiles(directory=str(cfg.static_dir)), name="static")
    return app


# ---------------------------------------------------------------------------
# Pages.
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
async def index(request: Request) -> HTMLResponse:
    """Serve the landing page."""
    return HTMLResponse(request.app.state.renderer.home_page())


@router.get("/wiki/{slug}", response_class=HTMLResponse)
async def wiki_page(slug: str, request: Request) -> Response:
    """Serve an article, generating it on first request.

    Returns:
        - 301 to the normalised or canonical slug
        - 200 with the cached page
        - 404 when the topic was rejected
        - 200 streamed while the article is written
        - 500 when the topic could not be validated
    """
    state = request.app.state
    renderer: PageRenderer = state.renderer
    try:
        outcome = await state.pipeline.resolve(slug)
    except SynthwikiError as exc:
        logger.error("Error resolving page %s: %s", slug, exc)
        return HTMLResponse(renderer.error_page(), status_code=500)

    if outcome.kind == "redirect":
        return RedirectResponse(outcome.location, status_code=301)
    if outcome.kind == "cached":
        return HTMLResponse(outcome.html)
    if outcome.kind == "not_found":
        return HTMLResponse(renderer.not_found_page(outcome.title), status_code=404)

    pipeline: ArticlePipeline = state.pipeline

    async def stream() -> AsyncIterator[str]:
        yield renderer.stream_head(outcome.title)
        try:
            article = await pipeline.generate(outcome.title)
            fragment = renderer.stream_body(article.html)
        except GenerationError as exc:
            logger.error("Error generating page %s: %s", outcome.slug, exc, exc_info=exc.__cause__)
            fragment = renderer.stream_error()
        except Exception:
            # The status line is already sent, so the document is closed normally.
            logger.exception("Unexpected error generating page %s", outcome.slug)
            fragment = renderer.stream_error()
        yield fragment
        yield renderer.stream_foot()

    return StreamingResponse(stream(), media_type="text/html; charset=utf-8")


# ---------------------------------------------------------------------------
# Images.
# ---------------------------------------------------------------------------


@router.api_route("/images/{filename}", methods=["GET", "HEAD"])
async def image(filename: str, request: Request, aspect: str = "4:3") -> Response:
    """Serve a generated illustration.

    The browser probes with ``HEAD`` first; a 202 answer means the prompt
    for the image is still being written and the probe should be repeated.
    """
    slug, dot, extension = filename.rpartition(".")
    if not dot or not slug:
        return _image_status(404, "unsupported", f"Unsupported image path: {filename}")

    try:
        result = await request.app.state.images.fetch_image(slug, extension, aspect)
    except SynthwikiError as exc:
        logger.error("Error generating image %s: %s", filename, exc)
        return _image_status(500, "error", "Failed to generate image")

    if result.status == "ready":
        return Response(
            content=result.data,
            media_type=result.media_type,
            headers={"Cache-Control": IMAGE_CACHE_CONTROL},
        )
    if result.status == "pending":
        return _image_status(
            202,
            "generating",
            "Image prompt is being prepared",
            retry_after=IMAGE_RETRY_SECONDS,
        )
    if result.status == "unsupported":
        return _image_status(404, "unsupported", f"Unsupported image format: {extension}")
    return _image_status(404, "missing", f"No image registered for {slug}")


def _image_status(
    status_code: int, status: str, message: str, retry_after: float | None = None
) -> JSONResponse:
    body = ImageStatusResponse(status=status, message=message, retry_after=retry_after)
    headers = {"Retry-After": str(int(retry_after))} if retry_after else None
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


# ---------------------------------------------------------------------------
# JSON API.
# ---------------------------------------------------------------------------


@router.get("/api/search", response_model=list[SearchSuggestion])
async def search(request: Request, q: str = "") -> list[SearchSuggestion]:
    """Suggest article titles for a search query.

    Suggested titles are registered as valid pages so that following a
    suggestion skips topic validation.

    Raises:
        HTTPException: 500 if the language model could not be reached.
    """
    query = q.strip()
    if len(query) < MIN_QUERY_LENGTH:
        return []

    try:
        suggestions = await request.app.state.generator.search_suggestions(query)
    except CollaboratorError as exc:
        logger.error("Search suggestion error for %r: %s", query, exc)
        raise HTTPException(status_code=500, detail="Failed to generate suggestions") from exc

    request.app.state.registry.add_suggestions_to_valid(suggestions)
    return suggestions


@router.get("/api/cache-stats", response_model=CacheStats)
async def cache_stats(request: Request) -> CacheStats:
    """Summarise the cache directory."""
    return request.app.state.cache.stats()


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Launch the uvicorn ASGI server, or run a maintenance command.

    Reads host and port from :data:`~synthwiki.core.config.config` (which
    loads from ``SYNTHWIKI_SERVER_HOST`` and ``SYNTHWIKI_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``synthwiki`` console script in
    ``pyproject.toml``.
    """
    parser = argparse.ArgumentParser(
        prog="synthwiki",
        description="Serve an encyclopedia written on demand.",
    )
    subcommands = parser.add_subparsers(dest="command")
    clear = subcommands.add_parser("clear-cache", help="Delete expired cache files and exit")
    clear.add_argument(
        "--max-age-hours",
        type=float,
        default=config.page_cache_hours,
        help="Remove files older than this many hours (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "clear-cache":
        removed = FileCache(config.cache_dir).clear_expired(
            args.max_age_hours, keep=[config.valid_pages_file]
        )
        print(f"Removed {removed} expired cache file(s) from {config.cache_dir}")
        return

    import uvicorn

    uvicorn.run(
        "synthwiki.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
