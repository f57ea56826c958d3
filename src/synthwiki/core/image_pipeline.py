"""Two-phase image pipeline.

Phase A (prompt preparation) runs when an article is assembled:

1. :meth:`ImagePipeline.register_pending` writes a *generating* prompt
   record for every image reference of the article.
2. :meth:`ImagePipeline.schedule_prompts` starts a background task running
   :meth:`ImagePipeline.prepare_prompts`, which asks the language model for
   all prompts in one request and marks each record *ready*.

Phase B (image fetch) runs when the browser requests
``/images/<slug>.<ext>``.  :meth:`ImagePipeline.fetch_image` serves the
cached binary, reports that the prompt is still pending or missing, or
generates the image from the stored prompt.

Cache keys
----------
==========================  ============================================
Key                         Content
==========================  ============================================
``img_prompt_<slug>``       :class:`ImagePromptRecord` (text entry)
``image_<slug>_<ext>``      image bytes plus metadata (binary entry)
==========================  ============================================
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from pydantic import ValidationError

from synthwiki.core.file_cache import FileCache
from synthwiki.core.generator import ContentGenerator, fallback_image_prompt
from synthwiki.core.image_client import (
    IMAGE_FORMATS,
    SUPPORTED_ASPECT_RATIOS,
    ImageClient,
    convert_image,
)
from synthwiki.core.models import ImagePromptRecord, ImageReference, ImageResult
from synthwiki.core.slugs import normalize_slug, slug_to_title

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = "4:3"
CONTEXT_SNIPPET_CHARS = 200


def prompt_key(slug: str) -> str:
    """Cache key of the prompt record for an image slug."""
    return f"img_prompt_{slug}"


def image_key(slug: str, extension: str) -> str:
    """Cache key of the generated image bytes."""
    return f"image_{slug}_{extension}"


def build_image_context(record: ImagePromptRecord | None, slug: str = "") -> str:
    """Describe where an image appears, for prompt writing.

    Args:
        record: The image's prompt record, if any.
        slug: Image slug, used when there is no record.

    Returns:
        A sentence-like summary of article, section, caption and the
        surrounding text.
    """
    if record is None:
        return f"Image for {slug.replace('_', ' ')}"

    parts = []
    if record.article_title:
        parts.append(f'Encyclopedia article about "{record.article_title}"')
    if record.section_title and record.section_title != record.article_title:
        parts.append(f'Section: "{record.section_title}"')
    if record.caption:
        parts.append(f'Caption: "{record.caption}"')
    if record.context:
        snippet = record.context[:CONTEXT_SNIPPET_CHARS]
        if len(record.context) > CONTEXT_SNIPPET_CHARS:
            snippet += "..."
        parts.append(f"Context: {snippet}")
    return ". ".join(parts) or f"Image for {record.image_slug.replace('_', ' ')}"


class ImagePipeline:
    """Prompt preparation and on-demand image generation.

    Args:
        cache: Shared file cache.
        generator: Language-model collaborator, used for prompts.
        image_client: Image-model collaborator.
        image_cache_hours: Lifetime of prompt records and image bytes.
        output_quality: Quality used when re-encoding images.
    """

    def __init__(
        self,
        cache: FileCache,
        generator: ContentGenerator,
        image_client: ImageClient,
        image_cache_hours: float = 168,
        output_quality: int = 80,
    ) -> None:
        self._cache = cache
        self._generator = generator
        self._image_client = image_client
        self._image_cache_hours = image_cache_hours
        self._output_quality = output_quality
        self._tasks: set[asyncio.Task] = set()
        self._in_flight: dict[str, asyncio.Task] = {}

    # -- Prompt records ------------------------------------------------------

    def get_record(self, slug: str) -> ImagePromptRecord | None:
        """Return the unexpired prompt record for *slug*, if any."""
        key = prompt_key(slug)
        if not self._cache.is_cached(key, self._image_cache_hours):
            return None
        content = self._cache.get(key)
        if content is None:
            return None
        try:
            return ImagePromptRecord.model_validate(content)
        except ValidationError as exc:
            logger.warning("Ignoring malformed prompt record %s: %s", key, exc.error_count())
            return None

    def _save_record(self, record: ImagePromptRecord) -> bool:
        return self._cache.set(prompt_key(record.image_slug), record.model_dump())

    def register_pending(self, title: str, refs: list[ImageReference]) -> int:
        """Write a *generating* record for each reference without a ready one.

        Returns:
            Number of records written.
        """
        written = 0
        for ref in refs:
            existing = self.get_record(ref.slug)
            if existing is not None and existing.ready:
                continue
            record = ImagePromptRecord(
                image_slug=ref.slug,
                article_title=title,
                caption=ref.caption,
                section_title=ref.section_title,
                context=ref.context,
            )
            if self._save_record(record):
                written += 1
        logger.info("Registered %d pending image prompt(s) for '%s'", written, title)
        return written

    async def prepare_prompts(self, title: str, refs: list[ImageReference]) -> dict[str, str]:
        """Write a ready prompt record for every reference still pending.

        One batched request asks for all prompts.  References the model
        skips get a prompt derived from their caption; if the request fails
        altogether every reference gets the fallback prompt for the article.

        Returns:
            Mapping of image slug to the prompt that was stored.
        """
        pending: list[tuple[ImageReference, ImagePromptRecord]] = []
        for ref in refs:
            record = self.get_record(ref.slug)
            if record is None:
                record = ImagePromptRecord(
                    image_slug=ref.slug,
                    article_title=title,
                    caption=ref.caption,
                    section_title=ref.section_title,
                    context=ref.context,
                )
            if not record.ready:
                pending.append((ref, record))
        if not pending:
            return {}

        started = time.monotonic()
        try:
            prompts = await self._generator.image_prompts(
                title, [(ref, build_image_context(record)) for ref, record in pending]
            )
            fallback = None
        except Exception as exc:
            logger.warning("Batched image prompt request for '%s' failed: %s", title, exc)
            prompts = {}
            fallback = fallback_image_prompt(title)

        stored: dict[str, str] = {}
        for ref, record in pending:
            prompt = prompts.get(ref.slug)
            if not prompt:
                prompt = fallback or fallback_image_prompt(
                    title, ref.caption or slug_to_title(ref.slug)
                )
            self._save_record(record.mark_ready(prompt))
            stored[ref.slug] = prompt

        logger.info(
            "Prepared %d image prompt(s) for '%s' in %.2fs (%d from model)",
            len(stored),
            title,
            time.monotonic() - started,
            sum(1 for slug in stored if slug in prompts),
        )
        return stored

    def schedule_prompts(self, title: str, refs: list[ImageReference]) -> asyncio.Task | None:
        """Run :meth:`prepare_prompts` in a tracked background task."""
        if not refs:
            return None
        task = asyncio.create_task(self.prepare_prompts(title, list(refs)))
        self._tasks.add(task)
        task.add_done_callback(self._task_finished)
        return task

    def _task_finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Image prompt preparation failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for every scheduled prompt task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- Image fetch ---------------------------------------------------------

    async def fetch_image(
        self, slug: str, extension: str, aspect_ratio: str = DEFAULT_ASPECT_RATIO
    ) -> ImageResult:
        """Serve, or generate, the image for *slug*.

        Concurrent requests for the same image share one generation.

        Raises:
            ImageGenerationError: If the image model or the download fails.
        """
        extension = extension.lower()
        if extension not in IMAGE_FORMATS:
            return ImageResult(status="unsupported")
        slug = normalize_slug(slug)
        if aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
            aspect_ratio = DEFAULT_ASPECT_RATIO

        key = image_key(slug, extension)
        media_type = IMAGE_FORMATS[extension][1]
        if self._cache.is_cached(key, self._image_cache_hours, binary=True):
            entry = self._cache.get(key, binary=True)
            if entry is not None:
                logger.debug("Serving cached image %s", key)
                return ImageResult(
                    status="ready", data=entry.data, media_type=media_type, metadata=entry.metadata
                )

        record = self.get_record(slug)
        if record is None:
            logger.warning("No prompt record for image %s", slug)
            return ImageResult(status="missing")
        if not record.ready or not record.prompt:
            return ImageResult(status="pending")

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._generate(record, extension, aspect_ratio))
            self._in_flight[key] = task
            task.add_done_callback(lambda _task: self._in_flight.pop(key, None))
        return await asyncio.shield(task)

    async def _generate(
        self, record: ImagePromptRecord, extension: str, aspect_ratio: str
    ) -> ImageResult:
        data = await self._image_client.generate(record.prompt, aspect_ratio)
        provider_format = IMAGE_FORMATS.get(self._image_client.output_format, ("", ""))[0]
        if IMAGE_FORMATS[extension][0] != provider_format:
            data = convert_image(data, extension, self._output_quality)

        metadata = {
            "filename": f"{record.image_slug}.{extension}",
            "title": slug_to_title(record.image_slug),
            "format": extension,
            "aspect_ratio": aspect_ratio,
            "prompt": record.prompt,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        self._cache.set(image_key(record.image_slug, extension), data, metadata, binary=True)
        return ImageResult(
            status="ready", data=data, media_type=IMAGE_FORMATS[extension][1], metadata=metadata
        )
