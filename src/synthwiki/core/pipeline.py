"""Article pipeline: from a requested slug to a cached page.

Request flow
------------
:meth:`ArticlePipeline.resolve` decides what to do with a request before
anything is sent to the client:

==================  ==========================================================
Outcome             When
==================  ==========================================================
``redirect``        the topic is valid but the slug is not in normal form, or
                    the model knows the topic under another title
``cached``          a fresh ``wiki_<slug>`` page is in the cache
``not_found``       the model rejected the topic
``generate``        the topic is valid and has to be written
==================  ==========================================================

:meth:`ArticlePipeline.generate` then writes the article:

1. outline and infobox, concurrently
2. opening and every outline section, concurrently
3. assembly (:meth:`ArticlePipeline.assemble`)
4. registration of the title and its links, page cache write and hand-off
   of the image references to the :class:`ImagePipeline`

Concurrent ``generate`` calls for the same page share one task.
"""

from __future__ import annotations

import asyncio
import logging
import time

from synthwiki.core.errors import GenerationError
from synthwiki.core.file_cache import FileCache
from synthwiki.core.generator import ContentGenerator
from synthwiki.core.image_pipeline import ImagePipeline
from synthwiki.core.markup import (
    build_toc,
    extract_image_references,
    inject_heading_anchors,
    linkify_cross_references,
    make_image_reference,
    markdown_to_html,
    render_image,
    render_toc,
    replace_image_placeholders,
    see_also_section,
    splice_after_first_paragraph,
    strip_leading_heading,
)
from synthwiki.core.model_output import clean_text
from synthwiki.core.models import (
    ArticleOutline,
    AssembledArticle,
    InfoboxData,
    PageOutcome,
)
from synthwiki.core.slugs import canonical_slug, normalize_slug, slug_to_title
from synthwiki.core.templates import PageRenderer
from synthwiki.core.valid_pages import ValidPageRegistry

logger = logging.getLogger(__name__)


def page_key(slug: str) -> str:
    """Cache key of the rendered page for *slug*."""
    return f"wiki_{slug}"


def wiki_path(slug: str) -> str:
    return f"/wiki/{slug}"


class ArticlePipeline:
    """Validates, generates, assembles and caches articles.

    Args:
        cache: Shared file cache.
        registry: Registry of slugs known to be valid topics.
        generator: Language-model collaborator.
        images: Image pipeline receiving discovered image references.
        renderer: HTML renderer.
        page_cache_hours: Lifetime of cached pages.
    """

    def __init__(
        self,
        cache: FileCache,
        registry: ValidPageRegistry,
        generator: ContentGenerator,
        images: ImagePipeline,
        renderer: PageRenderer,
        page_cache_hours: float = 24,
    ) -> None:
        self._cache = cache
        self._registry = registry
        self._generator = generator
        self._images = images
        self._renderer = renderer
        self._page_cache_hours = page_cache_hours
        self._in_flight: dict[str, asyncio.Task] = {}

    # -- Resolution ----------------------------------------------------------

    async def resolve(self, slug: str) -> PageOutcome:
        """Decide how to answer a request for ``/wiki/<slug>``.

        Lookups use the normalized slug.  A request in another spelling is
        redirected only once the topic is known to be valid, so a rejected
        topic answers 404 whatever its casing.

        Raises:
            CollaboratorError: If topic validation could not be performed.
        """
        normalized = normalize_slug(slug)
        if not normalized:
            return PageOutcome(kind="not_found", slug=slug, title=slug.replace("_", " ").strip())

        title = slug_to_title(normalized)
        key = page_key(normalized)
        if self._cache.is_cached(key, self._page_cache_hours):
            cached = self._cache.get(key)
            if isinstance(cached, str):
                if normalized != slug:
                    return self._redirect(normalized)
                logger.info("Serving cached page: %s", slug)
                return PageOutcome(kind="cached", slug=slug, title=title, html=cached)

        if self._registry.is_valid_page(normalized):
            if normalized != slug:
                return self._redirect(normalized)
            return PageOutcome(kind="generate", slug=slug, title=title)

        if not await self._generator.validate_topic(title):
            return PageOutcome(kind="not_found", slug=normalized, title=title)

        proper_title = await self._generator.canonical_title(title)
        if not canonical_slug(proper_title):
            proper_title = title
        proper_slug = canonical_slug(proper_title)
        self._registry.add_valid_page(proper_title)
        if proper_slug != slug:
            logger.info("Redirecting '%s' to canonical page '%s'", slug, proper_slug)
            return self._redirect(proper_slug)
        return PageOutcome(kind="generate", slug=slug, title=title)

    def _redirect(self, slug: str) -> PageOutcome:
        return PageOutcome(
            kind="redirect", slug=slug, title=slug_to_title(slug), location=wiki_path(slug)
        )

    # -- Generation ----------------------------------------------------------

    async def generate(self, title: str) -> AssembledArticle:
        """Write, assemble and cache the article for *title*.

        A call made while another one for the same page is running waits
        for that one instead of starting a second generation.

        Raises:
            GenerationError: If any part of the article could not be written.
        """
        key = page_key(canonical_slug(title))
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._generate(title, key))
            self._in_flight[key] = task
            task.add_done_callback(lambda _task: self._in_flight.pop(key, None))
        else:
            logger.info("Joining in-flight generation of '%s'", title)
        return await asyncio.shield(task)

    async def _generate(self, title: str, key: str) -> AssembledArticle:
        started = time.monotonic()
        logger.info("Generating article: %s", title)
        try:
            outline, infobox = await asyncio.gather(
                self._generator.outline(title),
                self._generator.infobox(title),
            )
            planned = time.monotonic()
            bodies = await asyncio.gather(
                self._generator.opening(title, outline),
                *(self._generator.section(title, outline, section) for section in outline.sections),
            )
            written = time.monotonic()
            article = self.assemble(title, outline, infobox, bodies[0], list(bodies[1:]))
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"Failed to generate '{title}': {exc}") from exc

        self._persist(article, key)
        logger.info(
            "Generated '%s' in %.2fs (plan %.2fs, write %.2fs, %d sections, %d links, %d images)",
            title,
            time.monotonic() - started,
            planned - started,
            written - planned,
            len(outline.sections),
            len(article.links),
            len(article.images),
        )
        return article

    def _persist(self, article: AssembledArticle, key: str) -> None:
        added = self._registry.add_titles([article.title, *article.links])
        logger.debug("Registered %d new valid page(s) from '%s'", added, article.title)
        self._cache.set(key, self._renderer.article_page(article.title, article.html))
        if article.images:
            self._images.register_pending(article.title, article.images)
            self._images.schedule_prompts(article.title, article.images)

    # -- Assembly ------------------------------------------------------------

    def assemble(
        self,
        title: str,
        outline: ArticleOutline,
        infobox: InfoboxData,
        opening: str,
        sections: list[str],
    ) -> AssembledArticle:
        """Combine generated parts into the article body.

        Args:
            title: Article title.
            outline: The plan the sections were written from.
            infobox: Infobox fields.
            opening: Lead paragraphs (Markdown).
            sections: Section bodies in outline order (Markdown, no headings).

        Returns:
            The assembled article.  ``html`` is the body placed inside the
            page layout, with the infobox first and the table of contents
            after the first paragraph.
        """
        parts = [strip_leading_heading(clean_text(opening), title)]
        for section, body in zip(outline.sections, sections):
            body = strip_leading_heading(clean_text(body), section.title)
            parts.append(f"## {section.title}\n\n{body}".rstrip())
        text = "\n\n".join(part for part in parts if part)

        text, links = linkify_cross_references(text, title)
        text = f"{text}\n\n{see_also_section(links)}"

        images = extract_image_references(text, default_section=title)
        infobox_image = None
        if infobox.image:
            infobox_image = make_image_reference(
                infobox.image,
                params=[title],
                image_type="infobox",
                section_title=title,
                context=outline.summary,
            )
            if infobox_image is not None:
                images = [infobox_image] + [ref for ref in images if ref.slug != infobox_image.slug]

        text = replace_image_placeholders(text)
        toc = build_toc(text)
        body = inject_heading_anchors(markdown_to_html(text), toc)
        body = splice_after_first_paragraph(body, render_toc(toc))
        infobox_html = self._renderer.infobox(
            title, infobox, render_image(infobox_image) if infobox_image else ""
        )

        return AssembledArticle(
            title=title,
            markdown=text,
            html=infobox_html + body,
            toc=toc,
            links=links,
            images=images,
        )
