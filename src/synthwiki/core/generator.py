"""Language-model collaborator for Synthwiki.

:class:`ContentGenerator` wraps :class:`~synthwiki.core.llm_client.LLMClient`
with one method per kind of request the pipelines make.  Each method owns
its prompt and turns the raw response into a typed value:

==========================  ==============================  =================
Method                      Returns                         Output kind
==========================  ==============================  =================
``search_suggestions``      ``list[SearchSuggestion]``      lines of text
``validate_topic``          ``bool``                        one word
``canonical_title``         ``str``                         one line
``outline``                 ``ArticleOutline``              JSON object
``infobox``                 ``InfoboxData``                 JSON object
``opening``                 ``str`` (Markdown)              free text
``section``                 ``str`` (Markdown)              free text
``image_prompts``           ``dict[str, str]``              JSON object
==========================  ==============================  =================

JSON responses go through :func:`~synthwiki.core.model_output.decode_json`
which applies one repair pass; output that still does not decode raises
:class:`~synthwiki.core.errors.MalformedModelOutputError`.  Free-text
responses are passed through after cleaning, however degraded.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from synthwiki.core.errors import MalformedModelOutputError
from synthwiki.core.llm_client import LLMClient
from synthwiki.core.model_output import clean_text, decode_json, salvage_string_pairs
from synthwiki.core.models import (
    ArticleOutline,
    ImageReference,
    InfoboxData,
    OutlineSection,
    SearchSuggestion,
)
from synthwiki.core.slugs import canonical_slug

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5

# ---------------------------------------------------------------------------
# System prompts.
# These are constants rather than configuration: they define the house
# style of every generated page.
# ---------------------------------------------------------------------------

_SEARCH_SYSTEM = (
    "You are an encyclopedia search assistant. Given a search query, suggest "
    f"{MAX_SUGGESTIONS} related topics that would make good encyclopedia articles. "
    "Return only topic titles, one per line, with no numbering or formatting. "
    "Include the exact search term if it is a valid topic. Use proper capitalization."
)

_VALIDATE_SYSTEM = (
    "You decide whether a requested title is a plausible, appropriate subject for an "
    "encyclopedia article: a real or well-known fictional person, place, thing, event, "
    "concept or work. Random strings, keyboard mashing, harassment and explicit content "
    "are not. Answer with exactly one word: VALID or INVALID."
)

_CANONICAL_SYSTEM = (
    "You return the proper encyclopedia article title for a topic, with correct spelling "
    "and capitalization, as an encyclopedia would name the article. Return only the title."
)

_OUTLINE_SYSTEM = (
    "You plan encyclopedia articles. Return ONLY a JSON object of the form "
    '{"summary": "...", "sections": [{"title": "...", "description": "..."}]} '
    "with 4 to 7 sections in the order they should appear (for example History, "
    "Description, Applications, Impact). Do not include an introduction or a See also "
    "section. Descriptions are one sentence saying what the section covers."
)

_INFOBOX_SYSTEM = (
    "You write encyclopedia infoboxes. Return ONLY a JSON object of 8 to 15 field/value "
    "pairs relevant to the topic, with snake_case field names and short string values "
    "(dates as readable text, e.g. \"March 15, 1995\"). If a representative illustration "
    'would help, add an "image" field holding a descriptive filename such as '
    '"Eiffel Tower at dusk.jpg".'
)

_PROSE_RULES = (
    "Write in a neutral, encyclopedic tone using flowing paragraphs, never bullet lists. "
    "Use Markdown. Mark the first mention of important related topics in **bold**; they "
    "become links. Use *italics* for titles of works and foreign terms. "
    "Where an illustration would genuinely help, add at most one image placeholder on its "
    "own line in the form [[File:Descriptive name.jpg|thumb|4:3|Caption text]]."
)

_OPENING_SYSTEM = (
    "You write the opening of encyclopedia articles: one or two paragraphs that define the "
    "subject and establish its significance. Do not use headings. The article title must "
    "appear in **bold** in the first sentence. " + _PROSE_RULES
)

_SECTION_SYSTEM = (
    "You write one section of an encyclopedia article. Write 2 to 4 substantial paragraphs. "
    "Do not repeat the section title as a heading; use ### subheadings only when the "
    "material clearly divides. " + _PROSE_RULES
)

_IMAGE_PROMPT_SYSTEM = (
    "You write prompts for an image model that illustrates encyclopedia articles. For each "
    "image you receive, write one prompt of at most 40 words describing documentary, "
    "encyclopedic imagery: neutral, well lit, sharp, uncluttered. Historical subjects are "
    "black and white or painted according to their period. Return ONLY a JSON object "
    "mapping each image id to its prompt."
)


def fallback_image_prompt(subject: str, caption: str = "") -> str:
    """Deterministic prompt used when no model-written prompt is available."""
    subject = subject.strip() or "the subject"
    detail = f" showing {caption.strip().rstrip('.')}" if caption.strip() else ""
    return (
        f"Educational illustration of {subject}{detail}, encyclopedia style, "
        "documentary photography, well-lit, neutral background"
    )


class ContentGenerator:
    """Typed façade over the language model.

    Args:
        llm: The chat-completions client.
        fast_model: Model name for short classification-style requests.
            ``None`` uses the client's default model.
    """

    def __init__(self, llm: LLMClient, fast_model: str | None = None) -> None:
        self._llm = llm
        self._fast_model = fast_model

    async def search_suggestions(self, query: str) -> list[SearchSuggestion]:
        """Suggest up to five article titles for a search query."""
        response = await self._llm.complete(
            _SEARCH_SYSTEM,
            f'Search query: "{query}"',
            model=self._fast_model,
            temperature=0.7,
            max_tokens=200,
        )
        suggestions: list[SearchSuggestion] = []
        seen: set[str] = set()
        for line in clean_text(response).splitlines():
            title = line.strip().lstrip("-*0123456789.) ").strip().strip('"')
            slug = canonical_slug(title)
            if not title or not slug or slug in seen:
                continue
            seen.add(slug)
            suggestions.append(SearchSuggestion(title=title, slug=slug))
            if len(suggestions) == MAX_SUGGESTIONS:
                break
        return suggestions

    async def validate_topic(self, title: str) -> bool:
        """Return whether *title* is an acceptable article subject."""
        response = await self._llm.complete(
            _VALIDATE_SYSTEM,
            f'Requested title: "{title}"',
            model=self._fast_model,
            temperature=0.0,
            max_tokens=10,
        )
        verdict = clean_text(response).strip().strip(".").upper()
        accepted = verdict.startswith("VALID")
        logger.info("Topic validation for %r: %s", title, "accepted" if accepted else "rejected")
        return accepted

    async def canonical_title(self, title: str) -> str:
        """Return the properly spelled article title for *title*."""
        response = await self._llm.complete(
            _CANONICAL_SYSTEM,
            f'Topic: "{title}"',
            model=self._fast_model,
            temperature=0.0,
            max_tokens=40,
        )
        lines = clean_text(response).splitlines()
        proper = lines[0].strip().strip("\"'*#").strip() if lines else ""
        return proper or title

    async def outline(self, title: str) -> ArticleOutline:
        """Plan the sections of an article.

        Raises:
            MalformedModelOutputError: If no usable outline can be decoded.
        """
        response = await self._llm.complete(
            _OUTLINE_SYSTEM,
            f'Plan an encyclopedia article about "{title}".',
            temperature=0.4,
            max_tokens=800,
        )
        data = decode_json(response, expect=dict)
        try:
            return ArticleOutline.model_validate(data)
        except ValidationError as exc:
            raise MalformedModelOutputError(
                f"Outline for {title!r} did not match the expected shape: {exc.error_count()} errors",
                raw=json.dumps(data)[:300],
            ) from exc

    async def infobox(self, title: str) -> InfoboxData:
        """Generate infobox fields for an article.

        Falls back to salvaging flat string pairs when the JSON cannot be
        repaired.

        Raises:
            MalformedModelOutputError: If nothing at all could be recovered.
        """
        response = await self._llm.complete(
            _INFOBOX_SYSTEM,
            f'Generate infobox data for: "{title}"',
            temperature=0.3,
            max_tokens=800,
        )
        try:
            data = decode_json(response, expect=dict)
        except MalformedModelOutputError:
            data = salvage_string_pairs(response)
            if not data:
                raise
            logger.warning("Recovered %d infobox fields for %r from malformed JSON", len(data), title)
        return InfoboxData.from_mapping(data)

    async def opening(self, title: str, outline: ArticleOutline) -> str:
        """Write the lead paragraphs of an article."""
        sections = ", ".join(section.title for section in outline.sections)
        response = await self._llm.complete(
            _OPENING_SYSTEM,
            f'Write the opening of the article "{title}".\n'
            f"Summary: {outline.summary}\n"
            f"Later sections: {sections}",
            temperature=0.6,
            max_tokens=700,
        )
        return clean_text(response)

    async def section(self, title: str, outline: ArticleOutline, section: OutlineSection) -> str:
        """Write the body of one outline section (without its heading)."""
        response = await self._llm.complete(
            _SECTION_SYSTEM,
            f'Article: "{title}"\n'
            f"Article summary: {outline.summary}\n"
            f'Section: "{section.title}"\n'
            f"This section covers: {section.description}",
            temperature=0.6,
            max_tokens=1500,
        )
        return clean_text(response)

    async def image_prompts(
        self, title: str, images: list[tuple[ImageReference, str]]
    ) -> dict[str, str]:
        """Write one short prompt per image in a single request.

        Args:
            title: Article the images belong to.
            images: Pairs of image reference and its context string.

        Returns:
            Mapping of image slug to prompt.  Images the model skipped are
            absent from the mapping.
        """
        request = {ref.slug: context for ref, context in images}
        response = await self._llm.complete(
            _IMAGE_PROMPT_SYSTEM,
            f'Article: "{title}"\nImages (id -> context):\n{json.dumps(request, indent=2)}',
            model=self._fast_model,
            temperature=0.7,
            max_tokens=120 * max(len(images), 1),
        )
        data = decode_json(response, expect=dict)
        return {
            slug: prompt.strip()
            for slug, prompt in data.items()
            if slug in request and isinstance(prompt, str) and prompt.strip()
        }
