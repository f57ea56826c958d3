"""Pydantic models for the records that flow through the Synthwiki core.

Models
------
OutlineSection, ArticleOutline
    The plan that drives section generation and TOC numbering.
InfoboxData
    Free-form field/value pairs plus an optional image filename.
ImageReference
    One illustration discovered in generated content.
ImagePromptRecord
    Cached prompt state for an image slug (``generating`` or ``ready``).
TocEntry, AssembledArticle
    Output of article assembly.
SearchSuggestion
    One autocomplete suggestion.
CachedBinary, CacheStats
    Values returned by :class:`~synthwiki.core.file_cache.FileCache`.
ImageResult, PageOutcome
    Outcomes handed from the pipelines to the HTTP layer.
"""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class OutlineSection(BaseModel):
    """A single planned section of an article."""

    title: str
    description: str = ""

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip(cls, value):
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else str(value)


class ArticleOutline(BaseModel):
    """Structured plan for an article.

    Attributes:
        summary: One or two sentences describing the topic.
        sections: Ordered sections; blank titles are dropped and at least
            one section must remain.
    """

    summary: str = ""
    sections: list[OutlineSection] = Field(..., min_length=1)

    @field_validator("sections", mode="before")
    @classmethod
    def _drop_blank_sections(cls, value):
        if not isinstance(value, list):
            return value
        kept = []
        for item in value:
            if isinstance(item, OutlineSection):
                if item.title:
                    kept.append(item)
                continue
            if isinstance(item, str):
                item = {"title": item}
            if isinstance(item, dict) and str(item.get("title") or "").strip():
                kept.append(item)
        return kept


class InfoboxData(BaseModel):
    """Infobox field/value pairs for an article.

    The schema is topic dependent, so fields are kept as a plain mapping.
    ``image`` holds a filename such as ``"Eiffel Tower.jpg"`` when the model
    suggested an illustration for the infobox.
    """

    fields: dict[str, str] = Field(default_factory=dict)
    image: str | None = None

    @classmethod
    def from_mapping(cls, data: dict) -> InfoboxData:
        """Build infobox data from a decoded JSON object.

        Non-string scalar values are stringified, lists are joined with
        commas and nested objects are dropped.
        """
        fields: dict[str, str] = {}
        image = None
        for key, value in data.items():
            if value is None or isinstance(value, dict):
                continue
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value if v is not None)
            text = str(value).strip()
            if not text:
                continue
            if key.lower() == "image":
                image = text
                continue
            fields[str(key)] = text
        return cls(fields=fields, image=image)


ImageType = Literal["figure", "standalone", "infobox"]


class ImageReference(BaseModel):
    """An image placeholder discovered in generated content."""

    filename: str
    slug: str
    extension: str = "webp"
    alt: str = ""
    caption: str = ""
    size: str = "thumb"
    aspect_ratio: str = "4:3"
    type: ImageType = "figure"
    section_title: str = ""
    context: str = ""

    @property
    def src(self) -> str:
        """URL the lazy loader requests for this image."""
        return f"/images/{self.slug}.{self.extension}?aspect={self.aspect_ratio}"


class ImagePromptRecord(BaseModel):
    """Prompt state for one image slug.

    A record is created in the *generating* state when an article that
    references the image is assembled, and moves to *ready* once a prompt
    has been stored.  It never moves back.
    """

    image_slug: str
    prompt: str | None = None
    article_title: str = ""
    caption: str = ""
    section_title: str = ""
    context: str = ""
    ready: bool = False
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    def mark_ready(self, prompt: str) -> ImagePromptRecord:
        """Return a copy of this record in the ready state."""
        return self.model_copy(update={"prompt": prompt, "ready": True, "updated_at": time.time()})


class TocEntry(BaseModel):
    """A table-of-contents entry with its positional number and anchor id."""

    level: Literal[2, 3]
    number: str
    anchor: str
    title: str


class AssembledArticle(BaseModel):
    """Result of article assembly.

    ``links`` holds the titles of every cross-referenced page and
    ``images`` the deduplicated image references; the caller decides what
    to do with both.
    """

    title: str
    markdown: str
    html: str
    toc: list[TocEntry] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    images: list[ImageReference] = Field(default_factory=list)


class SearchSuggestion(BaseModel):
    """A search autocomplete suggestion."""

    title: str
    slug: str


class CachedBinary(BaseModel):
    """Binary cache entry together with its sidecar metadata."""

    data: bytes
    metadata: dict[str, str] = Field(default_factory=dict)


class CacheStats(BaseModel):
    """Summary of the cache directory contents."""

    file_count: int = 0
    text_files: int = 0
    binary_files: int = 0
    total_size_bytes: int = 0
    total_size_mb: str = "0.00"


class ImageResult(BaseModel):
    """Outcome of an image request.

    ``status`` is one of:

    - ``ready``: ``data`` holds the image bytes in ``media_type``
    - ``pending``: the prompt record exists but is not ready yet
    - ``missing``: no prompt record was ever registered for the slug
    - ``unsupported``: the requested extension is not served
    """

    status: Literal["ready", "pending", "missing", "unsupported"]
    data: bytes = b""
    media_type: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)


class PageOutcome(BaseModel):
    """Result of resolving a ``/wiki/<slug>`` request before any streaming."""

    kind: Literal["cached", "redirect", "not_found", "generate"]
    slug: str
    title: str = ""
    html: str = ""
    location: str = ""
