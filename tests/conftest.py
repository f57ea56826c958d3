"""Shared pytest fixtures for Synthwiki tests.

No test talks to a real model API: the language model is replaced by
:class:`FakeGenerator` (or a scripted :class:`FakeLLM` for generator tests)
and the image model by :class:`FakeImageClient`.
"""

from __future__ import annotations

import asyncio
import io
import shutil
import tempfile
from collections import Counter
from pathlib import Path
from typing import Generator

import pytest
from PIL import Image

from synthwiki.core.config import SynthwikiConfig
from synthwiki.core.errors import LLMError
from synthwiki.core.file_cache import FileCache
from synthwiki.core.models import (
    ArticleOutline,
    InfoboxData,
    OutlineSection,
    SearchSuggestion,
)
from synthwiki.core.slugs import canonical_slug
from synthwiki.core.templates import PageRenderer

# ---------------------------------------------------------------------------
# Canned article content.
# ---------------------------------------------------------------------------

OPENING = (
    "**Quantum Computing** is a type of computation that uses **Qubits**. "
    "It relies on [[Quantum entanglement|entanglement]].\n\n"
    "[[File:Quantum computer.jpg|thumb|4:3|An early quantum computer]]"
)

SECTIONS = {
    "History": (
        "## History\n\n"
        "Research began with **Richard Feynman** in 1981.\n\n"
        "### Early proposals\n\n"
        "Several proposals followed."
    ),
    "Applications": "Quantum computers are studied for **Cryptography**.",
}


def make_image_bytes(fmt: str = "WEBP", size: tuple[int, int] = (8, 6)) -> bytes:
    """Encode a tiny solid-colour image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, "navy").save(buffer, format=fmt)
    return buffer.getvalue()


class FakeLLM:
    """Chat client returning scripted responses in order."""

    def __init__(self, *responses: str) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def complete(self, system: str, user: str, **kwargs) -> str:
        self.calls.append({"system": system, "user": user, **kwargs})
        if not self.responses:
            raise LLMError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeGenerator:
    """Stand-in for :class:`~synthwiki.core.generator.ContentGenerator`.

    Attributes:
        calls: Number of calls per method.
        failures: Method name -> exception raised by that method.
        valid: Verdict returned by ``validate_topic``.
        canonical: Title returned by ``canonical_title`` (``None`` echoes).
        delay: Seconds every method sleeps before answering.
        section_delays: Section title -> delay overriding ``delay``.
        active, peak_active: Calls in progress now, and at most at once.
    """

    def __init__(self) -> None:
        self.calls: Counter = Counter()
        self.failures: dict[str, Exception] = {}
        self.valid = True
        self.canonical: str | None = None
        self.delay = 0.0
        self.section_delays: dict[str, float] = {}
        self.active = 0
        self.peak_active = 0
        self.outline_result = ArticleOutline(
            summary="Computation based on quantum mechanics.",
            sections=[
                OutlineSection(title="History", description="Origins of the field."),
                OutlineSection(title="Applications", description="What it is used for."),
            ],
        )
        self.infobox_result = InfoboxData(
            fields={"name": "Quantum Computing", "field": "Computer science"},
            image="Quantum processor.jpg",
        )
        self.prompts: dict[str, str] | None = None

    async def _enter(self, method: str, delay: float | None = None) -> None:
        self.calls[method] += 1
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            delay = self.delay if delay is None else delay
            if delay:
                await asyncio.sleep(delay)
        finally:
            self.active -= 1
        if method in self.failures:
            raise self.failures[method]

    async def search_suggestions(self, query: str) -> list[SearchSuggestion]:
        await self._enter("search_suggestions")
        titles = [query.title(), f"{query.title()} History"]
        return [SearchSuggestion(title=title, slug=canonical_slug(title)) for title in titles]

    async def validate_topic(self, title: str) -> bool:
        await self._enter("validate_topic")
        return self.valid

    async def canonical_title(self, title: str) -> str:
        await self._enter("canonical_title")
        return self.canonical or title

    async def outline(self, title: str) -> ArticleOutline:
        await self._enter("outline")
        return self.outline_result

    async def infobox(self, title: str) -> InfoboxData:
        await self._enter("infobox")
        return self.infobox_result

    async def opening(self, title: str, outline: ArticleOutline) -> str:
        await self._enter("opening")
        return OPENING

    async def section(self, title: str, outline: ArticleOutline, section: OutlineSection) -> str:
        await self._enter("section", self.section_delays.get(section.title))
        return SECTIONS.get(section.title, f"Text about {section.title}.")

    async def image_prompts(self, title: str, images: list) -> dict[str, str]:
        await self._enter("image_prompts")
        if self.prompts is not None:
            return self.prompts
        return {ref.slug: f"Photograph of {ref.slug.replace('_', ' ')}" for ref, _context in images}


class FakeImageClient:
    """Stand-in for :class:`~synthwiki.core.image_client.ImageClient`."""

    def __init__(self, output_format: str = "webp") -> None:
        self.output_format = output_format
        self.calls: list[tuple[str, str]] = []
        self.delay = 0.0
        self.failure: Exception | None = None

    async def generate(self, prompt: str, aspect_ratio: str = "4:3") -> bytes:
        self.calls.append((prompt, aspect_ratio))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failure is not None:
            raise self.failure
        return make_image_bytes("WEBP" if self.output_format == "webp" else "PNG")

    async def aclose(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Fixtures.
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> SynthwikiConfig:
    """Create a test configuration rooted in a temporary directory.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        SynthwikiConfig instance for testing
    """
    return SynthwikiConfig(
        _env_file=None,
        cache_dir=temp_dir / "cache",
        llm_api_key="test-key",
        image_api_token="test-token",
        image_poll_interval=0.01,
    )


@pytest.fixture
def cache(test_config: SynthwikiConfig) -> FileCache:
    return FileCache(test_config.cache_dir)


@pytest.fixture
def renderer(test_config: SynthwikiConfig) -> PageRenderer:
    return PageRenderer(test_config.templates_dir)


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def fake_image_client() -> FakeImageClient:
    return FakeImageClient()
