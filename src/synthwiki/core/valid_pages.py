"""Registry of page slugs known to be acceptable topics.

A slug lands in the registry when a topic passed validation, when it was
returned as a search suggestion, or when generated content linked to it.
Pages in the registry skip the validation call on later requests.

The registry is a set held in memory and mirrored to a single JSON file
containing a list of slugs.  The file is read once at construction and
rewritten in full on every change, before the mutating call returns.
There is no removal operation; once a slug is valid it stays valid.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from synthwiki.core.models import SearchSuggestion
from synthwiki.core.slugs import canonical_slug, normalize_slug

logger = logging.getLogger(__name__)


class ValidPageRegistry:
    """Persistent allow-list of page slugs.

    Args:
        path: JSON file backing the registry.  ``None`` keeps the registry
            in memory only.
    """

    def __init__(self, path: Path | None) -> None:
        self.path = Path(path) if path is not None else None
        self._pages: dict[str, None] = {}
        self._load()

    def __len__(self) -> int:
        return len(self._pages)

    def __contains__(self, slug: object) -> bool:
        return isinstance(slug, str) and self.is_valid_page(slug)

    def is_valid_page(self, slug: str) -> bool:
        """Return whether *slug* (in any casing) is registered."""
        return normalize_slug(slug) in self._pages

    def add_valid_page(self, title: str) -> bool:
        """Register *title* and persist the registry if it changed.

        Returns:
            ``True`` if the slug was not registered before.
        """
        slug = canonical_slug(title)
        if not slug or slug in self._pages:
            return False
        self._pages[slug] = None
        logger.info("Added valid page: %s (%s)", slug, title)
        self._save()
        return True

    def add_titles(self, titles: Iterable[str]) -> int:
        """Register several titles, persisting once.

        Returns:
            Number of newly registered slugs.
        """
        added = 0
        for title in titles:
            slug = canonical_slug(title)
            if slug and slug not in self._pages:
                self._pages[slug] = None
                added += 1
        if added:
            logger.info("Added %d new valid pages", added)
            self._save()
        return added

    def add_suggestions_to_valid(self, suggestions: Iterable[SearchSuggestion]) -> int:
        """Register the titles of search suggestions, persisting once."""
        return self.add_titles(suggestion.title for suggestion in suggestions)

    def all_pages(self) -> list[str]:
        """Return every registered slug in insertion order."""
        return list(self._pages)

    # -- Persistence ---------------------------------------------------------

    def _load(self) -> None:
        if self.path is None:
            return
        if not self.path.exists():
            logger.info("No existing valid pages file at %s, starting fresh", self.path)
            return
        try:
            with open(self.path, encoding="utf-8") as handle:
                pages = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.error("Error loading valid pages from %s: %s", self.path, exc)
            return
        if not isinstance(pages, list):
            logger.error("Ignoring valid pages file %s: expected a JSON list", self.path)
            return

        self._pages = {
            normalize_slug(page): None for page in pages if isinstance(page, str) and page
        }
        self._pages.pop("", None)
        logger.info("Loaded %d valid pages from %s", len(self._pages), self.path)

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as handle:
                json.dump(list(self._pages), handle, indent=2, ensure_ascii=False)
        except OSError as exc:
            logger.error("Error saving valid pages to %s: %s", self.path, exc)
