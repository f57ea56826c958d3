"""Conversion between human-readable titles and URL slugs.

A slug is used both as the ``/wiki/{slug}`` route path and as part of the
cache key, so one rule must hold everywhere.  Synthwiki uses the lossy
title-case rule: ``slug_to_title`` upper-cases the first letter of every
word and lower-cases the rest.  ``normalize_slug`` maps any slug onto the
form that survives a round trip, which is what the page route redirects to.

    >>> title_to_slug("  Roman   Empire ")
    'Roman_Empire'
    >>> slug_to_title("roman_empire")
    'Roman Empire'
    >>> normalize_slug("roman_EMPIRE")
    'Roman_Empire'
"""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w]")
_MAX_NORMALIZE_PASSES = 4


def title_to_slug(title: str) -> str:
    """Convert a title to a URL-safe slug.

    Whitespace runs become a single underscore and every character that is
    not a word character is dropped.  Case is preserved.
    """
    slug = _WHITESPACE_RE.sub("_", title.strip())
    return _NON_WORD_RE.sub("", slug)


def slug_to_title(slug: str) -> str:
    """Convert a slug back to a title, title-casing each word."""
    words = [word for word in slug.split("_") if word]
    return " ".join(word[0].upper() + word[1:].lower() for word in words)


def normalize_slug(slug: str) -> str:
    """Return the canonical form of *slug*.

    ``normalize_slug(normalize_slug(s)) == normalize_slug(s)`` for every
    input, so redirecting to the normalized slug cannot loop.  A single
    pass is enough for ASCII; some Unicode case mappings (``ß`` -> ``SS``)
    need a second one.
    """
    current = title_to_slug(slug_to_title(slug))
    for _ in range(_MAX_NORMALIZE_PASSES):
        following = title_to_slug(slug_to_title(current))
        if following == current:
            break
        current = following
    return current


def canonical_slug(title: str) -> str:
    """Slug under which *title* is cached and registered."""
    return normalize_slug(title_to_slug(title))
