"""HTML rendering for Synthwiki pages.

All pages share ``_head.html`` and ``_foot.html``.  A generated article is
delivered in two ways:

- **streamed**: :meth:`PageRenderer.stream_head` is sent as soon as
  generation starts (document shell plus loading indicator), then
  :meth:`PageRenderer.stream_body` (the article inside a ``<template>``
  element and a script that swaps it in) or
  :meth:`PageRenderer.stream_error`, then :meth:`PageRenderer.stream_foot`.
- **complete**: :meth:`PageRenderer.article_page`, the document written to
  the cache and served verbatim on later requests.

Templates are rendered with Jinja2 and HTML autoescaping; pre-rendered
article HTML is passed through with ``|safe``.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from synthwiki.core.models import InfoboxData

SITE_NAME = "Synthwiki"

GENERATION_ERROR_MESSAGE = "Sorry, there was an error generating this page."


def _display_key(key: str) -> str:
    """``first_release`` -> ``First Release``."""
    return " ".join(word[:1].upper() + word[1:] for word in key.replace("_", " ").split())


class PageRenderer:
    """Renders the HTML templates shipped with the package.

    Args:
        templates_dir: Directory containing the ``*.html`` templates.
    """

    def __init__(self, templates_dir: Path) -> None:
        self._env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html"]),
        )
        self._env.filters["display_key"] = _display_key
        self._env.globals["site_name"] = SITE_NAME

    def _render(self, name: str, **context) -> str:
        return self._env.get_template(name).render(**context)

    # -- Complete pages ------------------------------------------------------

    def home_page(self) -> str:
        """Landing page with the search box."""
        return self._render("home.html", page_title=f"{SITE_NAME} - The Generated Encyclopedia")

    def article_page(self, title: str, body_html: str) -> str:
        """Complete article document, as written to the cache."""
        return self._render(
            "article.html",
            page_title=f"{title} - {SITE_NAME}",
            article_title=title,
            body=body_html,
        )

    def error_page(self, message: str = GENERATION_ERROR_MESSAGE) -> str:
        """Full error document (status 500)."""
        return self._render(
            "message.html",
            page_title=f"Error - {SITE_NAME}",
            heading="Error",
            message=message,
        )

    def not_found_page(self, title: str) -> str:
        """Full document for a rejected topic (status 404)."""
        return self._render(
            "message.html",
            page_title=f"Not found - {SITE_NAME}",
            heading=title,
            message=f"{SITE_NAME} does not have an article about “{title}” and will not write one.",
        )

    # -- Streaming fragments -------------------------------------------------

    def stream_head(self, title: str) -> str:
        """Document shell with a loading indicator, sent before generation."""
        return self._render(
            "shell.html",
            page_title=f"{title} - {SITE_NAME}",
            article_title=title,
        )

    def stream_body(self, body_html: str) -> str:
        """Fragment that replaces the loading indicator with the article."""
        return self._render("swap.html", body=body_html)

    def stream_error(self, message: str = GENERATION_ERROR_MESSAGE) -> str:
        """Fragment that replaces the loading indicator with an error notice."""
        return self._render("swap.html", body=None, error=message)

    def stream_foot(self) -> str:
        """Closing markup of a streamed document."""
        return self._render("_foot.html")

    # -- Article parts -------------------------------------------------------

    def infobox(self, title: str, data: InfoboxData, image_html: str = "") -> str:
        """Render the infobox panel; empty string when there is nothing to show."""
        rows = [(key, value) for key, value in data.fields.items() if key.lower() != "name" and value]
        if not rows and not image_html:
            return ""
        return self._render("infobox.html", title=title, rows=rows, image_html=image_html)
