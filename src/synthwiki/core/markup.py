"""Markup processing for generated articles.

Generated article text is Markdown with two wiki-style extensions:

- **Cross-references**: ``**bold terms**``, ``[[Target]]`` /
  ``[[Target|label]]`` and explicit ``[label](/wiki/...)`` links.  All of
  them are rewritten to ``/wiki/<canonical slug>`` links and their titles
  are collected so the pages can be registered as valid.
- **Image placeholders**: ``[[File:<filename>|<size>|<aspect>|<caption>]]``
  (``Image:`` is accepted too).  Each becomes a lazy-loading ``<img>``
  pointing at ``/images/<slug>.<ext>?aspect=<ratio>``.

The table of contents is built from the ATX ``##`` / ``###`` headings of the
Markdown and numbered positionally (``1``, ``1.1``, ``2``).
:func:`inject_heading_anchors` walks the rendered ``<h2>``/``<h3>`` elements
in the same order so that every TOC link lands on its heading.
"""

from __future__ import annotations

import html
import re
from urllib.parse import unquote

import markdown as markdown_lib

from synthwiki.core.image_client import IMAGE_FORMATS, SUPPORTED_ASPECT_RATIOS
from synthwiki.core.models import ImageReference, TocEntry
from synthwiki.core.slugs import canonical_slug, slug_to_title

MAX_CONTEXT_CHARS = 300
DEFAULT_ASPECT_RATIO = "4:3"
DEFAULT_IMAGE_EXTENSION = "webp"

FIGURE_SIZES = {"thumb", "thumbnail", "frame", "right", "left"}
STANDALONE_SIZES = {"center", "centre", "full", "standalone", "none"}

_PLACEHOLDER_RE = re.compile(r"\[\[\s*(?:File|Image)\s*:\s*([^|\]]+?)\s*((?:\|[^|\]]*)*)\]\]", re.I)
_WIKI_LINK_RE = re.compile(r"\[\[(?!\s*(?:File|Image)\s*:)([^\]|]+)(?:\|([^\]]+))?\]\]", re.I)
_BOLD_RE = re.compile(r"(?<![\[*])\*\*([^*\n]+?)\*\*(?![*]|\]\()")
_MD_WIKI_LINK_RE = re.compile(r"\[([^\]]+)\]\(/wiki/([^)\s]+)\)")
_HEADING_RE = re.compile(r"^(#{2,3})\s+(.+?)\s*#*\s*$")
_HTML_HEADING_RE = re.compile(r"<h([23])(\s[^>]*)?>(.*?)</h\1>", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_ASPECT_RE = re.compile(r"^\d+:\d+$")
_MARKUP_CHARS_RE = re.compile(r"[*`]|\[\[|\]\]")
# A placeholder whose caption may itself contain links.
_PLACEHOLDER_SPAN_RE = re.compile(
    r"\[\[\s*(?:File|Image)\s*:(?:[^\[\]]|\[\[[^\[\]]*\]\]|\[[^\[\]]*\])*\]\]", re.I
)
_PROTECTED_RE = re.compile(r"\x00(\d+)\x00")


# ---------------------------------------------------------------------------
# Cross-references.
# ---------------------------------------------------------------------------


def linkify_cross_references(text: str, own_title: str = "") -> tuple[str, list[str]]:
    """Rewrite cross-references as ``/wiki/`` links and collect their titles.

    Bold mentions of the article's own title stay bold and are not linked.

    Args:
        text: Article Markdown.
        own_title: Title of the article being assembled.

    Returns:
        The rewritten Markdown and the linked titles (explicit links, then wiki links, then
        bold terms), deduplicated by canonical slug.
    """
    own_slug = canonical_slug(own_title) if own_title else ""
    titles: list[str] = []
    seen: set[str] = set()

    def remember(title: str) -> str | None:
        slug = canonical_slug(title)
        if not slug or slug == own_slug:
            return None
        if slug not in seen:
            seen.add(slug)
            titles.append(title.strip())
        return slug

    def wiki_link(match: re.Match) -> str:
        target = match.group(1).strip()
        label = (match.group(2) or target).strip()
        slug = remember(target)
        return f"[{label}](/wiki/{slug})" if slug else label

    def bold(match: re.Match) -> str:
        term = match.group(1).strip()
        slug = remember(term)
        return f"[{term}](/wiki/{slug})" if slug else match.group(0)

    def explicit(match: re.Match) -> str:
        label = match.group(1).strip()
        target = slug_to_title(unquote(match.group(2)).replace("-", "_")) or label
        slug = remember(target)
        return f"[{label}](/wiki/{slug})" if slug else label

    # Placeholder captions are plain text; links there would break the placeholder.
    placeholders: list[str] = []

    def protect(match: re.Match) -> str:
        placeholders.append(_plain_placeholder(match.group(0)))
        return f"\x00{len(placeholders) - 1}\x00"

    text = _PLACEHOLDER_SPAN_RE.sub(protect, text)
    text = _MD_WIKI_LINK_RE.sub(explicit, text)
    text = _WIKI_LINK_RE.sub(wiki_link, text)
    text = _BOLD_RE.sub(bold, text)
    text = _PROTECTED_RE.sub(lambda match: placeholders[int(match.group(1))], text)
    return text, titles


def _plain_placeholder(placeholder: str) -> str:
    """Strip bold markers and links from the parameters of a placeholder."""
    inner = placeholder[2:-2]
    inner = _MD_WIKI_LINK_RE.sub(lambda match: match.group(1), inner)
    inner = _WIKI_LINK_RE.sub(lambda match: (match.group(2) or match.group(1)).strip(), inner)
    return "[[" + inner.replace("**", "") + "]]"


def extract_link_titles(text: str, own_title: str = "") -> list[str]:
    """Return the titles :func:`linkify_cross_references` would link."""
    return linkify_cross_references(text, own_title)[1]


def see_also_section(titles: list[str], limit: int = 8) -> str:
    """Build the fixed ``See also`` section from linked titles."""
    lines = ["## See also", ""]
    for title in titles[:limit]:
        lines.append(f"- [{title}](/wiki/{canonical_slug(title)})")
    if len(lines) == 2:
        lines.append("- [Main Page](/)")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Image placeholders.
# ---------------------------------------------------------------------------


def make_image_reference(
    filename: str,
    *,
    params: list[str] | None = None,
    image_type: str | None = None,
    section_title: str = "",
    context: str = "",
) -> ImageReference | None:
    """Build an :class:`ImageReference` from a filename and placeholder params.

    Returns ``None`` if the filename yields an empty slug.
    """
    filename = filename.strip()
    stem, dot, suffix = filename.rpartition(".")
    if not dot:
        stem, suffix = filename, ""
    extension = suffix.lower() if suffix.lower() in IMAGE_FORMATS else DEFAULT_IMAGE_EXTENSION
    slug = canonical_slug(stem)
    if not slug:
        return None

    size = ""
    aspect = DEFAULT_ASPECT_RATIO
    caption_parts: list[str] = []
    for param in params or []:
        value = param.strip()
        if not value:
            continue
        lowered = value.lower()
        if not size and lowered in FIGURE_SIZES | STANDALONE_SIZES:
            size = lowered
        elif _ASPECT_RE.match(value):
            aspect = value if value in SUPPORTED_ASPECT_RATIOS else DEFAULT_ASPECT_RATIO
        else:
            caption_parts.append(value)
    caption = " | ".join(caption_parts)

    if image_type is None:
        image_type = "standalone" if size in STANDALONE_SIZES else "figure"

    return ImageReference(
        filename=filename,
        slug=slug,
        extension=extension,
        alt=caption or stem.strip(),
        caption=caption,
        size=size or "thumb",
        aspect_ratio=aspect,
        type=image_type,
        section_title=section_title,
        context=context[:MAX_CONTEXT_CHARS],
    )


def extract_image_references(text: str, default_section: str = "") -> list[ImageReference]:
    """Find image placeholders, deduplicated by slug (first occurrence wins).

    The section each placeholder sits in and the surrounding paragraph text
    are recorded on the reference for prompt generation.
    """
    references: list[ImageReference] = []
    seen: set[str] = set()
    section = default_section
    previous_text = ""

    for block in re.split(r"\n\s*\n", text):
        stripped = block.strip()
        heading = _HEADING_RE.match(stripped)
        if heading and "\n" not in stripped:
            section = _plain_text(heading.group(2))
            continue

        block_text = _plain_text(_PLACEHOLDER_RE.sub(" ", stripped))
        for match in _PLACEHOLDER_RE.finditer(stripped):
            ref = make_image_reference(
                match.group(1),
                params=match.group(2).split("|")[1:],
                section_title=section,
                context=block_text or previous_text,
            )
            if ref is None or ref.slug in seen:
                continue
            seen.add(ref.slug)
            references.append(ref)
        if block_text:
            previous_text = block_text

    return references


def render_image(ref: ImageReference) -> str:
    """Render the lazy-loading HTML element for an image reference."""
    img = (
        f'<img class="wiki-image lazy-load" data-src="{html.escape(ref.src)}" '
        f'alt="{html.escape(ref.alt)}" loading="lazy">'
    )
    aspect = html.escape(ref.aspect_ratio)
    if ref.type == "infobox":
        return f'<div class="infobox-image" data-aspect-ratio="{aspect}">{img}</div>'
    if ref.type == "standalone":
        return f'<div class="wiki-image-standalone" data-aspect-ratio="{aspect}">{img}</div>'
    caption = f"<figcaption>{html.escape(ref.caption)}</figcaption>" if ref.caption else ""
    return (
        f'<figure class="wiki-figure {html.escape(ref.size)}" data-aspect-ratio="{aspect}">'
        f"{img}{caption}</figure>"
    )


def replace_image_placeholders(text: str) -> str:
    """Rewrite every image placeholder as an HTML block."""

    def replace(match: re.Match) -> str:
        ref = make_image_reference(match.group(1), params=match.group(2).split("|")[1:])
        if ref is None:
            return ""
        return f"\n\n{render_image(ref)}\n\n"

    return _PLACEHOLDER_RE.sub(replace, text)


# ---------------------------------------------------------------------------
# Headings and table of contents.
# ---------------------------------------------------------------------------


def build_toc(text: str) -> list[TocEntry]:
    """Number the ``##`` and ``###`` headings of *text* positionally.

    A ``###`` heading that appears before any ``##`` heading is treated as
    top level.  Headings inside fenced code blocks are ignored.
    """
    entries: list[TocEntry] = []
    major = 0
    minor = 0
    in_fence = False

    for line in text.splitlines():
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(line)
        if not match:
            continue
        title = _plain_text(match.group(2))
        if match.group(1) == "###" and major:
            minor += 1
            number = f"{major}.{minor}"
            entries.append(TocEntry(level=3, number=number, anchor=f"section-{major}-{minor}", title=title))
        else:
            major += 1
            minor = 0
            entries.append(TocEntry(level=2, number=str(major), anchor=f"section-{major}", title=title))

    return entries


def render_toc(entries: list[TocEntry]) -> str:
    """Render the table of contents as a nested list."""
    if not entries:
        return ""

    parts = ['<div id="toc" class="toc">', '<div class="toc-title">Contents</div>', "<ul>"]
    open_sublist = False
    for index, entry in enumerate(entries):
        link = (
            f'<a href="#{entry.anchor}"><span class="tocnumber">{entry.number}</span> '
            f'<span class="toctext">{html.escape(entry.title)}</span></a>'
        )
        if entry.level == 2:
            if open_sublist:
                parts.append("</ul></li>")
                open_sublist = False
            elif index:
                parts.append("</li>")
            parts.append(f'<li class="toclevel-1">{link}')
        else:
            if not open_sublist:
                parts.append("<ul>")
                open_sublist = True
            parts.append(f'<li class="toclevel-2">{link}</li>')
    parts.append("</ul></li>" if open_sublist else "</li>")
    parts.append("</ul>")
    parts.append("</div>")
    return "".join(parts)


def inject_heading_anchors(rendered: str, entries: list[TocEntry]) -> str:
    """Give rendered ``<h2>``/``<h3>`` headings the ids of their TOC entries.

    Headings are matched to entries in document order.  A heading whose
    level or text does not match the next entry keeps no id and does not
    consume the entry.
    """
    pending = list(entries)

    def assign(match: re.Match) -> str:
        if not pending:
            return match.group(0)
        level, attrs, inner = match.group(1), match.group(2) or "", match.group(3)
        entry = pending[0]
        text = html.unescape(_TAG_RE.sub("", inner))
        if int(level) != entry.level or _heading_key(text) != _heading_key(entry.title):
            return match.group(0)
        pending.pop(0)
        return f'<h{level} id="{entry.anchor}"{attrs}>{inner}</h{level}>'

    return _HTML_HEADING_RE.sub(assign, rendered)


def splice_after_first_paragraph(rendered: str, fragment: str) -> str:
    """Insert *fragment* right after the first ``</p>`` (or at the start)."""
    if not fragment:
        return rendered
    index = rendered.find("</p>")
    if index == -1:
        return fragment + rendered
    index += len("</p>")
    return rendered[:index] + fragment + rendered[index:]


def strip_leading_heading(body: str, title: str) -> str:
    """Drop a heading at the top of *body* that repeats *title*."""
    lines = body.lstrip().splitlines()
    if lines:
        match = re.match(r"^#{1,6}\s+(.+?)\s*#*\s*$", lines[0])
        if match and _heading_key(_plain_text(match.group(1))) == _heading_key(title):
            return "\n".join(lines[1:]).strip()
    return body.strip()


def markdown_to_html(text: str) -> str:
    """Convert article Markdown to HTML."""
    return markdown_lib.markdown(text, extensions=["extra", "sane_lists"], output_format="html")


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _plain_text(text: str) -> str:
    text = _MD_WIKI_LINK_RE.sub(r"\1", text)
    text = re.sub(r"\[([^\]]+)\]\([^)]*\)", r"\1", text)
    text = _MARKUP_CHARS_RE.sub("", text)
    return " ".join(text.split())


def _heading_key(text: str) -> str:
    return "".join(char for char in text.lower() if char.isalnum())
