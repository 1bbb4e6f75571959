from __future__ import annotations

import re

from .normalize import normalize_text

_PARAGRAPH_RE = re.compile(r"<p[^>]*>([\s\S]*?)</p>")
_ANCHOR_RE = re.compile(r"<a[^>]*>([^<]*)</a>")
_TAG_RE = re.compile(r"<[^>]+>")

# Only the entities the embed widget actually emits.
_ENTITY_REPLACEMENTS: tuple[tuple[str, str], ...] = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&nbsp;", " "),
    ("&#x27;", "'"),
    ("&#x2F;", "/"),
)


def _decode_entities(text: str) -> str:
    for entity, char in _ENTITY_REPLACEMENTS:
        text = text.replace(entity, char)
    return text


def _paragraph_text(inner_html: str) -> str:
    text = _ANCHOR_RE.sub(r"\1", inner_html)
    text = _TAG_RE.sub("", text)
    return _decode_entities(text).strip()


def extract_text_from_embed_html(html: str | None) -> str:
    """
    Extract post text from an oEmbed blockquote fragment.

    Each <p> block becomes one paragraph; anchors keep their visible text.
    """
    if not html:
        return ""

    parts: list[str] = []
    for match in _PARAGRAPH_RE.finditer(html):
        text = _paragraph_text(match.group(1))
        if text:
            parts.append(text)

    return normalize_text("\n\n".join(parts))
