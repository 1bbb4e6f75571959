from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from .post import LinkEntity

_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

_SHORT_LINK_RE = re.compile(r"https?://t\.co/\w+")
_TRAILING_SHORT_LINK_RE = re.compile(r"https?://t\.co/\w+\s*$")

# Expanded URLs pointing back at the platform's own media or posts.
_PLATFORM_MEDIA_MARKERS = ("/status/", "/photo/", "/video/")


def normalize_text(text: str | None) -> str:
    """
    Canonicalize whitespace in post text.

    - runs of spaces/tabs collapse to one space (newlines are kept)
    - 3+ consecutive newlines collapse to a single blank line
    - every line and the whole text are trimmed
    """
    if not text:
        return ""

    s = _HORIZONTAL_WS_RE.sub(" ", str(text))
    s = _EXCESS_NEWLINES_RE.sub("\n\n", s)
    s = "\n".join(line.strip() for line in s.split("\n"))
    return s.strip()


def coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def link_entities_from_payload(value: Any) -> list[LinkEntity] | None:
    """
    Parse a provider's `urls` entity list into LinkEntity records.

    Returns None when the payload carries no list at all, so callers can tell
    "absent" apart from "present but empty".
    """
    if not isinstance(value, list):
        return None

    out: list[LinkEntity] = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        short_url = coerce_str(item.get("url"))
        expanded_url = coerce_str(item.get("expanded_url"))
        if short_url and expanded_url:
            out.append(LinkEntity(short_url=short_url, expanded_url=expanded_url))
    return out


def _is_platform_media(expanded_url: str) -> bool:
    return any(marker in expanded_url for marker in _PLATFORM_MEDIA_MARKERS)


def resolve_short_links(text: str, entities: Iterable[LinkEntity] | None = None) -> str:
    """
    Rewrite or remove t.co short-links embedded in post text.

    The trailing link the platform appends for attachments is always dropped.
    Remaining links are replaced by their expansion when it points off-platform,
    and deleted when it points at a post/photo/video or is unknown.
    """
    if not text:
        return ""

    by_short = {e.short_url: e.expanded_url for e in (entities or ())}

    def _replace(match: re.Match[str]) -> str:
        expanded = by_short.get(match.group(0))
        if expanded is None or _is_platform_media(expanded):
            return ""
        return expanded

    cleaned = _TRAILING_SHORT_LINK_RE.sub("", text)
    cleaned = _SHORT_LINK_RE.sub(_replace, cleaned)
    return cleaned.strip()
