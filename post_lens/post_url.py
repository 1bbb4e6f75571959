from __future__ import annotations

import re

from .errors import InvalidUrlError
from .post import PostReference

CANONICAL_HOST = "x.com"

HOST_ALIASES: tuple[str, ...] = (
    "twitter",
    "x",
    "vxtwitter",
    "fxtwitter",
    "fixupx",
    "fixvx",
)

_HOST_RE = re.compile(
    r"^https?://(?:www\.)?(?:" + "|".join(HOST_ALIASES) + r")\.com(?=/)",
    re.IGNORECASE,
)
_STATUS_ID_RE = re.compile(r"^https://x\.com/(?:[^/?#]+/)+status/(\d+)")


def canonicalize_post_url(url: str) -> str | None:
    """
    Rewrite any accepted host alias to https://x.com.

    Returns None when the URL is not on one of the accepted hosts.
    """
    value = (url or "").strip()
    if not _HOST_RE.match(value):
        return None
    return _HOST_RE.sub(f"https://{CANONICAL_HOST}", value, count=1)


def parse_post_url(url: str) -> PostReference:
    """
    Validate a post URL and extract its numeric id.

    Everything after the digits (query, photo suffixes, etc.) is ignored.
    """
    raw = (url or "").strip()
    canonical = canonicalize_post_url(raw)
    if canonical is None:
        raise InvalidUrlError(f"Not a recognized post URL: {raw!r}")

    m = _STATUS_ID_RE.match(canonical)
    if not m:
        raise InvalidUrlError(f"No numeric post id in URL: {raw!r}")

    return PostReference(raw_url=raw, post_id=m.group(1), canonical_url=canonical)
