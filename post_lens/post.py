from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class PostReference:
    """A validated post URL and the numeric post id extracted from it."""

    raw_url: str
    post_id: str
    canonical_url: str


@dataclass(frozen=True)
class LinkEntity:
    short_url: str
    expanded_url: str


@dataclass(frozen=True)
class ResolvedPost:
    """Normalized post text and author identity, as returned by one provider."""

    text: str
    author_name: str
    author_handle: str
    tweet_url: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "authorName": self.author_name,
            "authorHandle": self.author_handle,
            "tweetUrl": self.tweet_url,
        }
