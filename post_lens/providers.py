from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, Sequence, Union

import httpx

from .config_schema import FetchConfig
from .embed_html import extract_text_from_embed_html
from .http_retry import HTTPStatusFailure, is_retryable_rate_limit, raise_for_provider_status
from .normalize import (
    coerce_str,
    link_entities_from_payload,
    normalize_text,
    resolve_short_links,
)
from .post import LinkEntity, PostReference, ResolvedPost
from .retry import AsyncSleepFn, RetryConfig, RetryEvent, call_with_retries_async
from .run_log import RunLogger


@dataclass(frozen=True)
class Success:
    post: ResolvedPost


@dataclass(frozen=True)
class NotApplicable:
    """The provider answered, but without usable post data."""

    reason: str


@dataclass(frozen=True)
class TransientFailure:
    """Network error, timeout, bad status, or retries exhausted."""

    reason: str


ProviderOutcome = Union[Success, NotApplicable, TransientFailure]


class PostProvider(Protocol):
    name: str

    async def attempt(
        self,
        ref: PostReference,
        *,
        client: httpx.AsyncClient,
        logger: RunLogger | None = None,
    ) -> ProviderOutcome: ...


def _json_headers(user_agent: str) -> dict[str, str]:
    return {"User-Agent": user_agent, "Accept": "application/json"}


def _failure_reason(exc: BaseException) -> str:
    if isinstance(exc, HTTPStatusFailure):
        return f"http_{exc.status_code}"
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    return "network_error"


class MirrorProvider:
    """
    Primary source: an alternate-API mirror that returns flat JSON.

    Single request, no retry. The mirror's text is already clean, so only
    whitespace normalization is applied.
    """

    name = "mirror"

    def __init__(self, fetch_cfg: FetchConfig | None = None) -> None:
        self._cfg = fetch_cfg or FetchConfig()

    def endpoint(self, post_id: str) -> str:
        return f"{self._cfg.mirror_base_url}/Twitter/status/{post_id}"

    async def attempt(
        self,
        ref: PostReference,
        *,
        client: httpx.AsyncClient,
        logger: RunLogger | None = None,
    ) -> ProviderOutcome:
        try:
            response = await client.get(
                self.endpoint(ref.post_id),
                headers=_json_headers(self._cfg.user_agent),
                timeout=self._cfg.request_timeout_seconds,
            )
            raise_for_provider_status(response)
        except (HTTPStatusFailure, httpx.HTTPError) as e:
            return TransientFailure(_failure_reason(e))

        data = response.json()
        if not isinstance(data, Mapping):
            return NotApplicable("unexpected_payload")

        text = coerce_str(data.get("text"))
        author_name = coerce_str(data.get("user_name"))
        screen_name = coerce_str(data.get("user_screen_name"))
        if not text or not author_name or not screen_name:
            return NotApplicable("missing_fields")

        body = normalize_text(text)
        if not body:
            return NotApplicable("empty_text")

        return Success(
            ResolvedPost(
                text=body,
                author_name=author_name,
                author_handle=f"@{screen_name}",
                tweet_url=ref.raw_url,
            )
        )


@dataclass(frozen=True)
class ExtractedText:
    text: str
    entities: Sequence[LinkEntity] | None


@dataclass(frozen=True)
class TextRule:
    name: str
    extract: Callable[[Mapping[str, Any]], ExtractedText | None]


def _dig(data: Any, *keys: str) -> Any:
    cur = data
    for key in keys:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _top_level_entities(data: Mapping[str, Any]) -> list[LinkEntity] | None:
    return link_entities_from_payload(_dig(data, "entities", "urls"))


def _long_form_text(data: Mapping[str, Any]) -> ExtractedText | None:
    result = _dig(data, "note_tweet", "note_tweet_results", "result")
    text = coerce_str(_dig(result, "text"))
    if not text:
        return None
    entities = link_entities_from_payload(_dig(result, "entity_set", "urls"))
    if entities is None:
        entities = _top_level_entities(data)
    return ExtractedText(text=text, entities=entities)


def _top_level_field(field: str) -> Callable[[Mapping[str, Any]], ExtractedText | None]:
    def _extract(data: Mapping[str, Any]) -> ExtractedText | None:
        text = coerce_str(data.get(field))
        if not text:
            return None
        return ExtractedText(text=text, entities=_top_level_entities(data))

    return _extract


# Priority order: long-form posts nest the untruncated text under note_tweet.
SYNDICATION_TEXT_RULES: tuple[TextRule, ...] = (
    TextRule("note_tweet", _long_form_text),
    TextRule("full_text", _top_level_field("full_text")),
    TextRule("text", _top_level_field("text")),
)


def extract_syndication_text(
    data: Mapping[str, Any],
    rules: Sequence[TextRule] = SYNDICATION_TEXT_RULES,
) -> tuple[str, ExtractedText] | None:
    for rule in rules:
        found = rule.extract(data)
        if found is not None:
            return rule.name, found
    return None


class SyndicationProvider:
    """
    Secondary source: the embed syndication endpoint.

    Retries on HTTP 429 and network errors with linear backoff
    (base * attempt). Any other non-2xx status ends this provider's turn.
    """

    name = "syndication"

    def __init__(
        self,
        fetch_cfg: FetchConfig | None = None,
        *,
        retry: RetryConfig | None = None,
        sleep_fn: AsyncSleepFn | None = None,
    ) -> None:
        self._cfg = fetch_cfg or FetchConfig()
        self._retry = retry or RetryConfig(
            max_attempts=self._cfg.syndication_max_attempts,
            base_delay_seconds=self._cfg.syndication_backoff_seconds,
            max_delay_seconds=(
                self._cfg.syndication_backoff_seconds * self._cfg.syndication_max_attempts
            ),
            backoff="linear",
            jitter_ratio=0.0,
        )
        self._sleep_fn = sleep_fn

    def endpoint(self) -> str:
        return f"{self._cfg.syndication_base_url}/tweet-result"

    def params(self, post_id: str) -> dict[str, str]:
        return {"id": post_id, "lang": self._cfg.syndication_lang, "token": "x"}

    async def _get_with_retries(
        self,
        ref: PostReference,
        *,
        client: httpx.AsyncClient,
        logger: RunLogger | None,
    ) -> httpx.Response:
        async def _do_get() -> httpx.Response:
            response = await client.get(
                self.endpoint(),
                params=self.params(ref.post_id),
                headers=_json_headers(self._cfg.user_agent),
                timeout=self._cfg.request_timeout_seconds,
            )
            raise_for_provider_status(response)
            return response

        def _on_retry(event: RetryEvent) -> None:
            if logger is not None:
                logger.warning(
                    "syndication_retry",
                    url=event.context_url,
                    attempt=event.failure_attempt,
                    next_attempt=event.next_attempt,
                    max_attempts=event.max_attempts,
                    delay_seconds=event.delay_seconds,
                    reason=event.reason,
                )

        return await call_with_retries_async(
            _do_get,
            cfg=self._retry,
            is_retryable=is_retryable_rate_limit,
            operation="syndication.tweet_result",
            on_retry=_on_retry,
            sleep_fn=self._sleep_fn,
            context_url=ref.canonical_url,
        )

    async def attempt(
        self,
        ref: PostReference,
        *,
        client: httpx.AsyncClient,
        logger: RunLogger | None = None,
    ) -> ProviderOutcome:
        try:
            response = await self._get_with_retries(ref, client=client, logger=logger)
        except (HTTPStatusFailure, httpx.HTTPError) as e:
            return TransientFailure(_failure_reason(e))

        data = response.json()
        if not isinstance(data, Mapping):
            return NotApplicable("unexpected_payload")

        found = extract_syndication_text(data)
        user = data.get("user")
        if found is None or not isinstance(user, Mapping):
            return NotApplicable("missing_text_or_user")

        rule_name, extracted = found
        # Deleted links can leave doubled or trailing spaces; normalize once more.
        body = normalize_text(
            resolve_short_links(normalize_text(extracted.text), extracted.entities)
        )
        if not body:
            return NotApplicable("empty_text")

        if logger is not None:
            logger.info(
                "syndication_text_selected",
                url=ref.canonical_url,
                rule=rule_name,
                text_length=len(body),
            )

        return Success(
            ResolvedPost(
                text=body,
                author_name=str(user.get("name") or ""),
                author_handle=f"@{user.get('screen_name') or ''}",
                tweet_url=ref.raw_url,
            )
        )


_AUTHOR_HANDLE_RE = re.compile(r"(?:twitter\.com|x\.com)/(\w+)")


def handle_from_author_url(author_url: Any) -> str:
    if not isinstance(author_url, str):
        return ""
    m = _AUTHOR_HANDLE_RE.search(author_url)
    return f"@{m.group(1)}" if m else ""


class EmbedProvider:
    """
    Last resort: the oEmbed widget endpoint, which returns an HTML fragment.

    Uses the client's default timeout and never retries.
    """

    name = "embed"

    def __init__(self, fetch_cfg: FetchConfig | None = None) -> None:
        self._cfg = fetch_cfg or FetchConfig()

    def endpoint(self) -> str:
        return f"{self._cfg.embed_base_url}/oembed"

    async def attempt(
        self,
        ref: PostReference,
        *,
        client: httpx.AsyncClient,
        logger: RunLogger | None = None,
    ) -> ProviderOutcome:
        try:
            response = await client.get(
                self.endpoint(),
                params={"url": ref.raw_url, "omit_script": "true"},
            )
            raise_for_provider_status(response)
        except (HTTPStatusFailure, httpx.HTTPError) as e:
            return TransientFailure(_failure_reason(e))

        data = response.json()
        if not isinstance(data, Mapping) or not isinstance(data.get("html"), str):
            return NotApplicable("missing_html")

        body = extract_text_from_embed_html(data["html"])
        if not body:
            return NotApplicable("empty_text")

        return Success(
            ResolvedPost(
                text=body,
                author_name=str(data.get("author_name") or ""),
                author_handle=handle_from_author_url(data.get("author_url")),
                tweet_url=ref.raw_url,
            )
        )


def default_providers(
    fetch_cfg: FetchConfig | None = None,
    *,
    sleep_fn: AsyncSleepFn | None = None,
) -> list[PostProvider]:
    """Providers in the order they are tried: best data quality first."""
    cfg = fetch_cfg or FetchConfig()
    return [
        MirrorProvider(cfg),
        SyndicationProvider(cfg, sleep_fn=sleep_fn),
        EmbedProvider(cfg),
    ]
