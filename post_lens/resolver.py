from __future__ import annotations

from typing import Sequence

import httpx

from .config_schema import FetchConfig
from .errors import PostNotFoundError
from .post import PostReference, ResolvedPost
from .post_url import parse_post_url
from .providers import PostProvider, ProviderOutcome, Success, TransientFailure, default_providers
from .retry import AsyncSleepFn
from .run_log import RunLogger


class PostResolver:
    """
    Resolve a post URL to normalized text and author identity.

    Providers are tried strictly in order; the first Success wins and no
    provider is called twice. A crash inside one provider is logged and
    treated as a transient failure so the next provider still gets its turn.
    """

    def __init__(
        self,
        providers: Sequence[PostProvider] | None = None,
        *,
        fetch_cfg: FetchConfig | None = None,
        client: httpx.AsyncClient | None = None,
        logger: RunLogger | None = None,
        sleep_fn: AsyncSleepFn | None = None,
    ) -> None:
        if providers is None:
            providers = default_providers(fetch_cfg, sleep_fn=sleep_fn)
        if not providers:
            raise ValueError("at least one provider is required")

        self._providers: tuple[PostProvider, ...] = tuple(providers)
        self._client = client
        self._logger = logger

    @property
    def providers(self) -> tuple[PostProvider, ...]:
        return self._providers

    async def resolve(self, url: str, *, logger: RunLogger | None = None) -> ResolvedPost:
        """
        Raises InvalidUrlError before any network call when the URL is malformed,
        and PostNotFoundError when every provider comes back empty-handed.
        """
        log = logger or self._logger
        ref = parse_post_url(url)

        if self._client is not None:
            return await self._resolve_with(ref, client=self._client, logger=log)

        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._resolve_with(ref, client=client, logger=log)

    async def _attempt(
        self,
        provider: PostProvider,
        ref: PostReference,
        *,
        client: httpx.AsyncClient,
        logger: RunLogger | None,
    ) -> ProviderOutcome:
        try:
            return await provider.attempt(ref, client=client, logger=logger)
        except Exception as e:
            if logger is not None:
                logger.exception("provider_crashed", exc=e, url=ref.canonical_url, provider=provider.name)
            return TransientFailure(f"unexpected_error:{type(e).__name__}")

    async def _resolve_with(
        self,
        ref: PostReference,
        *,
        client: httpx.AsyncClient,
        logger: RunLogger | None,
    ) -> ResolvedPost:
        tried: list[dict[str, str]] = []

        for provider in self._providers:
            if logger is not None:
                logger.info("provider_attempt", url=ref.canonical_url, provider=provider.name)

            outcome = await self._attempt(provider, ref, client=client, logger=logger)

            if isinstance(outcome, Success):
                if logger is not None:
                    logger.info(
                        "resolve_succeeded",
                        url=ref.canonical_url,
                        provider=provider.name,
                        text_length=len(outcome.post.text),
                    )
                return outcome.post

            tried.append(
                {
                    "provider": provider.name,
                    "outcome": type(outcome).__name__,
                    "reason": outcome.reason,
                }
            )
            if logger is not None:
                logger.info(
                    "provider_outcome",
                    url=ref.canonical_url,
                    provider=provider.name,
                    outcome=type(outcome).__name__,
                    reason=outcome.reason,
                )

        if logger is not None:
            logger.warning("resolve_failed", url=ref.canonical_url, attempts=tried)
        raise PostNotFoundError(f"Could not retrieve post {ref.post_id} from any source")


async def resolve_post(
    url: str,
    *,
    fetch_cfg: FetchConfig | None = None,
    client: httpx.AsyncClient | None = None,
    logger: RunLogger | None = None,
) -> ResolvedPost:
    resolver = PostResolver(fetch_cfg=fetch_cfg, client=client, logger=logger)
    return await resolver.resolve(url)
