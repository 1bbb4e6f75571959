from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence, TypeVar

from openai import OpenAI

from .config_schema import OpenAIConfig
from .engagement import EngagementMetrics
from .errors import LLMError
from .llm_schema import (
    ANALYSIS_JSON_SCHEMA,
    ANALYSIS_SCHEMA_NAME,
    DEFAULT_REWRITE_PATTERNS,
    FALLBACK_ANALYSIS,
    FALLBACK_REWRITE,
    PATTERN_TYPES,
    REWRITE_JSON_SCHEMA,
    REWRITE_SCHEMA_NAME,
    PostAnalysis,
    RewriteResult,
)
from .openai_retry import is_retryable_openai_exception
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries

M = TypeVar("M")

REWRITE_MAX_CHARS = 140


class _ResponsesAPI(Protocol):
    def create(self, **kwargs: Any) -> Any: ...


class _OpenAIClient(Protocol):
    responses: _ResponsesAPI


_ANALYSIS_INSTRUCTIONS = f"""\
You are a social media marketing expert. You analyze a single short-form post
from X (Twitter) and explain why it performed the way it did.

Use ONLY the provided fields (post text and engagement numbers).

Return a JSON object that matches the provided schema EXACTLY.

Guidelines:
- pattern_type: the closest rhetorical pattern, one of: {", ".join(PATTERN_TYPES)}.
- hook: what in the opening line pulls the reader in.
- structure: the post's flow, e.g. "problem -> empathy -> solution".
- keywords: 3-5 effective words or phrases taken from the post.
- emotional_triggers: the emotions the post plays on.
- strength_points: 2-4 concrete reasons the post earned engagement.
- Write every free-text field in the same language as the post.
"""

_REWRITE_INSTRUCTIONS = f"""\
You are a professional ghostwriter for X (Twitter) who writes posts that spread.

Write one new post per requested pattern about the given theme.

Return a JSON object that matches the provided schema EXACTLY, with one entry in
"outputs" per requested pattern, in the requested order.

Rules for every post:
- At most {REWRITE_MAX_CHARS} characters.
- Use emoji where they help.
- Open with a hook that earns attention in the first line.
- Make the reader want to like and repost.
- Write in the same language as the theme.
"""

_ANALYSIS_FORMAT: dict[str, Any] = {
    "format": {
        "type": "json_schema",
        "name": ANALYSIS_SCHEMA_NAME,
        "strict": True,
        "schema": ANALYSIS_JSON_SCHEMA,
    }
}

_REWRITE_FORMAT: dict[str, Any] = {
    "format": {
        "type": "json_schema",
        "name": REWRITE_SCHEMA_NAME,
        "strict": True,
        "schema": REWRITE_JSON_SCHEMA,
    }
}

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_OBJECT_SPAN_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class PostForAnalysis:
    post_content: str
    follower_count: int
    impression_count: int | None = None
    like_count: int | None = None
    retweet_count: int | None = None
    post_url: str | None = None
    metrics: EngagementMetrics | None = None


@dataclass(frozen=True)
class RewriteRequest:
    user_theme: str
    pattern_type: str | None = None
    user_elements: Sequence[str] = ()
    output_patterns: Sequence[str] = ()


def _build_analysis_message(post: PostForAnalysis) -> str:
    payload: dict[str, Any] = {
        "postContent": post.post_content,
        "followerCount": post.follower_count,
        "impressionCount": post.impression_count,
        "likeCount": post.like_count,
        "retweetCount": post.retweet_count,
    }
    if post.metrics is not None and post.metrics.impression_rate > 0:
        payload["impressionsPerFollower"] = round(post.metrics.impression_rate / 100, 1)
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _rewrite_patterns(req: RewriteRequest) -> list[str]:
    patterns = [p.strip() for p in req.output_patterns if (p or "").strip()]
    return patterns or list(DEFAULT_REWRITE_PATTERNS)


def _build_rewrite_message(req: RewriteRequest) -> str:
    payload = {
        "theme": req.user_theme,
        "elementsToInclude": [e.strip() for e in req.user_elements if (e or "").strip()],
        "referencePattern": req.pattern_type,
        "requestedPatterns": _rewrite_patterns(req),
    }
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _extract_output_text(response: Any) -> str:
    direct = (getattr(response, "output_text", None) or "").strip()
    if direct:
        return direct

    output = getattr(response, "output", None) or []
    for item in output:
        content = getattr(item, "content", None) or []
        for part in content:
            text = getattr(part, "text", None)
            if isinstance(text, str) and text.strip():
                return text.strip()

    raise LLMError("OpenAI response did not include output text")


def extract_json_text(raw: str) -> str:
    """
    Best-effort isolation of a JSON object from model output.

    Handles fenced ```json blocks and prose wrapped around a single object.
    """
    text = (raw or "").strip()
    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    span = _OBJECT_SPAN_RE.search(text)
    if span:
        return span.group(0)
    return text


class OpenAIPostAnalyst:
    """
    OpenAI wrapper for post pattern analysis and rewrite generation.

    Uses the primary model by default and escalates to a larger model when the
    structured output cannot be parsed. When both fail to parse, a fixed
    fallback result is returned instead of an error.
    """

    def __init__(
        self,
        api_key: str,
        *,
        openai_cfg: OpenAIConfig,
        client: _OpenAIClient | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        key = (api_key or "").strip()
        if not key:
            raise ValueError("api_key must be a non-empty string")

        self._cfg = openai_cfg
        # SDK-level retries off so the policy below is the only one.
        self._client: _OpenAIClient = client or OpenAI(api_key=key, max_retries=0)
        self._retry = RetryConfig(max_attempts=openai_cfg.max_attempts)
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn

    def _escalation_model(self) -> str | None:
        primary = (self._cfg.model_primary or "").strip()
        escalation = (self._cfg.model_escalation or "").strip()
        if not escalation or escalation == primary:
            return None
        return escalation

    def _call_raw(
        self,
        *,
        model: str,
        instructions: str,
        user_message: str,
        text_format: dict[str, Any],
    ) -> str:
        def _do_call() -> Any:
            return self._client.responses.create(
                model=model,
                instructions=instructions,
                input=[
                    {"role": "user", "content": user_message},
                ],
                text=text_format,
                max_output_tokens=self._cfg.max_output_tokens,
            )

        try:
            response = call_with_retries(
                _do_call,
                cfg=self._retry,
                is_retryable=is_retryable_openai_exception,
                operation=f"openai.responses.create:{model}",
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
            )
        except Exception as e:
            raise LLMError(f"OpenAI call failed ({model}): {e}") from e

        return _extract_output_text(response)

    def _complete(
        self,
        *,
        instructions: str,
        user_message: str,
        text_format: dict[str, Any],
        parse: Callable[[str], M],
    ) -> M | None:
        primary_model = (self._cfg.model_primary or "").strip()
        if not primary_model:
            raise ValueError("openai_cfg.model_primary must be non-empty")

        models = [primary_model]
        escalation_model = self._escalation_model()
        if escalation_model is not None:
            models.append(escalation_model)

        for model in models:
            raw = self._call_raw(
                model=model,
                instructions=instructions,
                user_message=user_message,
                text_format=text_format,
            )
            try:
                return parse(extract_json_text(raw))
            except ValueError:
                continue

        return None

    def analyze(self, post: PostForAnalysis) -> PostAnalysis:
        if not (post.post_content or "").strip():
            raise ValueError("post.post_content must be non-empty")

        result = self._complete(
            instructions=_ANALYSIS_INSTRUCTIONS,
            user_message=_build_analysis_message(post),
            text_format=_ANALYSIS_FORMAT,
            parse=PostAnalysis.model_validate_json,
        )
        return result if result is not None else FALLBACK_ANALYSIS

    def rewrite(self, req: RewriteRequest) -> RewriteResult:
        if not (req.user_theme or "").strip():
            raise ValueError("req.user_theme must be non-empty")

        result = self._complete(
            instructions=_REWRITE_INSTRUCTIONS,
            user_message=_build_rewrite_message(req),
            text_format=_REWRITE_FORMAT,
            parse=RewriteResult.model_validate_json,
        )
        if result is None or not result.outputs:
            return FALLBACK_REWRITE
        return result
