from __future__ import annotations

import uuid
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware

from .config import config_sha256, resolve_runtime_secrets
from .config_schema import AppConfig
from .engagement import compute_engagement
from .errors import ConfigError, InvalidUrlError, LLMError, PostNotFoundError
from .llm import OpenAIPostAnalyst, PostForAnalysis, RewriteRequest
from .resolver import PostResolver
from .run_log import RunLogger
from .search import SearchParams, build_search_command, build_search_url

AnalystFactory = Callable[[AppConfig], OpenAIPostAnalyst]


# ---------- Schemas ----------

class _CamelBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class FetchTweetBody(_CamelBody):
    url: str | None = None


class AnalyzeBody(_CamelBody):
    post_content: str = Field(..., alias="postContent")
    follower_count: int = Field(..., gt=0, alias="followerCount")
    impression_count: int | None = Field(None, ge=0, alias="impressionCount")
    like_count: int | None = Field(None, ge=0, alias="likeCount")
    retweet_count: int | None = Field(None, ge=0, alias="retweetCount")
    post_url: str | None = Field(None, alias="postUrl")

    @field_validator("post_content")
    @classmethod
    def _non_empty_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("postContent must not be empty")
        return v


class RewriteBody(_CamelBody):
    user_theme: str = Field(..., alias="userTheme")
    pattern_type: str | None = Field(None, alias="patternType")
    user_elements: list[str] = Field(default_factory=list, alias="userElements")
    output_patterns: list[str] = Field(default_factory=list, alias="outputPatterns")
    analysis_id: str | None = Field(None, alias="analysisId")

    @field_validator("user_theme")
    @classmethod
    def _non_empty_theme(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("userTheme must not be empty")
        return v


# ---------- Envelope ----------

def _ok(data: Any) -> JSONResponse:
    return JSONResponse({"success": True, "data": data})


def _fail(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": {"code": code, "message": message}},
        status_code=status_code,
    )


def _validation_message(exc: RequestValidationError) -> str:
    parts: list[str] = []
    for item in exc.errors():
        loc = [str(p) for p in item.get("loc", ()) if p != "body"]
        field = ".".join(loc) or "body"
        parts.append(f"{field}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts) or "Invalid request body"


def _default_analyst_factory(config: AppConfig) -> OpenAIPostAnalyst:
    secrets = resolve_runtime_secrets(config)
    return OpenAIPostAnalyst(secrets.openai_api_key, openai_cfg=config.openai)


def create_app(
    config: AppConfig | None = None,
    *,
    resolver: PostResolver | None = None,
    analyst_factory: AnalystFactory | None = None,
    logger: RunLogger | None = None,
) -> FastAPI:
    """
    Build the JSON service.

    Every route answers with {success, data?, error?: {code, message}}; error
    messages never carry stack traces or provider payloads.
    """
    cfg = config or AppConfig()
    log = logger or (
        RunLogger(cfg.server.log_path, overwrite=False) if cfg.server.log_path else RunLogger()
    )
    post_resolver = resolver or PostResolver(fetch_cfg=cfg.fetch)
    make_analyst = analyst_factory or _default_analyst_factory
    analyst_cache: dict[str, OpenAIPostAnalyst] = {}

    def _analyst() -> OpenAIPostAnalyst:
        if "analyst" not in analyst_cache:
            analyst_cache["analyst"] = make_analyst(cfg)
        return analyst_cache["analyst"]

    app = FastAPI(title="post_lens", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.server.cors_allow_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    log.info("service_started", config_sha256=config_sha256(cfg))

    @app.exception_handler(RequestValidationError)
    async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _fail(400, "VALIDATION_ERROR", _validation_message(exc))

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/fetch-tweet")
    async def fetch_tweet(body: FetchTweetBody) -> JSONResponse:
        url = (body.url or "").strip()
        if not url:
            return _fail(400, "VALIDATION_ERROR", "URL is required")

        req_log = log.for_request()
        try:
            post = await post_resolver.resolve(url, logger=req_log)
        except InvalidUrlError:
            return _fail(400, "INVALID_URL", "Please enter a valid X/Twitter post URL")
        except PostNotFoundError:
            return _fail(
                404,
                "NOT_FOUND",
                "Could not retrieve the post. Check that the URL is correct.",
            )
        except Exception as e:
            req_log.exception("request_failed", exc=e, url=url, route="fetch-tweet")
            return _fail(500, "INTERNAL_ERROR", "An error occurred while fetching the post")

        return _ok(post.to_payload())

    @app.post("/api/analyze")
    async def analyze(body: AnalyzeBody) -> JSONResponse:
        req_log = log.for_request()
        metrics = compute_engagement(
            body.follower_count,
            impression_count=body.impression_count,
            like_count=body.like_count,
            retweet_count=body.retweet_count,
        )
        post = PostForAnalysis(
            post_content=body.post_content,
            follower_count=body.follower_count,
            impression_count=body.impression_count,
            like_count=body.like_count,
            retweet_count=body.retweet_count,
            post_url=body.post_url,
            metrics=metrics,
        )

        try:
            analyst = _analyst()
            result = await run_in_threadpool(lambda: analyst.analyze(post))
        except ConfigError as e:
            req_log.error("analyst_unavailable", route="analyze", message=str(e))
            return _fail(500, "CONFIG_ERROR", "The OpenAI API key is not configured")
        except LLMError as e:
            req_log.exception("request_failed", exc=e, route="analyze")
            return _fail(502, "LLM_ERROR", "The analysis model could not be reached")
        except Exception as e:
            req_log.exception("request_failed", exc=e, route="analyze")
            return _fail(500, "INTERNAL_ERROR", "Internal server error")

        data: dict[str, Any] = {
            "analysisId": str(uuid.uuid4()),
            "engagementMetrics": metrics.to_payload(),
        }
        data.update(result.to_payload())
        return _ok(data)

    @app.post("/api/rewrite")
    async def rewrite(body: RewriteBody) -> JSONResponse:
        req_log = log.for_request()
        request = RewriteRequest(
            user_theme=body.user_theme,
            pattern_type=body.pattern_type,
            user_elements=tuple(body.user_elements),
            output_patterns=tuple(body.output_patterns),
        )

        try:
            analyst = _analyst()
            result = await run_in_threadpool(lambda: analyst.rewrite(request))
        except ConfigError as e:
            req_log.error("analyst_unavailable", route="rewrite", message=str(e))
            return _fail(500, "CONFIG_ERROR", "The OpenAI API key is not configured")
        except LLMError as e:
            req_log.exception("request_failed", exc=e, route="rewrite")
            return _fail(502, "LLM_ERROR", "The writing model could not be reached")
        except Exception as e:
            req_log.exception("request_failed", exc=e, route="rewrite")
            return _fail(500, "INTERNAL_ERROR", "Internal server error")

        return _ok(
            {
                "rewriteId": str(uuid.uuid4()),
                "outputs": [o.to_payload() for o in result.outputs],
            }
        )

    @app.post("/api/search-command")
    async def search_command(params: SearchParams) -> JSONResponse:
        command = build_search_command(params)
        return _ok({"command": command, "url": build_search_url(command)})

    return app
