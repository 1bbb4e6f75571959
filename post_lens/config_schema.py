from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


def _validate_base_url(value: str) -> str:
    url = (value or "").strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return url


PositiveInt = Annotated[int, Field(ge=1)]
PositiveFloat = Annotated[float, Field(gt=0)]
NonNegativeFloat = Annotated[float, Field(ge=0)]


class FetchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    user_agent: str = DEFAULT_USER_AGENT
    mirror_base_url: str = "https://api.vxtwitter.com"
    syndication_base_url: str = "https://cdn.syndication.twimg.com"
    embed_base_url: str = "https://publish.twitter.com"
    syndication_lang: str = "ja"
    request_timeout_seconds: PositiveFloat = 10.0
    syndication_max_attempts: PositiveInt = 3
    syndication_backoff_seconds: NonNegativeFloat = 1.0

    @field_validator("mirror_base_url", "syndication_base_url", "embed_base_url")
    @classmethod
    def _base_url_must_be_http(cls, v: str) -> str:
        return _validate_base_url(v)


class OpenAIConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    api_key_env: str = "OPENAI_API_KEY"
    model_primary: str = "gpt-5-mini"
    model_escalation: str = "gpt-5"
    max_output_tokens: PositiveInt = 2000
    max_attempts: PositiveInt = 3

    @field_validator("api_key_env")
    @classmethod
    def _api_key_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = "127.0.0.1"
    port: int = Field(8000, ge=1, le=65535)
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_path: str | None = None  # None logs JSONL to stderr


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    fetch: FetchConfig = Field(default_factory=FetchConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
