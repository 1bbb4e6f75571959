from __future__ import annotations

from datetime import date, timedelta
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator

SEARCH_BASE_URL = "https://x.com/search"


class SearchParams(BaseModel):
    """Filters for the platform's advanced search syntax."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    keyword: str
    min_faves: int | None = Field(None, ge=0, alias="minFaves")
    min_retweets: int | None = Field(None, ge=0, alias="minRetweets")
    since_date: date | None = Field(None, alias="sinceDate")
    until_date: date | None = Field(None, alias="untilDate")
    lang: str | None = None

    @field_validator("keyword")
    @classmethod
    def _keyword_must_be_non_empty(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("keyword must be non-empty")
        return s

    @field_validator("lang")
    @classmethod
    def _blank_lang_is_none(cls, v: str | None) -> str | None:
        s = (v or "").strip()
        return s or None


def build_search_command(params: SearchParams) -> str:
    parts: list[str] = [params.keyword]

    if params.min_faves:
        parts.append(f"min_faves:{params.min_faves}")
    if params.min_retweets:
        parts.append(f"min_retweets:{params.min_retweets}")
    if params.since_date is not None:
        parts.append(f"since:{params.since_date.isoformat()}")
    if params.until_date is not None:
        parts.append(f"until:{params.until_date.isoformat()}")
    if params.lang:
        parts.append(f"lang:{params.lang}")

    return " ".join(parts)


def build_search_url(command: str) -> str:
    encoded = quote(command, safe="!~*'()")
    return f"{SEARCH_BASE_URL}?q={encoded}&src=typed_query&f=top"


def date_n_days_ago(days: int, *, today: date | None = None) -> str:
    """ISO date (YYYY-MM-DD) for `days` days before today."""
    base = today or date.today()
    return (base - timedelta(days=int(days))).isoformat()
