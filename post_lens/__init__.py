from __future__ import annotations

from .config import config_sha256, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, InvalidUrlError, PostNotFoundError
from .post import PostReference, ResolvedPost
from .resolver import PostResolver, resolve_post

__all__ = [
    "AppConfig",
    "ConfigError",
    "InvalidUrlError",
    "PostNotFoundError",
    "PostReference",
    "PostResolver",
    "ResolvedPost",
    "config_sha256",
    "load_config",
    "resolve_post",
    "resolve_runtime_secrets",
]
