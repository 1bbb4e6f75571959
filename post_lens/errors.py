from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class InvalidUrlError(ValueError):
    """Raised when a URL is not a recognizable post URL."""


class PostNotFoundError(RuntimeError):
    """Raised when no provider could retrieve a well-formed post reference."""


class LLMError(RuntimeError):
    """Raised when an OpenAI model call or structured parse fails."""
