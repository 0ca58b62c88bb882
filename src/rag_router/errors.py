"""Exception taxonomy for provider, parsing and configuration failures."""

from __future__ import annotations


class RagRouterError(Exception):
    """Base class for all errors raised inside the package."""


class ProviderUnavailable(RagRouterError):
    """An embedding, completion, vector-store or web call failed or timed out.

    Always recovered at the tier boundary that issued the call.
    """

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider} unavailable: {reason}")
        self.provider = provider
        self.reason = reason


class MalformedResponse(RagRouterError):
    """A generative completion was not valid classification JSON."""


class ConfigurationError(RagRouterError):
    """Required provider credentials or settings are missing."""
