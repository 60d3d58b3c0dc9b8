from __future__ import annotations


class ProviderError(Exception):
    """Base class for failures talking to a market-data or AI provider."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class MissingApiKeyError(ProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, "API key is not configured")


class RateLimitedError(ProviderError):
    pass


class NoDataError(ProviderError):
    pass


class MalformedPayloadError(ProviderError):
    pass
