"""Error taxonomy for the quote-sourcing core."""

from __future__ import annotations


class QuoteServiceError(Exception):
    pass


class ProviderError(QuoteServiceError):
    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class ProviderNetworkError(ProviderError):
    """Timeout, connection failure or non-2xx response from a provider."""


class ProviderParseError(ProviderError):
    """Provider answered, but with a payload shape we do not understand."""


class ProviderRateLimited(ProviderError):
    """Skipped locally because the provider's token bucket is empty."""


class AllProvidersFailed(QuoteServiceError):
    def __init__(self, errors: dict[str, Exception] | None = None):
        self.errors = dict(errors or {})
        attempted = ", ".join(sorted(self.errors)) or "none"
        super().__init__(f"All quote providers failed (attempted: {attempted})")


class PersistenceError(QuoteServiceError):
    pass


class ConfigError(QuoteServiceError):
    pass
