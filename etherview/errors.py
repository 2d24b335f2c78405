"""Error taxonomy shared by provider adapters and resolvers."""

from __future__ import annotations


class ResolverError(Exception):
    """Base class for every error raised while resolving portfolio data."""

    def __init__(self, message: str = "", *, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)


class SourceUnavailable(ResolverError):
    """Raised on network failures, timeouts and non-success HTTP statuses."""

    def __init__(
        self,
        message: str = "",
        *,
        source: str | None = None,
        status: int | None = None,
    ) -> None:
        self.status = status
        super().__init__(message, source=source)


class RateLimited(SourceUnavailable):
    """Raised when a provider answers with a 429-class response."""

    def __init__(
        self,
        message: str = "",
        *,
        source: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, source=source, status=429)


class InvalidResponse(ResolverError):
    """Raised when a provider payload cannot be interpreted."""


class NoPriceData(ResolverError):
    """Raised when a source answers but has no price for the token."""


class NoBalanceData(ResolverError):
    """Raised when a source answers but reports no balance for the token."""


class InvalidAddress(ResolverError, ValueError):
    """Raised before any network work when a wallet address is malformed."""


__all__ = [
    "ResolverError",
    "SourceUnavailable",
    "RateLimited",
    "InvalidResponse",
    "NoPriceData",
    "NoBalanceData",
    "InvalidAddress",
]
