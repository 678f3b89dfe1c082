"""Exception hierarchy for srpsync."""

from __future__ import annotations


class SRPError(Exception):
    """Base exception for srpsync."""


class ConfigurationError(SRPError):
    """Tenant identity or another required setting is missing."""


class InvalidAddress(SRPError):
    """Path segments do not match the condition/make/model slot grammar.

    Surfaced to callers as "not found"; the address is never repaired.
    """

    def __init__(self, segments: list[str] | tuple[str, ...]) -> None:
        self.segments = tuple(segments)
        super().__init__(f"Invalid address: /{'/'.join(self.segments)}/")


class FetchError(SRPError):
    """An upstream fetch failed."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class NetworkFailure(FetchError):
    """Connection reset, timeout, DNS failure or another transport error."""

    retryable = True


class ServerFailure(FetchError):
    """Upstream answered with a 5xx status."""

    retryable = True


class ClientFailure(FetchError):
    """Upstream answered with a 4xx status. Never retried."""


class NotFound(FetchError):
    """Upstream answered 404 and the caller asked for a dedicated signal."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message, url=url, status_code=404)


class ResponseDecodeError(FetchError):
    """A 2xx response whose body could not be decoded as JSON."""


__all__ = [
    "ClientFailure",
    "ConfigurationError",
    "FetchError",
    "InvalidAddress",
    "NetworkFailure",
    "NotFound",
    "ResponseDecodeError",
    "SRPError",
    "ServerFailure",
]
