"""Library-specific exceptions."""

from __future__ import annotations


class FluentRestError(Exception):
    """Base exception for all fluentrest failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.cause = cause

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if self.url is None:
            return str(self.args[0])
        return f"{self.args[0]} ({self.url})"


class FluentRestValidationError(FluentRestError, ValueError):
    """Raised when a builder is given an invalid configuration value."""


class FluentRestCancelledError(FluentRestError):
    """Raised when a request is cancelled before or while transferring data."""


class FluentRestNetworkError(FluentRestError):
    """Raised for transport-level failures like DNS and TCP errors."""


class FluentRestTimeoutError(FluentRestError):
    """Raised when a request exceeds the configured timeout."""


class FluentRestSerializationError(FluentRestError):
    """Raised when a payload or response body cannot be (de)serialized."""


class FluentRestCertificateError(FluentRestNetworkError):
    """Raised when the certificate validation callback rejects the server."""
