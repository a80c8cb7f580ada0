"""Security and verification helpers."""

from __future__ import annotations

from typing import Any, Callable, Mapping
from urllib.parse import urlparse

import httpx

from .exceptions import FluentRestCertificateError, FluentRestValidationError

SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "x-api-key",
}

CertificateCallback = Callable[[str, "bytes | None"], bool]

_SEND_HEADERS_EVENTS = {"http11.send_request_headers.started", "http2.send_request_headers.started"}


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of ``headers`` safe for debug log lines; credential values are masked."""
    return {key: "[REDACTED]" if key.lower() in SENSITIVE_HEADERS else value for key, value in headers.items()}


def validate_endpoint(url: str) -> None:
    """Validate an endpoint before it is stored on a request configuration."""
    if not url:
        raise FluentRestValidationError("endpoint must not be empty")
    if "\x00" in url:
        raise FluentRestValidationError("Invalid endpoint")
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise FluentRestValidationError("endpoint must include scheme and host")
    if parsed.scheme not in {"http", "https"}:
        raise FluentRestValidationError(f"Unsupported endpoint scheme: {parsed.scheme}")


def _stream_certificate(network_stream: Any) -> bytes | None:
    if network_stream is None:
        return None
    ssl_object = network_stream.get_extra_info("ssl_object")
    if ssl_object is None:
        return None
    return ssl_object.getpeercert(binary_form=True)


def peer_certificate(response: httpx.Response) -> bytes | None:
    """Return the DER encoded server certificate of a live response, if exposed."""
    return _stream_certificate(response.extensions.get("network_stream"))


class CertificateGuard:
    """Runs a certificate validation callback before any request bytes go out.

    The guard is installed as the request's ``trace`` extension. httpcore reports
    ``connection.start_tls.complete`` right after the handshake, and the callback
    sees the peer certificate there; a rejection aborts the connection before the
    request headers are written. Transports that never report a handshake get the
    check (with no certificate) when headers are about to be sent, or on the
    response if they report nothing at all.

    One guard covers one execution, so a connection reused for a retry is not
    checked twice.
    """

    def __init__(self, callback: CertificateCallback, url: httpx.URL) -> None:
        self.callback = callback
        self.url = url
        self.checked = False

    def check(self, certificate: bytes | None) -> None:
        self.checked = True
        if not self.callback(self.url.host, certificate):
            raise FluentRestCertificateError(
                "Server certificate rejected by validation callback",
                url=str(self.url),
            )

    def trace(self, event: str, info: Mapping[str, Any]) -> None:
        if event == "connection.start_tls.complete":
            self.check(_stream_certificate(info.get("return_value")))
        elif event in _SEND_HEADERS_EVENTS and not self.checked:
            self.check(None)

    async def atrace(self, event: str, info: Mapping[str, Any]) -> None:
        self.trace(event, info)

    def check_response(self, response: httpx.Response) -> None:
        if not self.checked:
            self.check(peer_certificate(response))


def certificate_guard(callback: CertificateCallback | None, url: str) -> CertificateGuard | None:
    """Return a guard for ``url`` when a callback is set and the scheme is https."""
    if callback is None:
        return None
    parsed = httpx.URL(url)
    if parsed.scheme != "https":
        return None
    return CertificateGuard(callback, parsed)
