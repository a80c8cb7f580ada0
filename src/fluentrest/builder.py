"""Immutable fluent request builder."""

from __future__ import annotations

import ssl
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable, Mapping

import httpx

from .configuration import HeaderMutator, RequestConfiguration
from .events import CompletedEvent, PreCompletedEvent, PreviewContentEvent, ProgressEvent, StartEvent
from .exceptions import FluentRestValidationError
from .invoker import Materialization, TransportInvoker
from .progress import CancellationToken
from .properties import RestProperties
from .result import RestResult
from .security import CertificateCallback, validate_endpoint
from .serialization import JSON, XML, SerializationAdapter


def _segment(command: Any) -> str:
    if command is None or isinstance(command, bool):
        raise FluentRestValidationError("command segment must be a non-empty string, integer or UUID")
    if isinstance(command, (int, uuid.UUID)):
        return f"/{command}"
    if not isinstance(command, str):
        raise FluentRestValidationError(f"Unsupported command segment type: {type(command).__name__}")
    stripped = command.lstrip("/")
    if not stripped:
        raise FluentRestValidationError("command segment must not be empty")
    if "\x00" in stripped:
        raise FluentRestValidationError("Invalid command segment characters")
    return "/" + stripped


def _parameter_value(key: str, value: Any) -> str:
    if not isinstance(key, str) or not key:
        raise FluentRestValidationError("parameter key must be a non-empty string")
    if value is None:
        raise FluentRestValidationError(f"parameter {key!r} has no value")
    return str(value)


def _require_callable(name: str, value: Any) -> None:
    if value is not None and not callable(value):
        raise FluentRestValidationError(f"{name} must be callable")


class RestBuilder:
    """Fluent request builder.

    Every configuration method returns a new builder over a new
    :class:`RequestConfiguration`; the receiver is never changed, so a partially
    configured builder can be reused as a template::

        api = fluentrest.build().url("https://api.example.com").command("users")
        first = api.command(1).get(User)
        page = api.parameter("page", 2).get()
    """

    def __init__(self, configuration: RequestConfiguration | None = None) -> None:
        self._config = configuration or RequestConfiguration()

    @property
    def configuration(self) -> RequestConfiguration:
        return self._config

    def _evolve(self, **changes: Any) -> "RestBuilder":
        return RestBuilder(self._config.evolve(**changes))

    def __repr__(self) -> str:
        return f"RestBuilder(endpoint={self._config.endpoint!r}, commands={self._config.commands!r})"

    # Address

    def url(self, endpoint: str | httpx.URL) -> "RestBuilder":
        endpoint = str(endpoint)
        validate_endpoint(endpoint)
        return self._evolve(endpoint=endpoint)

    def command(self, segment: str | int | uuid.UUID) -> "RestBuilder":
        return RestBuilder(self._config.with_command(_segment(segment)))

    def parameter(self, key: str, value: Any) -> "RestBuilder":
        return RestBuilder(self._config.with_parameters({key: _parameter_value(key, value)}))

    def parameters(self, values: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> "RestBuilder":
        items = values.items() if isinstance(values, Mapping) else values
        converted: dict[str, str] = {}
        for key, value in items:
            converted[key] = _parameter_value(key, value)
        return RestBuilder(self._config.with_parameters(converted))

    # Body

    def payload(self, value: Any, declared_type: Any = None) -> "RestBuilder":
        if declared_type is None and value is not None:
            declared_type = type(value)
        return self._evolve(payload=value, payload_type=declared_type, form_url_encoded=False)

    def form_url_encoded(
        self,
        fields: Mapping[str, Any] | Callable[[dict[str, Any]], None],
        enabled: bool = True,
    ) -> "RestBuilder":
        if callable(fields):
            collected: dict[str, Any] = {}
            fields(collected)
            fields = collected
        if not isinstance(fields, Mapping):
            raise FluentRestValidationError("form fields must be a mapping")
        converted = {key: _parameter_value(key, value) for key, value in fields.items()}
        return RestBuilder(self._config.with_form_fields(converted, enabled=enabled))

    def enable_form_url_encoded(self, enabled: bool = True) -> "RestBuilder":
        return self._evolve(form_url_encoded=enabled)

    # Serialization

    def json(self) -> "RestBuilder":
        return self._evolve(serializer=JSON)

    def xml(self) -> "RestBuilder":
        return self._evolve(serializer=XML)

    def custom_serializer(self, serializer: SerializationAdapter) -> "RestBuilder":
        if not isinstance(serializer, SerializationAdapter):
            raise FluentRestValidationError("serializer must provide media_type, serialize and deserialize")
        return self._evolve(serializer=serializer)

    # Transport options

    def timeout(self, value: float | timedelta) -> "RestBuilder":
        """Set the request timeout.

        httpx applies it to each phase (connect, write, read, pool), and it is
        also one deadline for the whole execution: sending, the response and
        reading a text, typed or bytes body. A stream result's body is read at
        the caller's pace and only the per-phase limit applies to it.
        """
        seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
        if seconds <= 0:
            raise FluentRestValidationError("timeout must be greater than 0")
        return self._evolve(timeout=seconds)

    def buffer_size(self, size: int) -> "RestBuilder":
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise FluentRestValidationError("buffer_size must be a positive integer")
        return self._evolve(buffer_size=size)

    def enable_gzip_compression(self, enabled: bool = True) -> "RestBuilder":
        return self._evolve(gzip=enabled)

    def follow_redirects(self, enabled: bool = True) -> "RestBuilder":
        return self._evolve(follow_redirects=enabled)

    def transport(self, transport: httpx.BaseTransport | httpx.AsyncBaseTransport | None) -> "RestBuilder":
        return self._evolve(transport=transport)

    # Headers and credentials

    def header(self, mutator: HeaderMutator) -> "RestBuilder":
        """Set the callable that edits outgoing headers (``httpx.Headers``) on every attempt."""
        _require_callable("header mutator", mutator)
        return self._evolve(header_mutator=mutator)

    def authentication(self, scheme: str | Callable[[], str], parameter: str | None = None) -> "RestBuilder":
        """Set the ``Authorization`` header.

        Pass a scheme (and optional parameter), e.g. ``authentication("Bearer", token)``,
        or a zero-argument callable returning the full header value. The callable
        is evaluated on each attempt, so a retried request sees a refreshed token.
        """
        if callable(scheme):
            return self._evolve(authentication=scheme)
        if not scheme:
            raise FluentRestValidationError("authentication scheme must not be empty")
        value = scheme if parameter is None else f"{scheme} {parameter}"
        return self._evolve(authentication=lambda: value)

    def network_credential(
        self,
        username: str | Callable[[], httpx.Auth | tuple[str, str]],
        password: str | None = None,
    ) -> "RestBuilder":
        if callable(username):
            credential = username()
        elif password is None:
            raise FluentRestValidationError("password is required")
        else:
            credential = (username, password)
        if isinstance(credential, tuple):
            credential = httpx.BasicAuth(*credential)
        if not isinstance(credential, httpx.Auth):
            raise FluentRestValidationError("credentials must be an httpx.Auth or (username, password)")
        return self._evolve(credentials=credential)

    def certificate_validation(self, callback: CertificateCallback) -> "RestBuilder":
        """Validate the server certificate with ``callback(hostname, der_bytes) -> bool``.

        The callback applies to this request only and replaces the default
        chain verification.
        """
        _require_callable("certificate validation callback", callback)
        return self._evolve(certificate_validation=callback)

    def verify(self, verify: bool | ssl.SSLContext) -> "RestBuilder":
        return self._evolve(verify=verify)

    # Reauthentication

    def refresh_token(self, enabled: bool = True) -> "RestBuilder":
        return self._evolve(refresh_token_enabled=enabled)

    def refresh_token_invoke(self, callback: Callable[[], Any]) -> "RestBuilder":
        _require_callable("refresh token callback", callback)
        return self._evolve(refresh_token=callback)

    def refresh_token_invoke_async(self, callback: Callable[[], Awaitable[Any]]) -> "RestBuilder":
        _require_callable("refresh token callback", callback)
        return self._evolve(refresh_token_async=callback)

    # Lifecycle callbacks

    def on_start(self, callback: Callable[[StartEvent], None]) -> "RestBuilder":
        _require_callable("on_start", callback)
        return self._evolve(on_start=callback)

    def on_upload_progress(self, callback: Callable[[ProgressEvent], None]) -> "RestBuilder":
        _require_callable("on_upload_progress", callback)
        return self._evolve(on_upload_progress=callback)

    def on_download_progress(self, callback: Callable[[ProgressEvent], None]) -> "RestBuilder":
        _require_callable("on_download_progress", callback)
        return self._evolve(on_download_progress=callback)

    def on_preview_content_request(self, callback: Callable[[PreviewContentEvent], None]) -> "RestBuilder":
        _require_callable("on_preview_content_request", callback)
        return self._evolve(on_preview_content_request=callback)

    def on_preview_content_response(self, callback: Callable[[PreviewContentEvent], None]) -> "RestBuilder":
        _require_callable("on_preview_content_response", callback)
        return self._evolve(on_preview_content_response=callback)

    def on_pre_result(self, callback: Callable[[RestResult[Any]], None]) -> "RestBuilder":
        _require_callable("on_pre_result", callback)
        return self._evolve(on_pre_result=callback)

    def on_pre_completed(self, callback: Callable[[PreCompletedEvent], None]) -> "RestBuilder":
        _require_callable("on_pre_completed", callback)
        return self._evolve(on_pre_completed=callback)

    def on_completed(self, callback: Callable[[CompletedEvent], None]) -> "RestBuilder":
        _require_callable("on_completed", callback)
        return self._evolve(on_completed=callback)

    def on_exception(self, callback: Callable[[Exception], None]) -> "RestBuilder":
        _require_callable("on_exception", callback)
        return self._evolve(on_exception=callback)

    # Execution

    def _invoke(
        self,
        method: str,
        mode: Materialization,
        response_type: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> RestResult[Any]:
        invoker = TransportInvoker(self._config)
        return invoker.invoke(method, mode=mode, response_type=response_type, cancellation=cancellation)

    async def _ainvoke(
        self,
        method: str,
        mode: Materialization,
        response_type: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> RestResult[Any]:
        invoker = TransportInvoker(self._config)
        return await invoker.ainvoke(method, mode=mode, response_type=response_type, cancellation=cancellation)

    def send(
        self,
        method: str,
        response_type: Any = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> RestResult[Any]:
        """Execute ``method``; the content is text, or ``response_type`` when given."""
        mode: Materialization = "text" if response_type is None else "typed"
        return self._invoke(method, mode, response_type, cancellation)

    def send_bytes(self, method: str, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return self._invoke(method, "bytes", cancellation=cancellation)

    def send_stream(self, method: str, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        """Execute ``method`` and return the open body stream; close the result when done."""
        return self._invoke(method, "stream", cancellation=cancellation)

    async def send_async(
        self,
        method: str,
        response_type: Any = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> RestResult[Any]:
        mode: Materialization = "text" if response_type is None else "typed"
        return await self._ainvoke(method, mode, response_type, cancellation)

    async def send_bytes_async(
        self, method: str, *, cancellation: CancellationToken | None = None
    ) -> RestResult[bytes]:
        return await self._ainvoke(method, "bytes", cancellation=cancellation)

    async def send_stream_async(
        self, method: str, *, cancellation: CancellationToken | None = None
    ) -> RestResult[Any]:
        return await self._ainvoke(method, "stream", cancellation=cancellation)

    def get(self, response_type: Any = None, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send("GET", response_type, cancellation=cancellation)

    def get_bytes(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return self.send_bytes("GET", cancellation=cancellation)

    def get_stream(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send_stream("GET", cancellation=cancellation)

    async def get_async(
        self, response_type: Any = None, *, cancellation: CancellationToken | None = None
    ) -> RestResult[Any]:
        return await self.send_async("GET", response_type, cancellation=cancellation)

    async def get_bytes_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return await self.send_bytes_async("GET", cancellation=cancellation)

    async def get_stream_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return await self.send_stream_async("GET", cancellation=cancellation)

    def post(self, response_type: Any = None, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send("POST", response_type, cancellation=cancellation)

    def post_bytes(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return self.send_bytes("POST", cancellation=cancellation)

    def post_stream(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send_stream("POST", cancellation=cancellation)

    async def post_async(
        self, response_type: Any = None, *, cancellation: CancellationToken | None = None
    ) -> RestResult[Any]:
        return await self.send_async("POST", response_type, cancellation=cancellation)

    async def post_bytes_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return await self.send_bytes_async("POST", cancellation=cancellation)

    async def post_stream_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return await self.send_stream_async("POST", cancellation=cancellation)

    def put(self, response_type: Any = None, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send("PUT", response_type, cancellation=cancellation)

    def put_bytes(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return self.send_bytes("PUT", cancellation=cancellation)

    def put_stream(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send_stream("PUT", cancellation=cancellation)

    async def put_async(
        self, response_type: Any = None, *, cancellation: CancellationToken | None = None
    ) -> RestResult[Any]:
        return await self.send_async("PUT", response_type, cancellation=cancellation)

    async def put_bytes_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return await self.send_bytes_async("PUT", cancellation=cancellation)

    async def put_stream_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return await self.send_stream_async("PUT", cancellation=cancellation)

    def delete(self, response_type: Any = None, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send("DELETE", response_type, cancellation=cancellation)

    def delete_bytes(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return self.send_bytes("DELETE", cancellation=cancellation)

    def delete_stream(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send_stream("DELETE", cancellation=cancellation)

    async def delete_async(
        self, response_type: Any = None, *, cancellation: CancellationToken | None = None
    ) -> RestResult[Any]:
        return await self.send_async("DELETE", response_type, cancellation=cancellation)

    async def delete_bytes_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return await self.send_bytes_async("DELETE", cancellation=cancellation)

    async def delete_stream_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return await self.send_stream_async("DELETE", cancellation=cancellation)

    def patch(self, response_type: Any = None, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send("PATCH", response_type, cancellation=cancellation)

    def patch_bytes(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return self.send_bytes("PATCH", cancellation=cancellation)

    def patch_stream(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return self.send_stream("PATCH", cancellation=cancellation)

    async def patch_async(
        self, response_type: Any = None, *, cancellation: CancellationToken | None = None
    ) -> RestResult[Any]:
        return await self.send_async("PATCH", response_type, cancellation=cancellation)

    async def patch_bytes_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return await self.send_bytes_async("PATCH", cancellation=cancellation)

    async def patch_stream_async(self, *, cancellation: CancellationToken | None = None) -> RestResult[Any]:
        return await self.send_stream_async("PATCH", cancellation=cancellation)

    def custom_call(
        self,
        method: str,
        response_type: Any = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> RestResult[Any]:
        return self.send(method, response_type, cancellation=cancellation)

    async def custom_call_async(
        self,
        method: str,
        response_type: Any = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> RestResult[Any]:
        return await self.send_async(method, response_type, cancellation=cancellation)

    def download(self, url: str, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return self.url(url).get_bytes(cancellation=cancellation)

    async def download_async(self, url: str, *, cancellation: CancellationToken | None = None) -> RestResult[bytes]:
        return await self.url(url).get_bytes_async(cancellation=cancellation)


def build(properties: RestProperties | None = None, *, endpoint: str | None = None) -> RestBuilder:
    """Create a builder seeded from ``properties`` (defaults plus ``FLUENTREST_*`` env vars)."""
    properties = properties or RestProperties.from_env()
    builder = (
        RestBuilder()
        .timeout(properties.timeout)
        .buffer_size(properties.buffer_size)
        .follow_redirects(properties.follow_redirects)
    )
    endpoint = endpoint or properties.endpoint
    if endpoint:
        builder = builder.url(endpoint)
    return builder
