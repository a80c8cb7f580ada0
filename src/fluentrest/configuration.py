"""Immutable snapshot of every option that shapes one request."""

from __future__ import annotations

import ssl
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

import httpx

from .events import CompletedEvent, PreCompletedEvent, PreviewContentEvent, ProgressEvent, StartEvent
from .progress import DEFAULT_BUFFER_SIZE
from .properties import DEFAULT_TIMEOUT
from .security import CertificateCallback
from .serialization import JSON, SerializationAdapter

HeaderMutator = Callable[[httpx.Headers], None]
AuthenticationFactory = Callable[[], str]


def _frozen_mapping(values: Mapping[str, str] | None = None) -> Mapping[str, str]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True)
class RequestConfiguration:
    """Every field is read-only; collections are private copies behind read-only views.

    Use :meth:`evolve` (or the builder) to derive a changed copy.
    """

    endpoint: str | None = None
    commands: tuple[str, ...] = ()
    parameters: Mapping[str, str] = field(default_factory=_frozen_mapping)
    header_mutator: HeaderMutator | None = None
    authentication: AuthenticationFactory | None = None
    payload: Any = None
    payload_type: Any = None
    form_url_encoded: bool = False
    form_fields: Mapping[str, str] | None = None
    serializer: SerializationAdapter = JSON
    credentials: httpx.Auth | None = None
    certificate_validation: CertificateCallback | None = None
    verify: bool | ssl.SSLContext = True
    timeout: float = DEFAULT_TIMEOUT
    buffer_size: int = DEFAULT_BUFFER_SIZE
    gzip: bool = False
    follow_redirects: bool = True
    refresh_token_enabled: bool = True
    refresh_token: Callable[[], Any] | None = None
    refresh_token_async: Callable[[], Awaitable[Any]] | None = None
    transport: httpx.BaseTransport | httpx.AsyncBaseTransport | None = None
    on_start: Callable[[StartEvent], None] | None = None
    on_upload_progress: Callable[[ProgressEvent], None] | None = None
    on_download_progress: Callable[[ProgressEvent], None] | None = None
    on_preview_content_request: Callable[[PreviewContentEvent], None] | None = None
    on_preview_content_response: Callable[[PreviewContentEvent], None] | None = None
    on_pre_result: Callable[[Any], None] | None = None
    on_pre_completed: Callable[[PreCompletedEvent], None] | None = None
    on_completed: Callable[[CompletedEvent], None] | None = None
    on_exception: Callable[[Exception], None] | None = None

    def evolve(self, **changes: Any) -> "RequestConfiguration":
        return replace(self, **changes)

    def with_command(self, segment: str) -> "RequestConfiguration":
        return replace(self, commands=self.commands + (segment,))

    def with_parameters(self, values: Mapping[str, str]) -> "RequestConfiguration":
        merged = dict(self.parameters)
        merged.update(values)
        return replace(self, parameters=_frozen_mapping(merged))

    def with_form_fields(self, values: Mapping[str, str] | None, *, enabled: bool) -> "RequestConfiguration":
        fields = None if values is None else _frozen_mapping(values)
        return replace(self, form_fields=fields, form_url_encoded=enabled)
