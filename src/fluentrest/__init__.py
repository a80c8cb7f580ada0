"""Immutable fluent builder for HTTP API requests."""

from .builder import RestBuilder, build
from .configuration import RequestConfiguration
from .events import CompletedEvent, PreCompletedEvent, PreviewContentEvent, ProgressEvent, StartEvent
from .exceptions import (
    FluentRestCancelledError,
    FluentRestCertificateError,
    FluentRestError,
    FluentRestNetworkError,
    FluentRestSerializationError,
    FluentRestTimeoutError,
    FluentRestValidationError,
)
from .invoker import TransportInvoker, build_url
from .progress import CancellationToken, ProgressStream
from .properties import RestProperties
from .result import RestResult
from .retry import ReauthenticationRetryPolicy, RetryState
from .serialization import JSON, XML, JsonSerializer, SerializationAdapter, XmlSerializer

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "CompletedEvent",
    "FluentRestCancelledError",
    "FluentRestCertificateError",
    "FluentRestError",
    "FluentRestNetworkError",
    "FluentRestSerializationError",
    "FluentRestTimeoutError",
    "FluentRestValidationError",
    "JSON",
    "JsonSerializer",
    "PreCompletedEvent",
    "PreviewContentEvent",
    "ProgressEvent",
    "ProgressStream",
    "ReauthenticationRetryPolicy",
    "RequestConfiguration",
    "RestBuilder",
    "RestProperties",
    "RestResult",
    "RetryState",
    "SerializationAdapter",
    "StartEvent",
    "TransportInvoker",
    "XML",
    "XmlSerializer",
    "build",
    "build_url",
    "__version__",
]
