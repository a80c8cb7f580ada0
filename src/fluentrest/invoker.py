"""Turns a finalized request configuration into exactly one result envelope."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import timedelta
from typing import Any, Callable, Literal
from urllib.parse import urlencode

import httpx

from .configuration import RequestConfiguration
from .events import CompletedEvent, PreCompletedEvent, PreviewContentEvent, StartEvent
from .exceptions import (
    FluentRestCancelledError,
    FluentRestError,
    FluentRestNetworkError,
    FluentRestTimeoutError,
    FluentRestValidationError,
)
from .progress import CancellationToken, ProgressStream
from .result import RestResult
from .retry import ReauthenticationRetryPolicy
from .security import CertificateGuard, certificate_guard, sanitize_headers

logger = logging.getLogger(__name__)

USER_AGENT = "fluentrest/0.1.0"
FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"

Materialization = Literal["text", "bytes", "typed", "stream"]


def build_url(config: RequestConfiguration) -> str:
    """Endpoint, then path segments in order, then ``?k=v&...`` when parameters exist.

    Parameter values are joined verbatim; nothing is percent-encoded here.
    """
    if not config.endpoint:
        raise FluentRestValidationError("endpoint is required; call url() first")
    url = config.endpoint + "".join(config.commands)
    if config.parameters:
        url += "?" + "&".join(f"{key}={value}" for key, value in config.parameters.items())
    return url


def make_content(config: RequestConfiguration) -> tuple[bytes, str | None]:
    """Return the encoded request body and its content type."""
    if config.form_url_encoded:
        if config.form_fields is None:
            return b"", None
        encoded = urlencode(list(config.form_fields.items()))
        _preview(config, encoded, dict)
        return encoded.encode("ascii"), FORM_MEDIA_TYPE
    if config.payload is not None:
        serialized = config.serializer.serialize(config.payload, config.payload_type)
        _preview(config, serialized, config.payload_type)
        return serialized.encode("utf-8"), f"{config.serializer.media_type}; charset=utf-8"
    return b"", None


def _preview(config: RequestConfiguration, content: str, content_type: Any) -> None:
    if config.on_preview_content_request is not None:
        config.on_preview_content_request(PreviewContentEvent(content=content, content_type=content_type))


def _fire(callback: Callable[[Any], None] | None, event: Any) -> None:
    if callback is not None:
        callback(event)


def _client_kwargs(config: RequestConfiguration) -> dict[str, Any]:
    # A custom validation callback replaces the default chain check.
    verify = False if config.certificate_validation is not None else config.verify
    return {
        "timeout": config.timeout,
        "follow_redirects": config.follow_redirects,
        "verify": verify,
        "auth": config.credentials,
        "headers": {"User-Agent": USER_AGENT},
        "transport": config.transport,
        "trust_env": False,
    }


def _request_headers(config: RequestConfiguration, content_type: str | None, length: int) -> httpx.Headers:
    headers = httpx.Headers()
    headers["Accept-Encoding"] = "gzip" if config.gzip else "identity"
    if config.authentication is not None:
        headers["Authorization"] = config.authentication()
    if content_type:
        headers["Content-Type"] = content_type
    if length:
        headers["Content-Length"] = str(length)
    if config.header_mutator is not None:
        config.header_mutator(headers)
    return headers


def _download_total(response: httpx.Response) -> int:
    encoding = response.headers.get("content-encoding", "identity").strip().lower()
    if encoding not in {"", "identity"}:
        return 0
    try:
        return max(0, int(response.headers.get("content-length", "0")))
    except ValueError:
        return 0


def _translate(exc: Exception, url: str | None) -> Exception:
    if isinstance(exc, FluentRestError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return FluentRestTimeoutError("Request timed out", url=url, cause=exc)
    if isinstance(exc, httpx.HTTPError):
        return FluentRestNetworkError(f"Network error: {exc}", url=url, cause=exc)
    return exc


def _elapsed(started: float) -> timedelta:
    return timedelta(seconds=time.perf_counter() - started)


def _start(config: RequestConfiguration, url: str, cancellation: CancellationToken | None) -> None:
    event = StartEvent(url=url, payload=config.payload)
    _fire(config.on_start, event)
    if event.cancel:
        raise FluentRestCancelledError("Request cancelled by on_start callback", url=url)
    if cancellation is not None:
        cancellation.raise_if_cancelled()


def _policy(config: RequestConfiguration) -> ReauthenticationRetryPolicy:
    return ReauthenticationRetryPolicy(
        enabled=config.refresh_token_enabled,
        refresh=config.refresh_token,
        refresh_async=config.refresh_token_async,
    )


def _decode_text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


def _text_result(
    config: RequestConfiguration,
    response: httpx.Response,
    body: bytes,
    mode: Materialization,
    response_type: Any,
    started: float,
    attempts: int,
) -> RestResult[Any]:
    if mode == "bytes":
        return RestResult.from_response(response, content=body, elapsed=_elapsed(started), attempts=attempts)
    text = _decode_text(body)
    _fire(config.on_preview_content_response, PreviewContentEvent(content=text, content_type=response_type))
    content: Any = text
    if mode == "typed":
        # error bodies are kept as text only; they rarely match the success type
        content = config.serializer.deserialize(text, response_type) if response.is_success else None
    return RestResult.from_response(
        response,
        content=content,
        string_content=text,
        elapsed=_elapsed(started),
        attempts=attempts,
    )


def _complete(config: RequestConfiguration, result: RestResult[Any]) -> RestResult[Any]:
    _fire(config.on_pre_result, result)
    _fire(config.on_pre_completed, PreCompletedEvent(result=result, is_completed=True))
    return result


def _failed(config: RequestConfiguration, exc: Exception, url: str | None, started: float) -> RestResult[Any]:
    error = _translate(exc, url)
    logger.debug("Request to %s failed", url, exc_info=error)
    _fire(config.on_exception, error)
    return RestResult.from_exception(error, url=url, elapsed=_elapsed(started))


class TransportInvoker:
    """Executes one request configuration through httpx."""

    def __init__(self, config: RequestConfiguration) -> None:
        self.config = config

    def _build_request(
        self,
        client: httpx.Client | httpx.AsyncClient,
        method: str,
        url: str,
        cancellation: CancellationToken | None,
        deadline: float,
        guard: CertificateGuard | None,
        *,
        is_async: bool,
    ) -> httpx.Request:
        config = self.config
        body, content_type = make_content(config)
        headers = _request_headers(config, content_type, len(body))
        content: Any = None
        if body:
            upload = ProgressStream(
                body,
                buffer_size=config.buffer_size,
                on_progress=config.on_upload_progress,
                cancellation=cancellation,
                deadline=deadline,
            )
            content = upload.__aiter__() if is_async else iter(upload)
        logger.debug("%s %s headers=%s", method, url, sanitize_headers(headers))
        extensions: dict[str, Any] = {}
        if guard is not None:
            extensions["trace"] = guard.atrace if is_async else guard.trace
        return client.build_request(method, url, headers=headers, content=content, extensions=extensions)

    def _download(
        self,
        response: httpx.Response,
        source: Any,
        cancellation: CancellationToken | None,
        deadline: float | None = None,
        on_close: Callable[[], Any] | None = None,
    ) -> ProgressStream:
        return ProgressStream(
            source,
            total=_download_total(response),
            buffer_size=self.config.buffer_size,
            on_progress=self.config.on_download_progress,
            cancellation=cancellation,
            deadline=deadline,
            on_close=on_close,
        )

    def invoke(
        self,
        method: str,
        *,
        mode: Materialization = "text",
        response_type: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> RestResult[Any]:
        config = self.config
        method = method.upper()
        started = time.perf_counter()
        # stream results are read at the caller's pace, so only buffered bodies get the deadline
        deadline = started + config.timeout
        url: str | None = None
        try:
            url = build_url(config)
            _start(config, url, cancellation)
            policy = _policy(config)
            guard = certificate_guard(config.certificate_validation, url)
            client = httpx.Client(**_client_kwargs(config))
            try:
                attempts = 0
                while True:
                    attempts += 1
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    request = self._build_request(client, method, url, cancellation, deadline, guard, is_async=False)
                    response = client.send(request, stream=True)
                    logger.debug("%s %s -> %s", method, url, response.status_code)
                    try:
                        if guard is not None:
                            guard.check_response(response)
                        retry = policy.observe(response.status_code) and policy.refresh()
                    except BaseException:
                        response.close()
                        raise
                    if not retry:
                        break
                    response.close()

                if mode == "stream":
                    def release() -> None:
                        response.close()
                        client.close()

                    chunks = response.iter_bytes(config.buffer_size)
                    stream = self._download(response, chunks, cancellation, on_close=release)
                    _fire(config.on_preview_content_response, PreviewContentEvent(content=""))
                    result = RestResult.from_response(
                        response, content=stream, elapsed=_elapsed(started), attempts=attempts
                    )
                else:
                    chunks = response.iter_bytes(config.buffer_size)
                    try:
                        body = self._download(response, chunks, cancellation, deadline).read_all()
                    finally:
                        response.close()
                    result = _text_result(config, response, body, mode, response_type, started, attempts)
                _complete(config, result)
            except BaseException:
                client.close()
                raise
            if mode != "stream":
                client.close()
        except Exception as exc:
            result = _failed(config, exc, url, started)
        result = replace(result, elapsed=_elapsed(started))
        _fire(config.on_completed, CompletedEvent(result=result, elapsed=result.elapsed))
        return result

    async def ainvoke(
        self,
        method: str,
        *,
        mode: Materialization = "text",
        response_type: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> RestResult[Any]:
        config = self.config
        method = method.upper()
        started = time.perf_counter()
        deadline = started + config.timeout
        url: str | None = None
        try:
            url = build_url(config)
            _start(config, url, cancellation)
            policy = _policy(config)
            guard = certificate_guard(config.certificate_validation, url)
            client = httpx.AsyncClient(**_client_kwargs(config))
            try:
                attempts = 0
                while True:
                    attempts += 1
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    request = self._build_request(client, method, url, cancellation, deadline, guard, is_async=True)
                    response = await client.send(request, stream=True)
                    logger.debug("%s %s -> %s", method, url, response.status_code)
                    try:
                        if guard is not None:
                            guard.check_response(response)
                        retry = policy.observe(response.status_code) and await policy.arefresh()
                    except BaseException:
                        await response.aclose()
                        raise
                    if not retry:
                        break
                    await response.aclose()

                if mode == "stream":
                    async def release() -> None:
                        await response.aclose()
                        await client.aclose()

                    chunks = response.aiter_bytes(config.buffer_size)
                    stream = self._download(response, chunks, cancellation, on_close=release)
                    _fire(config.on_preview_content_response, PreviewContentEvent(content=""))
                    result = RestResult.from_response(
                        response, content=stream, elapsed=_elapsed(started), attempts=attempts
                    )
                else:
                    chunks = response.aiter_bytes(config.buffer_size)
                    try:
                        body = await self._download(response, chunks, cancellation, deadline).aread_all()
                    finally:
                        await response.aclose()
                    result = _text_result(config, response, body, mode, response_type, started, attempts)
                _complete(config, result)
            except BaseException:
                await client.aclose()
                raise
            if mode != "stream":
                await client.aclose()
        except Exception as exc:
            result = _failed(config, exc, url, started)
        result = replace(result, elapsed=_elapsed(started))
        _fire(config.on_completed, CompletedEvent(result=result, elapsed=result.elapsed))
        return result
