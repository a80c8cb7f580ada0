from __future__ import annotations

import asyncio
import gzip
import json
import time
from dataclasses import dataclass
from datetime import timedelta

import httpx
import pytest

from fluentrest import CancellationToken, ProgressStream, RestBuilder
from fluentrest.events import CompletedEvent, ProgressEvent, StartEvent
from fluentrest.exceptions import (
    FluentRestCancelledError,
    FluentRestCertificateError,
    FluentRestNetworkError,
    FluentRestSerializationError,
    FluentRestTimeoutError,
    FluentRestValidationError,
)


@dataclass
class User:
    id: int
    name: str


def _builder(handler, endpoint: str = "https://api.example.com") -> RestBuilder:
    return RestBuilder().url(endpoint).transport(httpx.MockTransport(handler))


def test_get_returns_text_content_and_response_metadata() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert str(request.url) == "https://api.example.com/users/5?page=2"
        return httpx.Response(200, text="hello", headers={"X-Request-Id": "abc"})

    result = _builder(handler).command("users").command(5).parameter("page", 2).get()

    assert result.is_success
    assert result.status_code == 200
    assert result.reason_phrase == "OK"
    assert result.content == "hello"
    assert result.string_content == "hello"
    assert result.headers["x-request-id"] == "abc"
    assert result.url == "https://api.example.com/users/5?page=2"
    assert result.attempts == 1


def test_get_typed_json() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": 1, "name": "Ada"})

    result = _builder(handler).command("users").command(1).get(User)

    assert result.content == User(id=1, name="Ada")
    assert json.loads(result.string_content or "") == {"id": 1, "name": "Ada"}


def test_get_typed_xml() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<User><id>2</id><name>Grace</name></User>")

    result = _builder(handler).xml().get(User)

    assert result.content == User(id=2, name="Grace")


def test_error_status_is_an_ordinary_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text='{"error":"missing"}')

    result = _builder(handler).get(User)

    assert result.status_code == 404
    assert result.exception is None
    assert not result.is_success
    assert result.content is None
    assert result.string_content == '{"error":"missing"}'


def test_typed_body_that_does_not_decode_lands_in_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="not json")

    errors: list[Exception] = []
    result = _builder(handler).on_exception(errors.append).get(User)

    assert isinstance(result.exception, FluentRestSerializationError)
    assert errors == [result.exception]


def test_get_bytes_returns_raw_body() -> None:
    payload = bytes(range(256))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=payload)

    result = _builder(handler).get_bytes()

    assert result.content == payload
    assert result.string_content is None


def test_get_stream_leaves_body_open_until_closed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"streamed body")

    result = _builder(handler).buffer_size(4).get_stream()

    assert isinstance(result.content, ProgressStream)
    with result:
        assert result.content.read_all() == b"streamed body"
    assert result.content.closed


def test_post_serializes_payload_as_json() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["content_type"] = request.headers["Content-Type"]
        seen["length"] = request.headers["Content-Length"]
        return httpx.Response(201, text="")

    result = _builder(handler).command("users").payload(User(id=3, name="Linus")).post()

    assert result.status_code == 201
    assert seen["body"] == {"id": 3, "name": "Linus"}
    assert seen["content_type"] == "application/json; charset=utf-8"
    assert seen["length"] == str(len('{"id":3,"name":"Linus"}'))


def test_post_form_url_encoded_body() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content
        seen["content_type"] = request.headers["Content-Type"]
        return httpx.Response(200, text="token")

    result = (
        _builder(handler)
        .command("token")
        .form_url_encoded({"grant_type": "password", "user": "ada lovelace"})
        .post()
    )

    assert result.content == "token"
    assert seen["body"] == b"grant_type=password&user=ada+lovelace"
    assert seen["content_type"] == "application/x-www-form-urlencoded"


def test_request_preview_sees_serialized_body() -> None:
    previews: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="{}")

    (
        _builder(handler)
        .payload({"a": 1})
        .on_preview_content_request(lambda event: previews.append(event.content))
        .put()
    )

    assert previews == ['{"a":1}']


def test_lifecycle_events_fire_in_order() -> None:
    order: list[str] = []
    completed: list[CompletedEvent] = []

    def handler(request: httpx.Request) -> httpx.Response:
        order.append("send")
        return httpx.Response(200, text='{"id":1,"name":"x"}')

    def on_completed(event: CompletedEvent) -> None:
        order.append("completed")
        completed.append(event)

    result = (
        _builder(handler)
        .payload({"id": 1})
        .on_start(lambda event: order.append("start"))
        .on_preview_content_request(lambda event: order.append("preview_request"))
        .on_preview_content_response(lambda event: order.append("preview_response"))
        .on_pre_result(lambda value: order.append("pre_result"))
        .on_pre_completed(lambda event: order.append("pre_completed"))
        .on_completed(on_completed)
        .on_exception(lambda exc: order.append("exception"))
        .post(User)
    )

    assert order == [
        "start",
        "preview_request",
        "send",
        "preview_response",
        "pre_result",
        "pre_completed",
        "completed",
    ]
    assert completed[0].result is result
    assert completed[0].elapsed == result.elapsed


def test_on_start_cancel_skips_network() -> None:
    sent: list[httpx.Request] = []
    completed: list[CompletedEvent] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(200)

    def on_start(event: StartEvent) -> None:
        assert event.url == "https://api.example.com/items"
        event.cancel = True

    result = _builder(handler).command("items").on_start(on_start).on_completed(completed.append).get()

    assert sent == []
    assert result.is_cancelled
    assert result.status_code is None
    assert len(completed) == 1


def test_cancelled_token_before_send_skips_network() -> None:
    sent: list[httpx.Request] = []
    token = CancellationToken()
    token.cancel()

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(200)

    result = _builder(handler).get(cancellation=token)

    assert sent == []
    assert isinstance(result.exception, FluentRestCancelledError)


def test_cancellation_during_download_stops_after_current_chunk() -> None:
    token = CancellationToken()
    events: list[ProgressEvent] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=bytes(100))

    def on_progress(event: ProgressEvent) -> None:
        events.append(event)
        if event.current_bytes >= 30:
            token.cancel()

    result = _builder(handler).buffer_size(10).on_download_progress(on_progress).get_bytes(cancellation=token)

    assert result.is_cancelled
    assert [event.current_bytes for event in events] == [10, 20, 30]


def test_upload_and_download_progress_reach_body_sizes() -> None:
    uploads: list[ProgressEvent] = []
    downloads: list[ProgressEvent] = []
    payload = {"data": "x" * 500}
    upload_size = len(json.dumps(payload, separators=(",", ":")))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"y" * 333)

    (
        _builder(handler)
        .buffer_size(64)
        .payload(payload)
        .on_upload_progress(uploads.append)
        .on_download_progress(downloads.append)
        .post()
    )

    assert uploads[-1] == ProgressEvent(current_bytes=upload_size, total_bytes=upload_size)
    assert downloads[-1] == ProgressEvent(current_bytes=333, total_bytes=333)


def test_gzip_response_is_decoded_and_total_is_unknown() -> None:
    seen: list[str] = []
    downloads: list[ProgressEvent] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Accept-Encoding"])
        return httpx.Response(
            200,
            content=gzip.compress(b"compressed hello"),
            headers={"Content-Encoding": "gzip"},
        )

    result = _builder(handler).enable_gzip_compression().on_download_progress(downloads.append).get()

    assert seen == ["gzip"]
    assert result.content == "compressed hello"
    assert downloads[-1].total_bytes == 0
    assert downloads[-1].current_bytes == len(b"compressed hello")


def test_identity_encoding_requested_without_gzip() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Accept-Encoding"])
        return httpx.Response(200)

    _builder(handler).get()

    assert seen == ["identity"]


def test_header_mutator_and_credentials() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200)

    (
        _builder(handler)
        .header(lambda headers: headers.update({"X-Trace": "t-1"}))
        .network_credential("user", "secret")
        .get()
    )

    assert seen["x-trace"] == "t-1"
    assert seen["authorization"] == "Basic dXNlcjpzZWNyZXQ="
    assert seen["user-agent"].startswith("fluentrest/")


def test_connect_error_becomes_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    errors: list[Exception] = []
    completed: list[CompletedEvent] = []
    result = _builder(handler).on_exception(errors.append).on_completed(completed.append).get()

    assert isinstance(result.exception, FluentRestNetworkError)
    assert isinstance(result.exception.cause, httpx.ConnectError)
    assert result.status_code is None
    assert result.url == "https://api.example.com"
    assert errors == [result.exception]
    assert completed[0].result is result


def test_read_timeout_becomes_timeout_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    result = _builder(handler).get()

    assert isinstance(result.exception, FluentRestTimeoutError)


def test_missing_endpoint_is_reported_in_result() -> None:
    result = RestBuilder().command("users").get()

    assert isinstance(result.exception, FluentRestValidationError)


def test_certificate_callback_rejection_fails_request() -> None:
    calls: list[tuple[str, bytes | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="secret")

    def reject(host: str, certificate: bytes | None) -> bool:
        calls.append((host, certificate))
        return False

    result = _builder(handler).certificate_validation(reject).get()

    assert isinstance(result.exception, FluentRestCertificateError)
    assert calls == [("api.example.com", None)]


def test_certificate_callback_skipped_for_plain_http() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="ok")

    result = (
        _builder(handler, "http://api.example.com")
        .certificate_validation(lambda host, cert: calls.append(host) or False)
        .get()
    )

    assert result.content == "ok"
    assert calls == []


@pytest.mark.parametrize("method", ["get", "post", "put", "delete", "patch"])
def test_verb_helpers_send_their_method(method: str) -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        return httpx.Response(204)

    result = getattr(_builder(handler), method)()

    assert seen == [method.upper()]
    assert result.status_code == 204


def test_custom_call_sends_arbitrary_method() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        return httpx.Response(200)

    _builder(handler).custom_call("options")

    assert seen == ["OPTIONS"]


def test_download_fetches_bytes_from_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://files.example.com/report.pdf"
        return httpx.Response(200, content=b"%PDF")

    result = RestBuilder().transport(httpx.MockTransport(handler)).download("https://files.example.com/report.pdf")

    assert result.content == b"%PDF"


def test_async_get_typed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": 9, "name": "Async"})

    result = asyncio.run(_builder(handler).get_async(User))

    assert result.content == User(id=9, name="Async")


def test_async_post_reports_upload_progress() -> None:
    uploads: list[ProgressEvent] = []
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        return httpx.Response(200, text="done")

    result = asyncio.run(
        _builder(handler).buffer_size(2).payload("abcdef").on_upload_progress(uploads.append).post_async()
    )

    assert result.content == "done"
    assert bodies == [b'"abcdef"']
    assert uploads[-1].current_bytes == 8


def test_async_stream_is_released_on_exit() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"chunked async body")

    async def run() -> tuple[bytes, bool]:
        result = await _builder(handler).buffer_size(5).get_stream_async()
        async with result:
            data = await result.content.aread_all()
        return data, result.content.closed

    data, closed = asyncio.run(run())

    assert data == b"chunked async body"
    assert closed


def test_async_connect_error_lands_in_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    result = asyncio.run(_builder(handler).delete_async())

    assert isinstance(result.exception, FluentRestNetworkError)


class _SslObject:
    def getpeercert(self, binary_form: bool = False) -> bytes:
        return b"peer-der"


class _TlsStream:
    def get_extra_info(self, name: str) -> object:
        return _SslObject() if name == "ssl_object" else None


def _handshaking_handler(received: list[httpx.Request]):
    """Report a TLS handshake and header send through the trace hook, as httpcore does."""

    def handler(request: httpx.Request) -> httpx.Response:
        trace = request.extensions["trace"]
        trace("connection.start_tls.complete", {"return_value": _TlsStream()})
        trace("http11.send_request_headers.started", {"request": request})
        received.append(request)
        return httpx.Response(200, text="ok")

    return handler


def test_rejected_certificate_stops_request_before_headers_are_sent() -> None:
    received: list[httpx.Request] = []
    calls: list[tuple[str, bytes | None]] = []

    def reject(host: str, certificate: bytes | None) -> bool:
        calls.append((host, certificate))
        return False

    result = (
        _builder(_handshaking_handler(received))
        .authentication("Bearer", "top-secret")
        .payload({"password": "hunter2"})
        .certificate_validation(reject)
        .post()
    )

    assert isinstance(result.exception, FluentRestCertificateError)
    assert received == []
    assert calls == [("api.example.com", b"peer-der")]


def test_accepted_certificate_is_checked_once_per_execution() -> None:
    received: list[httpx.Request] = []
    calls: list[bytes | None] = []

    def accept(host: str, certificate: bytes | None) -> bool:
        calls.append(certificate)
        return True

    result = _builder(_handshaking_handler(received)).certificate_validation(accept).get()

    assert result.content == "ok"
    assert len(received) == 1
    assert calls == [b"peer-der"]


def test_async_rejected_certificate_stops_request_before_headers_are_sent() -> None:
    received: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        trace = request.extensions["trace"]
        await trace("connection.start_tls.complete", {"return_value": _TlsStream()})
        await trace("http11.send_request_headers.started", {"request": request})
        received.append(request)
        return httpx.Response(200)

    result = asyncio.run(
        _builder(handler).payload({"secret": 1}).certificate_validation(lambda host, cert: False).post_async()
    )

    assert isinstance(result.exception, FluentRestCertificateError)
    assert received == []


def test_completed_elapsed_covers_pre_completed_callbacks() -> None:
    completed: list[CompletedEvent] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    result = (
        _builder(handler)
        .on_pre_completed(lambda event: time.sleep(0.05))
        .on_completed(completed.append)
        .get()
    )

    assert completed[0].elapsed >= timedelta(milliseconds=50)
    assert result.elapsed == completed[0].elapsed


def test_trickling_body_hits_overall_timeout() -> None:
    def trickle():
        for _ in range(5):
            time.sleep(0.05)
            yield b"x"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=trickle())

    result = _builder(handler).timeout(0.1).buffer_size(1).get()

    assert isinstance(result.exception, FluentRestTimeoutError)
