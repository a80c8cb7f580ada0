"""Buffered body copying with progress reporting and cooperative cancellation."""

from __future__ import annotations

import inspect
import threading
import time
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterable, Iterator

from .events import ProgressEvent
from .exceptions import FluentRestCancelledError, FluentRestTimeoutError, FluentRestValidationError

DEFAULT_BUFFER_SIZE = 5 * 4096 * 4  # 80 KiB

ProgressCallback = Callable[[ProgressEvent], None]


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and a running request."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FluentRestCancelledError("Request was cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"


def _rechunk(chunks: Iterable[bytes], size: int) -> Iterator[bytes]:
    pending = bytearray()
    for chunk in chunks:
        if not chunk:
            continue
        pending.extend(chunk)
        while len(pending) >= size:
            yield bytes(pending[:size])
            del pending[:size]
    if pending:
        yield bytes(pending)


async def _arechunk(chunks: AsyncIterable[bytes], size: int) -> AsyncIterator[bytes]:
    pending = bytearray()
    async for chunk in chunks:
        if not chunk:
            continue
        pending.extend(chunk)
        while len(pending) >= size:
            yield bytes(pending[:size])
            del pending[:size]
    if pending:
        yield bytes(pending)


class ProgressStream:
    """Copy a content source through a fixed-size buffer.

    ``source`` can be ``bytes``, a binary file-like object, an iterable of byte
    chunks or (for the async API) an async iterable of byte chunks. After every
    chunk a :class:`ProgressEvent` is reported and the cancellation token is
    checked; a cancelled token stops the copy with
    :class:`FluentRestCancelledError`. ``deadline`` is a ``time.perf_counter()``
    value; once the clock passes it the copy stops with :class:`FluentRestTimeoutError`.
    """

    def __init__(
        self,
        source: Any,
        *,
        total: int | None = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
        on_close: Callable[[], None] | None = None,
        deadline: float | None = None,
    ) -> None:
        if buffer_size <= 0:
            raise FluentRestValidationError("buffer_size must be greater than 0")
        if source is None:
            source = b""
        if isinstance(source, (bytearray, memoryview)):
            source = bytes(source)
        self._source = source
        self.total = int(total) if total and total > 0 else 0
        if isinstance(source, bytes) and total is None:
            self.total = len(source)
        self.buffer_size = buffer_size
        self._on_progress = on_progress
        self._cancellation = cancellation
        self._deadline = deadline
        self._on_close = on_close
        self._closed = False
        self.bytes_copied = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _chunks(self) -> Iterator[bytes]:
        source = self._source
        size = self.buffer_size
        if isinstance(source, bytes):
            for start in range(0, len(source), size):
                yield source[start : start + size]
        elif hasattr(source, "read"):
            while True:
                chunk = source.read(size)
                if not chunk:
                    break
                yield chunk
        elif isinstance(source, Iterable):
            yield from _rechunk(source, size)
        else:
            raise TypeError(f"Unsupported content source: {type(source).__name__}")

    async def _achunks(self) -> AsyncIterator[bytes]:
        source = self._source
        if isinstance(source, AsyncIterable):
            async for chunk in _arechunk(source, self.buffer_size):
                yield chunk
        elif hasattr(source, "read") and inspect.iscoroutinefunction(source.read):
            while True:
                chunk = await source.read(self.buffer_size)
                if not chunk:
                    break
                yield chunk
        else:
            for chunk in self._chunks():
                yield chunk

    def _advance(self, chunk: bytes) -> None:
        self.bytes_copied += len(chunk)
        if self._on_progress is not None:
            self._on_progress(ProgressEvent(current_bytes=self.bytes_copied, total_bytes=self.total))

    def _check_cancelled(self) -> None:
        if self._cancellation is not None:
            self._cancellation.raise_if_cancelled()
        if self._deadline is not None and time.perf_counter() > self._deadline:
            raise FluentRestTimeoutError("Request exceeded its timeout")

    def __iter__(self) -> Iterator[bytes]:
        self.bytes_copied = 0
        for chunk in self._chunks():
            self._advance(chunk)
            yield chunk
            self._check_cancelled()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        self.bytes_copied = 0
        async for chunk in self._achunks():
            self._advance(chunk)
            yield chunk
            self._check_cancelled()

    def copy_to(self, sink: Any) -> int:
        """Write every chunk to ``sink`` and return the number of bytes copied."""
        for chunk in self:
            sink.write(chunk)
        return self.bytes_copied

    async def acopy_to(self, sink: Any) -> int:
        async for chunk in self:
            written = sink.write(chunk)
            if inspect.isawaitable(written):
                await written
        return self.bytes_copied

    def read_all(self) -> bytes:
        return b"".join(self)

    async def aread_all(self) -> bytes:
        return b"".join([chunk async for chunk in self])

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._source, "close", None)
        if callable(close):
            close()
        if self._on_close is not None:
            self._on_close()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        if callable(aclose):
            await aclose()
        else:
            close = getattr(self._source, "close", None)
            if callable(close):
                result = close()
                if inspect.isawaitable(result):
                    await result
        if self._on_close is not None:
            result = self._on_close()
            if inspect.isawaitable(result):
                await result

    def __enter__(self) -> "ProgressStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def __aenter__(self) -> "ProgressStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
