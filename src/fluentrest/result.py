"""Result envelope returned by every execution method."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Generic, Mapping, TypeVar

import httpx

from .exceptions import FluentRestCancelledError
from .progress import ProgressStream

T = TypeVar("T")


def _empty_headers() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(frozen=True)
class RestResult(Generic[T]):
    """Outcome of one execution.

    HTTP error statuses are ordinary results; ``exception`` is only set when no
    usable response could be produced (transport failure, cancellation, codec
    failure). Header names are lower-cased.
    """

    status_code: int | None = None
    reason_phrase: str = ""
    http_version: str | None = None
    headers: Mapping[str, str] = field(default_factory=_empty_headers)
    content: T | None = None
    string_content: str | None = None
    exception: Exception | None = None
    elapsed: timedelta = timedelta(0)
    url: str | None = None
    attempts: int = field(default=1, compare=False)

    @property
    def is_success(self) -> bool:
        if self.exception is not None or self.status_code is None:
            return False
        return 200 <= self.status_code < 300

    @property
    def is_cancelled(self) -> bool:
        return isinstance(self.exception, FluentRestCancelledError)

    @classmethod
    def from_response(
        cls,
        response: httpx.Response,
        *,
        content: Any = None,
        string_content: str | None = None,
        elapsed: timedelta = timedelta(0),
        attempts: int = 1,
    ) -> "RestResult[Any]":
        return cls(
            status_code=response.status_code,
            reason_phrase=response.reason_phrase,
            http_version=response.http_version,
            headers=MappingProxyType(dict(response.headers)),
            content=content,
            string_content=string_content,
            elapsed=elapsed,
            url=str(response.request.url),
            attempts=attempts,
        )

    @classmethod
    def from_exception(
        cls,
        exception: Exception,
        *,
        url: str | None = None,
        elapsed: timedelta = timedelta(0),
    ) -> "RestResult[Any]":
        return cls(exception=exception, url=url, elapsed=elapsed)

    def close(self) -> None:
        """Release an open response stream, if this result holds one."""
        if isinstance(self.content, ProgressStream):
            self.content.close()

    async def aclose(self) -> None:
        if isinstance(self.content, ProgressStream):
            await self.content.aclose()

    def __enter__(self) -> "RestResult[T]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def __aenter__(self) -> "RestResult[T]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
