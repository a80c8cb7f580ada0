"""Lifecycle event payloads passed to builder callbacks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .result import RestResult


@dataclass
class StartEvent:
    """Fired before any network activity. Set ``cancel`` to abort the call."""

    url: str
    payload: Any = None
    cancel: bool = False


@dataclass(frozen=True)
class ProgressEvent:
    current_bytes: int
    total_bytes: int

    @property
    def fraction(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.current_bytes / self.total_bytes

    @property
    def percentage(self) -> int:
        return int(self.fraction * 100)


@dataclass(frozen=True)
class PreviewContentEvent:
    content: str
    content_type: type | None = None


@dataclass(frozen=True)
class PreCompletedEvent:
    result: RestResult[Any]
    is_completed: bool = True


@dataclass(frozen=True)
class CompletedEvent:
    result: RestResult[Any]
    elapsed: timedelta = timedelta(0)
