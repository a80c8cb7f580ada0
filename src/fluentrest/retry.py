"""Single-retry reauthentication protocol for 401 responses."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

UNAUTHORIZED = 401

RefreshCallback = Callable[[], Any]
AsyncRefreshCallback = Callable[[], Awaitable[Any]]


class RetryState(enum.Enum):
    INITIAL_ATTEMPT = "initial_attempt"
    RETRIED = "retried"
    DONE = "done"


def refresh_succeeded(outcome: Any) -> bool:
    """Interpret a refresh callback's return value.

    ``True`` or any object carrying ``status_code == 200`` (a ``RestResult`` or
    an ``httpx.Response``) counts as success.
    """
    if isinstance(outcome, bool):
        return outcome
    return getattr(outcome, "status_code", None) == 200


class ReauthenticationRetryPolicy:
    """Tracks one logical request and allows at most one reauthenticated retry.

    A policy instance must not be shared between requests: the state only moves
    forward, so once the first response has been observed no later response
    can trigger another refresh.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        refresh: RefreshCallback | None = None,
        refresh_async: AsyncRefreshCallback | None = None,
    ) -> None:
        self.enabled = enabled
        self._refresh = refresh
        self._refresh_async = refresh_async
        self.state = RetryState.INITIAL_ATTEMPT

    @property
    def can_refresh(self) -> bool:
        return self._refresh is not None or self._refresh_async is not None

    def observe(self, status_code: int) -> bool:
        """Record a response status; return True when a refresh should be attempted."""
        if self.state is not RetryState.INITIAL_ATTEMPT:
            self.state = RetryState.DONE
            return False
        if not self.enabled or status_code != UNAUTHORIZED or not self.can_refresh:
            self.state = RetryState.DONE
            return False
        return True

    def _finish_refresh(self, succeeded: bool) -> bool:
        if succeeded:
            logger.debug("Refresh callback succeeded; retrying request once")
            self.state = RetryState.RETRIED
        else:
            logger.debug("Refresh callback failed; returning unauthorized response")
            self.state = RetryState.DONE
        return succeeded

    def refresh(self) -> bool:
        """Run the refresh callback(s) from synchronous code."""
        if self.state is not RetryState.INITIAL_ATTEMPT:
            return False
        succeeded = False
        if self._refresh is not None:
            succeeded = refresh_succeeded(self._refresh())
        if not succeeded and self._refresh_async is not None:
            succeeded = refresh_succeeded(asyncio.run(_await(self._refresh_async)))
        return self._finish_refresh(succeeded)

    async def arefresh(self) -> bool:
        if self.state is not RetryState.INITIAL_ATTEMPT:
            return False
        succeeded = False
        if self._refresh is not None:
            succeeded = refresh_succeeded(self._refresh())
        if not succeeded and self._refresh_async is not None:
            succeeded = refresh_succeeded(await self._refresh_async())
        return self._finish_refresh(succeeded)


async def _await(callback: AsyncRefreshCallback) -> Any:
    return await callback()
