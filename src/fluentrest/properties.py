"""Builder defaults, optionally read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .exceptions import FluentRestValidationError
from .progress import DEFAULT_BUFFER_SIZE

DEFAULT_TIMEOUT = 100.0

ENDPOINT_ENV_VAR = "FLUENTREST_ENDPOINT"
TIMEOUT_ENV_VAR = "FLUENTREST_TIMEOUT"
BUFFER_SIZE_ENV_VAR = "FLUENTREST_BUFFER_SIZE"


@dataclass(frozen=True)
class RestProperties:
    endpoint: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    buffer_size: int = DEFAULT_BUFFER_SIZE
    follow_redirects: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RestProperties":
        env = os.environ if environ is None else environ
        try:
            timeout = float(env.get(TIMEOUT_ENV_VAR) or DEFAULT_TIMEOUT)
            buffer_size = int(env.get(BUFFER_SIZE_ENV_VAR) or DEFAULT_BUFFER_SIZE)
        except ValueError as exc:
            raise FluentRestValidationError(f"Invalid fluentrest environment setting: {exc}", cause=exc) from exc
        return cls(
            endpoint=env.get(ENDPOINT_ENV_VAR) or None,
            timeout=timeout,
            buffer_size=buffer_size,
        )
