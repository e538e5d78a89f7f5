"""Error taxonomy shared by the engine and the HTTP layer."""

from __future__ import annotations

from typing import Optional


class AnalyticsError(RuntimeError):
    """Base error; ``message`` is safe to show to API clients."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AnalyticsError):
    """Malformed or out-of-policy input, detected before any I/O."""

    status_code = 400


class ExecutionError(AnalyticsError):
    """The fact store failed or the request ran out of time."""

    status_code = 502
