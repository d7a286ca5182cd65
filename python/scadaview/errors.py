"""Error types shared across scadaview.

Kept free of imports from the rest of the package so that any module can
raise or catch them without creating import cycles.
"""

from __future__ import annotations


class ScadaViewError(Exception):
    """Base class for all scadaview errors."""


class ConfigurationError(ScadaViewError):
    """Missing or invalid credential, setting, or time window preset."""


class FetchError(ScadaViewError):
    """Historical query failed in transport or while decoding the response."""

    def __init__(self, message: str, *, status: int | None = None,
                 cause: BaseException | None = None):
        super().__init__(message)
        self.status = status
        self.cause = cause


class StreamError(ScadaViewError):
    """Live update transport failed; the stream is closed."""

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class StateError(ScadaViewError):
    """Programming invariant violated (e.g. seeding an already-seeded metric)."""
