"""Error taxonomy shared by the comparable search and market pulse paths.

Partial/unparsed addresses and cache misses are data states, not errors,
so they have no class here.
"""


class CmaEngineError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(CmaEngineError):
    """A required setting (API key, office id) is missing.

    Raised before any network call is attempted.
    """


class UpstreamError(CmaEngineError):
    """The upstream listing API did not produce a usable payload."""

    def __init__(self, message: str, status_code: int | None = None, attempts: int = 0):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


class UpstreamPermanentError(UpstreamError):
    """4xx response or an unreadable 2xx body. Never retried."""


class UpstreamTransientError(UpstreamError):
    """5xx responses or network failures that outlived the retry budget or deadline."""
