"""
nextup/errors.py - Error taxonomy

Every error the coordination core raises derives from NextupError so the CLI
and callers can catch the family in one place.
"""


class NextupError(Exception):
    """Base class for all NextUp errors."""


class ValidationError(NextupError):
    """Malformed or missing caller input. Never sent upstream."""


class ConfigurationError(NextupError):
    """Missing credentials or endpoint. Raised before any network attempt."""


class TransportError(NextupError):
    """A request/response call failed (network error or non-2xx status)."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class OverlayConnectionError(NextupError, ConnectionError):
    """The live overlay connection failed, timed out, or closed unexpectedly."""


class StateError(NextupError):
    """Operation attempted while a precondition (e.g. connected) does not hold."""
