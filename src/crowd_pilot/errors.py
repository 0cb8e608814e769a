"""Error hierarchy for the serializer."""

from __future__ import annotations


class SerializerError(Exception):
    """Base class for every error raised by crowd-pilot."""


class InvalidStateError(SerializerError):
    """Raised when the manager is driven outside its lifecycle.

    Ingestion after finalize, or a second mutation entering while one is
    still running (callers must serialize calls themselves).
    """


class MalformedEventError(SerializerError):
    """Raised when a session-log row cannot be parsed or arrives out of order."""

    def __init__(self, message: str, *, source: str | None = None, row: int | None = None) -> None:
        self.source = source
        self.row = row
        location = ""
        if source is not None:
            location = f" ({source}" + (f", row {row})" if row is not None else ")")
        super().__init__(f"{message}{location}")


class TokenizerUnavailableError(SerializerError):
    """Raised when a token-counting backend fails or cannot be loaded."""
