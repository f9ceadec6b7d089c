"""
Exception hierarchy for ISS ingestion.
Every error carries the context that was in flight when it was raised
(venue, market, board, security, cursor, window) so a failure can be
diagnosed from the log line alone.
"""
from typing import Any, Optional


class IngestError(Exception):
    """Base class for all ingestion errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = " ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"

    @classmethod
    def wrap(cls, prefix: str, cause: BaseException, **context: Any) -> "IngestError":
        """Build an error of this class around ``cause``, keeping the cause's context."""
        if isinstance(cause, IngestError):
            message = cause.message
            context = {**cause.context, **context}
        else:
            message = str(cause) or type(cause).__name__
        return cls(f"{prefix}: {message}", **context)


class DecodeError(IngestError):
    """Response payload or positional row does not match the expected shape."""


class UpstreamError(IngestError):
    """HTTP request to the ISS API failed."""


class ProtocolError(IngestError):
    """Upstream pagination contract was violated."""


class PageError(IngestError):
    """A page of a fact stream could not be fetched or decoded."""


class WindowError(IngestError):
    """A calendar window of a series could not be fetched or decoded."""


class TaxonomyError(IngestError):
    """Venue/market/board/security enumeration failed. Fatal to the run."""


class SinkWriteError(IngestError):
    """A chunk could not be written to the sink."""


class UnitFailures(IngestError):
    """One or more units of work (boards or securities) failed."""

    def __init__(self, failures: dict[str, BaseException], kind: Optional[str] = None):
        super().__init__(
            f"{len(failures)} unit(s) failed",
            kind=kind,
            units=",".join(failures),
        )
        self.failures = failures
