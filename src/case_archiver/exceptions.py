"""Custom exception hierarchy for the case archiver."""

from typing import Any, Optional


class ArchiverError(Exception):
    """Base exception for all case archiver errors."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize archiver error.

        Args:
            message: Error message
            correlation_id: Optional correlation ID for tracing
            context: Optional context dictionary with additional details
        """
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.correlation_id:
            parts.append(f"[correlation_id={self.correlation_id}]")
        if self.context:
            parts.append(f"[context={self.context}]")
        return " ".join(parts)


class ConfigurationError(ArchiverError):
    """Configuration-related errors."""

    pass


class DatabaseError(ArchiverError):
    """Database-related errors."""

    pass


class DuplicateAttemptError(DatabaseError):
    """An archive attempt already exists for the (document, case) pair."""

    pass


class LockError(ArchiverError):
    """Single-flight run lock errors."""

    pass


class SourceError(ArchiverError):
    """Case export source errors (after retries are exhausted)."""

    pass


class MetadataError(ArchiverError):
    """Archive metadata could not be built for a document."""

    pass


class UnknownFileTypeError(MetadataError):
    """Document has no extension and its content matches no known file type."""

    pass


# Substrings the archive returns when it rejects an attachment's extension or format
FORMAT_ERROR_MARKERS = ("extension must be valid", "file format")


class ArchiveError(ArchiverError):
    """Archive sink rejected or failed to store a document."""

    def __init__(
        self,
        reason: str,
        *,
        status: Optional[int] = None,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize archive error.

        Args:
            reason: Reason reported by the archive (or transport error text)
            status: HTTP status returned by the archive, if any
            correlation_id: Optional correlation ID for tracing
            context: Optional context dictionary with additional details
        """
        super().__init__(
            f"Archive request failed: {reason}",
            correlation_id=correlation_id,
            context=context,
        )
        self.reason = reason
        self.status = status

    @property
    def is_format_error(self) -> bool:
        """Whether the archive rejected the document's extension or file format."""
        reason = (self.reason or "").lower()
        return any(marker in reason for marker in FORMAT_ERROR_MARKERS)


class NotFoundError(ArchiverError):
    """Requested batch run does not exist."""

    pass


class ConflictError(ArchiverError):
    """Requested operation conflicts with the current state (e.g. rerun of a completed run)."""

    pass
