"""Error hierarchy for the directory cache."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Base exception for cache-related errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class CacheBackendError(CacheError):
    """
    Exception raised when a storage backend operation fails.

    Provides a consistent error interface across the different
    storage implementations.
    """

    def __init__(
        self,
        message: str,
        backend_type: str = "unknown",
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, cause=original_error)
        self.backend_type = backend_type
        self.original_error = original_error

        if original_error:
            logger.error(
                f"Cache backend error in {backend_type}: {message} (caused by: {original_error})"
            )
        else:
            logger.error(f"Cache backend error in {backend_type}: {message}")

    def __str__(self) -> str:
        """Return string representation of the error."""
        base_msg = super().__str__()
        if self.original_error:
            return f"{base_msg} (caused by: {self.original_error})"
        return base_msg


class MetadataConflictError(CacheError):
    """Sync metadata was written by someone else since it was read."""

    def __init__(self, expected_version: int, actual_version: int):
        super().__init__(
            f"Sync metadata version conflict: expected {expected_version}, found {actual_version}"
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class CacheConfigurationError(CacheError):
    """Error in cache configuration."""

    pass


class DirectoryLoaderError(CacheError):
    """Error loading records from the upstream directory."""

    def __init__(
        self, message: str, status_code: Optional[int] = None, cause: Optional[Exception] = None
    ):
        super().__init__(message, cause=cause)
        self.status_code = status_code


class InvalidCursorError(DirectoryLoaderError):
    """The continuation cursor was rejected as invalid or expired."""

    pass


class AuthenticationError(DirectoryLoaderError):
    """Credentials were rejected or a token could not be acquired."""

    pass
