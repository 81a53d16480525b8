"""Exception hierarchy for the OneNote migration pipeline.

Recovery is as local as the failure allows: attachment and page failures are
reported and the run continues, while the ImportAbortedError family and
UnauthenticatedError terminate the whole import.
"""

from typing import Optional


class MigrationError(Exception):
    """Base exception for all migration errors."""
    pass


class UnauthenticatedError(MigrationError):
    """Raised when no usable credential exists (no refresh token, failed sign-in)."""

    def __init__(self, message: str = "Not signed in: no refresh token is available"):
        super().__init__(message)


class ApiError(MigrationError):
    """Raised when the Graph API answers with an error status."""

    def __init__(
        self,
        url: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        message: Optional[str] = None
    ):
        details = f"HTTP {status_code}" if status_code is not None else "request failed"
        if error_code:
            details += f" (code {error_code})"
        if message:
            details += f": {message}"
        super().__init__(f"{details} for {url}")
        self.url = url
        self.status_code = status_code
        self.error_code = error_code


class UnauthorizedError(ApiError):
    """Expired or invalid access token; recovered by refreshing."""
    pass


class RateLimitedError(ApiError):
    """Provider throttling; recovered by backing off."""
    pass


class OtherApiError(ApiError):
    """Any other API error; retried within the bounded budget."""
    pass


class TransientNetworkError(MigrationError):
    """Connection or timeout failure after the retry budget was spent."""

    def __init__(self, url: str, cause: Exception):
        super().__init__(f"Network error for {url}: {cause}")
        self.url = url
        self.cause = cause


class PathResolutionError(MigrationError):
    """Raised when an entity cannot be found in the hierarchy forest."""

    def __init__(self, entity_id: str):
        super().__init__(f"Could not resolve an output path for entity {entity_id}")
        self.entity_id = entity_id


class AttachmentError(MigrationError):
    """Raised when a single attachment cannot be downloaded or saved."""
    pass


class TransformError(MigrationError):
    """Raised when page content cannot be transformed to markdown."""
    pass


class ImportAbortedError(MigrationError):
    """Base for conditions that terminate the whole import."""
    pass


class StallTimeoutError(ImportAbortedError):
    """No fetch has succeeded for longer than the stall timeout."""

    def __init__(self, elapsed: float, timeout: float):
        super().__init__(
            f"No request has succeeded for {elapsed:.0f}s (limit {timeout:.0f}s); aborting import"
        )
        self.elapsed = elapsed
        self.timeout = timeout


class ConsecutiveFailureError(ImportAbortedError):
    """Too many pages failed back to back."""

    def __init__(self, failures: int):
        super().__init__(
            f"Import cancelled after {failures} consecutive page failures (failure threshold reached)"
        )
        self.failures = failures


class ImportCancelledError(ImportAbortedError):
    """The user cancelled the import."""

    def __init__(self, message: str = "Import cancelled by user"):
        super().__init__(message)


__all__ = [
    'MigrationError',
    'UnauthenticatedError',
    'ApiError',
    'UnauthorizedError',
    'RateLimitedError',
    'OtherApiError',
    'TransientNetworkError',
    'PathResolutionError',
    'AttachmentError',
    'TransformError',
    'ImportAbortedError',
    'StallTimeoutError',
    'ConsecutiveFailureError',
    'ImportCancelledError',
]
