"""Fetchers package for retrieving OneNote content through Microsoft Graph."""

from .errors import (
    ApiError,
    ConsecutiveFailureError,
    ImportAbortedError,
    ImportCancelledError,
    MigrationError,
    OtherApiError,
    PathResolutionError,
    RateLimitedError,
    StallTimeoutError,
    TransientNetworkError,
    UnauthenticatedError,
    UnauthorizedError,
)
from .auth_session import AuthSession
from .graph_client import GraphClient, RetryPolicy, SessionHealth
from .hierarchy_indexer import HierarchyIndexer

__all__ = [
    'ApiError',
    'AuthSession',
    'ConsecutiveFailureError',
    'GraphClient',
    'HierarchyIndexer',
    'ImportAbortedError',
    'ImportCancelledError',
    'MigrationError',
    'OtherApiError',
    'PathResolutionError',
    'RateLimitedError',
    'RetryPolicy',
    'SessionHealth',
    'StallTimeoutError',
    'TransientNetworkError',
    'UnauthenticatedError',
    'UnauthorizedError',
]
