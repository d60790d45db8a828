"""Integration helpers for external services."""

from .readeck import (
    BackendError,
    BackendProtocolError,
    BackendRejected,
    BackendTimeout,
    BackendUnavailable,
    ReadeckClient,
    ReadeckClientPool,
)

__all__ = [
    "BackendError",
    "BackendProtocolError",
    "BackendRejected",
    "BackendTimeout",
    "BackendUnavailable",
    "ReadeckClient",
    "ReadeckClientPool",
]
