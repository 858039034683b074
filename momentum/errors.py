"""
Exception hierarchy shared by the engines and the storage adapters.

Hard failures (a persistence error on the primary read/write of a user
action) propagate as these exceptions. Soft failures are caught at the
call site and turned into SoftFailure values instead.
"""

from __future__ import annotations


class MomentumError(Exception):
    """Base class for all engine errors."""


class StorageError(MomentumError):
    """A persistence operation failed."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message)
        self.table = table


class NotFoundError(StorageError):
    """A row that must exist was not found."""


class InvalidTransitionError(MomentumError):
    """A status change that the entity's lifecycle does not allow."""


class NotAuthenticatedError(MomentumError):
    """An operation needed a signed-in user and there was none."""


__all__ = [
    "MomentumError",
    "StorageError",
    "NotFoundError",
    "InvalidTransitionError",
    "NotAuthenticatedError",
]
