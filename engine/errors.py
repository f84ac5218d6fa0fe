"""
engine/errors.py -- Exception hierarchy for the Authorio engine.

Every failure that can come out of a mutation path derives from
``AuthorioError`` so that the autosave layer can catch a single base class
and turn it into a visible save status.
"""

from __future__ import annotations


class AuthorioError(Exception):
    """Base class for all engine errors."""


class StorageError(AuthorioError):
    """A persistence call failed.

    Parameters
    ----------
    message : str
        Human-readable reason, usually the server's ``error`` field.
    status : int | None
        HTTP status code when the failure came from the REST backend.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class NetworkError(StorageError):
    """The storage backend could not be reached."""


class AuthenticationError(StorageError):
    """The bearer token was rejected (HTTP 401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status=401)


class NotFoundError(StorageError):
    """The target entity no longer exists (HTTP 404 or unknown id)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status=404)


class EntityLockedError(AuthorioError):
    """A field change was attempted on a locked entity."""

    def __init__(self, entity_id: str):
        super().__init__(f"Entity {entity_id!r} is locked")
        self.entity_id = entity_id
