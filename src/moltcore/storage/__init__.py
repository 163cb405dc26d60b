"""JSON file storage."""

from .storage import NotFoundError, Storage

__all__ = ["Storage", "NotFoundError"]
