"""
Error taxonomy for the Happen data layer.

Store errors (pymongo) are not wrapped; they propagate to the caller after
being logged where they happen.
"""
from typing import Any, Dict, List, Optional


class HappenError(Exception):
    """Base class for errors raised by the model layer."""


class NotFoundError(HappenError):
    pass


class ValidationError(HappenError):
    """Raised before any write when a payload is missing or malformed."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class PermissionDeniedError(HappenError):
    pass


class DuplicateError(HappenError):
    pass


class ConflictError(HappenError):
    pass
