"""Error taxonomy shared by the engines and the HTTP layer.

Every error carries a stable ``kind`` and the HTTP status it maps to, so the
API can render a structured ``{"kind", "message"}`` body without knowing
which engine raised it.
"""

from typing import Any, Dict, List, Optional


class LibraryError(Exception):
    kind = "error"
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(LibraryError):
    """Malformed or missing input, with optional field-level messages."""

    kind = "validation_error"
    status_code = 400
    default_message = "Invalid request"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class Unauthenticated(LibraryError):
    kind = "unauthenticated"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(LibraryError):
    kind = "forbidden"
    status_code = 403
    default_message = "Not permitted"


class NotBorrowed(Forbidden):
    """Return attempted on a book the caller does not currently hold."""

    kind = "not_borrowed"
    status_code = 400
    default_message = "You have not borrowed this book"


class NotFound(LibraryError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class Conflict(LibraryError):
    kind = "conflict"
    status_code = 409
    default_message = "Already exists"


class Unavailable(LibraryError):
    kind = "unavailable"
    status_code = 400
    default_message = "Book is not available"


class InternalError(LibraryError):
    kind = "internal_error"
    status_code = 500
    default_message = "Server error"
