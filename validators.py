import re
from typing import Any, Optional

from errors import ValidationError

_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# largest value an SQLite INTEGER column can hold
MAX_QUANTITY = 2 ** 63 - 1


class IdValidator:
    """Identifiers are lowercase hex UUIDs (``uuid4().hex``)."""

    @staticmethod
    def is_valid_id(value: Optional[str]) -> bool:
        if not value:
            return False
        return bool(_ID_RE.match(value))

    @staticmethod
    def require_valid_id(value: Optional[str], field: str = "id") -> str:
        if not IdValidator.is_valid_id(value):
            raise ValidationError.for_field(field, f"{field} must be a valid identifier")
        return value


class TextValidator:
    """Basic text checks used by the engines before touching the store."""

    @staticmethod
    def require_text(value: Any, field: str, label: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError.for_field(field, f"{label} is required")
        return value.strip()

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if email is None:
            return False
        return bool(_EMAIL_RE.match(email.strip()))

    @staticmethod
    def require_quantity(value: Any, field: str = "quantity") -> int:
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int) or value < 0 or value > MAX_QUANTITY:
            raise ValidationError.for_field(field, "Quantity must be a non-negative integer")
        return value
