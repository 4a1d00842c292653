from __future__ import annotations


class User:
    """A registered account. The password hash never leaves the process via ``to_dict``."""

    def __init__(self, id: str, username: str, email: str, password_hash: str,
                 is_librarian: bool = False, created_at: str | None = None) -> None:
        self.id = id
        self.username = username.strip()
        self.email = email.strip()
        self.password_hash = password_hash
        self.is_librarian = bool(is_librarian)
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.username} <{self.email}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "is_librarian": self.is_librarian,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_row(row: dict) -> "User":
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_librarian=bool(row.get("is_librarian")),
            created_at=row.get("created_at"),
        )
