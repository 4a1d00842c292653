import logging
import sqlite3
import uuid
from typing import Optional, Tuple

import bcrypt

from auth import issue_token
from config import Settings, settings as default_settings
from database import get_db_connection, initialize_database, transaction
from errors import Conflict, InternalError, Unauthenticated, ValidationError
from user import User
from validators import TextValidator

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72
INVALID_CREDENTIALS = "Invalid email or password"


class Accounts:
    """Registers users and exchanges email/password for a bearer token."""

    def __init__(self, db_file: Optional[str] = None, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings
        self.db_file = db_file or self.settings.database_file
        # checked against on unknown-email logins so they cost the same as a wrong password
        self._dummy_hash = self._hash_password(uuid.uuid4().hex).encode("utf-8")
        initialize_database(self.db_file)

    # ------------------------- Core operations ------------------------- #
    def register(self, username: str, email: str, password: str,
                 is_librarian: bool = False) -> Tuple[User, str]:
        """Create a user and return it together with a fresh token."""
        username = TextValidator.require_text(username, "username", "Username")
        email = TextValidator.require_text(email, "email", "Email")
        if not TextValidator.is_valid_email(email):
            raise ValidationError.for_field("email", "Email must be a valid email address")
        self._validate_password(password)

        user = User(
            id=uuid.uuid4().hex,
            username=username,
            email=email,
            password_hash=self._hash_password(password),
            is_librarian=is_librarian,
        )

        conn = self._connect()
        try:
            with transaction(conn):
                if conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone():
                    raise Conflict("Email already in use")
                if conn.execute("SELECT 1 FROM users WHERE username = ?", (username,)).fetchone():
                    raise Conflict("Username already in use")
                conn.execute(
                    "INSERT INTO users (id, username, email, password_hash, is_librarian) VALUES (?, ?, ?, ?, ?)",
                    (user.id, user.username, user.email, user.password_hash, int(user.is_librarian)),
                )
            row = conn.execute("SELECT created_at FROM users WHERE id = ?", (user.id,)).fetchone()
            if row:
                user.created_at = row["created_at"]
        except sqlite3.IntegrityError as e:
            raise Conflict("Email or username already in use") from e
        except sqlite3.Error as e:
            logger.error(f"Failed to register user: {e}")
            raise InternalError() from e
        finally:
            conn.close()

        logger.info(f"Registered user {user.id} (librarian={user.is_librarian})")
        return user, issue_token(user, self.settings)

    def login(self, email: str, password: str) -> Tuple[User, str]:
        """Verify credentials and issue a fresh token.

        Unknown email and wrong password produce the same error, and an unknown
        email still pays for a bcrypt check so the two cases take similar time.
        """
        user = self.find_user_by_email(email) if isinstance(email, str) else None
        if user is None:
            self._check_password(password, self._dummy_hash)
            logger.warning("Login failed")
            raise Unauthenticated(INVALID_CREDENTIALS)
        if not self._check_password(password, user.password_hash.encode("utf-8")):
            logger.warning(f"Login failed for user {user.id}")
            raise Unauthenticated(INVALID_CREDENTIALS)
        return user, issue_token(user, self.settings)

    def find_user(self, user_id: str) -> Optional[User]:
        return self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self._fetch_one("SELECT * FROM users WHERE email = ?", (email.strip(),))

    # ------------------------- Password helpers ------------------------- #
    def _validate_password(self, password: str) -> None:
        min_length = self.settings.password_min_length
        if not isinstance(password, str) or len(password.strip()) < min_length:
            raise ValidationError.for_field(
                "password", f"Password must be at least {min_length} characters long"
            )
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError.for_field(
                "password", f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"
            )

    def _hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.settings.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _check_password(password: str, hashed: bytes) -> bool:
        if not isinstance(password, str):
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed)
        except ValueError:
            # over-long password or unparseable stored hash
            return False

    # ------------------------- Persistence ------------------------- #
    def _connect(self) -> sqlite3.Connection:
        return get_db_connection(self.db_file, timeout=self.settings.database_timeout)

    def _fetch_one(self, query: str, params: tuple) -> Optional[User]:
        conn = self._connect()
        try:
            row = conn.execute(query, params).fetchone()
            return User.from_row(dict(row)) if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to load user: {e}")
            raise InternalError() from e
        finally:
            conn.close()
