import os
import tempfile

# Settings are read at import time, so test overrides must be in place before
# any project module is imported.
os.environ.setdefault("LIBRARY_DB_FILE", os.path.join(tempfile.gettempdir(), f"library_test_{os.getpid()}.db"))
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")

import sqlite3
from unittest.mock import patch

import pytest

from accounts import Accounts
from auth import Identity
from database import get_db_connection
from library import Library


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file):
    return Library(db_file=db_file)


@pytest.fixture
def accounts(db_file):
    return Accounts(db_file=db_file)


@pytest.fixture
def librarian():
    return Identity(user_id="a" * 32, is_librarian=True)


@pytest.fixture
def alice():
    return Identity(user_id="b" * 32)


@pytest.fixture
def bob():
    return Identity(user_id="c" * 32)


class FailingConnection:
    """Real connection that raises a store error on statements starting with ``fail_on``."""

    def __init__(self, db_file, fail_on):
        self._conn = get_db_connection(db_file)
        self._fail_on = fail_on

    def execute(self, sql, params=()):
        if sql.strip().startswith(self._fail_on):
            raise sqlite3.OperationalError("disk I/O error")
        return self._conn.execute(sql, params)

    def close(self):
        self._conn.close()


@pytest.fixture
def failing_store():
    # Patch an engine's _connect so one statement fails mid-transaction
    def _failing_store(engine, fail_on):
        return patch.object(
            engine, "_connect", side_effect=lambda: FailingConnection(engine.db_file, fail_on)
        )
    return _failing_store
