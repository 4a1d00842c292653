import pytest
from fastapi.testclient import TestClient

import api as api_module
from accounts import Accounts
from library import Library


@pytest.fixture
def client(db_file, monkeypatch):
    # Point the module-level engines at a per-test database
    monkeypatch.setattr(api_module, "library", Library(db_file=db_file))
    monkeypatch.setattr(api_module, "accounts", Accounts(db_file=db_file))
    with TestClient(api_module.app) as test_client:
        yield test_client


def _register(client, username, password="secret1"):
    response = client.post("/users", json={
        "username": username,
        "email": f"{username}@example.com",
        "password": password,
    })
    assert response.status_code == 201, response.text
    return response.json()


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def librarian_headers(client):
    _, token = api_module.accounts.register("libby", "libby@example.com", "secret1", is_librarian=True)
    return _auth(token)


@pytest.fixture
def book_id(client, librarian_headers):
    response = client.post("/books", headers=librarian_headers,
                           json={"title": "X", "author": "Y", "isbn": "123", "quantity": 1})
    assert response.status_code == 201
    return response.json()["id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["db"] is True


def test_get_books_empty(client):
    response = client.get("/books")
    assert response.status_code == 200
    assert response.json() == []


# --- Scenario 1: book creation ---
def test_create_book_as_librarian(client, librarian_headers):
    response = client.post("/books", headers=librarian_headers,
                           json={"title": "X", "author": "Y", "isbn": "123", "quantity": 1})
    assert response.status_code == 201
    body = response.json()
    assert body["title"] == "X"
    assert body["quantity"] == 1
    assert body["borrowers"] == []


def test_create_book_as_member_forbidden(client):
    token = _register(client, "alice")["token"]
    response = client.post("/books", headers=_auth(token),
                           json={"title": "X", "author": "Y", "isbn": "123", "quantity": 1})
    assert response.status_code == 403
    assert response.json()["kind"] == "forbidden"


def test_create_book_without_token(client):
    response = client.post("/books", json={"title": "X", "author": "Y", "isbn": "123", "quantity": 1})
    assert response.status_code == 401
    assert response.json() == {"kind": "unauthenticated", "message": "No authorization header"}


def test_create_book_validation(client, librarian_headers):
    response = client.post("/books", headers=librarian_headers,
                           json={"title": "  ", "author": "Y", "isbn": "123", "quantity": -1})
    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "validation_error"
    assert {e["field"] for e in body["errors"]} == {"title", "quantity"}


def test_create_book_quantity_beyond_storage_range(client, librarian_headers):
    response = client.post("/books", headers=librarian_headers,
                           json={"title": "X", "author": "Y", "isbn": "123", "quantity": 2 ** 63})
    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "validation_error"
    assert body["errors"][0]["field"] == "quantity"
    assert client.get("/books").json() == []


def test_create_book_duplicate_isbn(client, librarian_headers, book_id):
    response = client.post("/books", headers=librarian_headers,
                           json={"title": "Other", "author": "Z", "isbn": "123", "quantity": 1})
    assert response.status_code == 409


def test_get_book(client, book_id):
    response = client.get(f"/books/{book_id}")
    assert response.status_code == 200
    assert response.json()["id"] == book_id


def test_get_book_bad_id(client):
    response = client.get("/books/not-an-id")
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "bookId"


def test_get_book_not_found(client):
    response = client.get(f"/books/{'f' * 32}")
    assert response.status_code == 404


# --- Scenario 2: registration and login ---
def test_register_and_login(client):
    body = _register(client, "alice")
    assert body["token"]
    assert body["user"]["username"] == "alice"
    assert "password" not in body["user"]
    assert "password_hash" not in body["user"]

    wrong = client.post("/users/login", json={"email": "alice@example.com", "password": "nope123"})
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "Invalid email or password"

    unknown = client.post("/users/login", json={"email": "nobody@example.com", "password": "secret1"})
    assert unknown.status_code == 401
    assert unknown.json()["message"] == wrong.json()["message"]

    ok = client.post("/users/login", json={"email": "alice@example.com", "password": "secret1"})
    assert ok.status_code == 200
    assert ok.json()["user"]["id"] == body["user"]["id"]
    assert ok.json()["token"]


def test_register_duplicate_email(client):
    _register(client, "alice")
    response = client.post("/users", json={"username": "other", "email": "alice@example.com", "password": "secret1"})
    assert response.status_code == 409


def test_register_short_password(client):
    response = client.post("/users", json={"username": "alice", "email": "alice@example.com", "password": "abc"})
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "password"


def test_register_cannot_self_promote(client):
    response = client.post("/users", json={
        "username": "sneaky", "email": "sneaky@example.com", "password": "secret1", "is_librarian": True,
    })
    assert response.status_code == 201
    assert response.json()["user"]["is_librarian"] is False


# --- Scenario 3: borrowing the last copy ---
def test_borrow_last_copy(client, book_id):
    alice = _register(client, "alice")["token"]
    bob = _register(client, "bob")["token"]

    response = client.post(f"/books/borrow/{book_id}", headers=_auth(alice))
    assert response.status_code == 200
    assert client.get(f"/books/{book_id}").json()["quantity"] == 0

    response = client.post(f"/books/borrow/{book_id}", headers=_auth(bob))
    assert response.status_code == 400
    assert response.json()["kind"] == "unavailable"


def test_borrow_requires_token(client, book_id):
    assert client.post(f"/books/borrow/{book_id}").status_code == 401
    bad = client.post(f"/books/borrow/{book_id}", headers={"Authorization": "Token abc"})
    assert bad.status_code == 401
    assert bad.json()["message"] == "Invalid authorization header"
    forged = client.post(f"/books/borrow/{book_id}", headers=_auth("not.a.token"))
    assert forged.status_code == 401
    assert forged.json()["message"] == "Invalid token"


def test_borrow_unknown_book(client):
    token = _register(client, "alice")["token"]
    assert client.post(f"/books/borrow/{'f' * 32}", headers=_auth(token)).status_code == 404


def test_borrow_twice_conflicts(client, librarian_headers):
    created = client.post("/books", headers=librarian_headers,
                          json={"title": "X", "author": "Y", "isbn": "999", "quantity": 2}).json()
    token = _register(client, "alice")["token"]
    assert client.post(f"/books/borrow/{created['id']}", headers=_auth(token)).status_code == 200
    assert client.post(f"/books/borrow/{created['id']}", headers=_auth(token)).status_code == 409


# --- Scenario 4: return ---
def test_borrow_then_return(client, book_id):
    alice = _register(client, "alice")
    headers = _auth(alice["token"])
    user_id = alice["user"]["id"]

    assert client.post(f"/books/borrow/{book_id}", headers=headers).status_code == 200

    response = client.post(f"/books/return/{book_id}", headers=headers, params={"userId": user_id})
    assert response.status_code == 200
    book = client.get(f"/books/{book_id}").json()
    assert book["quantity"] == 1
    assert user_id not in book["borrowers"]

    again = client.post(f"/books/return/{book_id}", headers=headers, params={"userId": user_id})
    assert again.status_code == 400
    assert again.json()["kind"] == "not_borrowed"


def test_return_with_other_user_id_forbidden(client, book_id):
    alice = _register(client, "alice")
    bob = _register(client, "bob")
    client.post(f"/books/borrow/{book_id}", headers=_auth(alice["token"]))

    response = client.post(f"/books/return/{book_id}", headers=_auth(bob["token"]),
                           params={"userId": alice["user"]["id"]})
    assert response.status_code == 403
    assert client.get(f"/books/{book_id}").json()["quantity"] == 0


def test_return_unknown_book_with_other_user_id_is_not_found(client):
    alice = _register(client, "alice")
    bob = _register(client, "bob")

    response = client.post(f"/books/return/{'f' * 32}", headers=_auth(alice["token"]),
                           params={"userId": bob["user"]["id"]})
    assert response.status_code == 404


# --- Scenario 5: availability listing ---
def test_list_excludes_fully_borrowed(client, librarian_headers, book_id):
    other = client.post("/books", headers=librarian_headers,
                        json={"title": "Z", "author": "W", "isbn": "456", "quantity": 2}).json()
    token = _register(client, "alice")["token"]
    client.post(f"/books/borrow/{book_id}", headers=_auth(token))

    ids = [b["id"] for b in client.get("/books").json()]
    assert ids == [other["id"]]


def test_list_user_books(client, book_id):
    alice = _register(client, "alice")
    bob = _register(client, "bob")
    client.post(f"/books/borrow/{book_id}", headers=_auth(alice["token"]))

    own = client.get(f"/books/users/{alice['user']['id']}/books", headers=_auth(alice["token"]))
    assert own.status_code == 200
    assert [b["id"] for b in own.json()] == [book_id]

    other = client.get(f"/books/users/{alice['user']['id']}/books", headers=_auth(bob["token"]))
    assert other.status_code == 403


# --- Store failures ---
def test_borrow_store_failure_returns_generic_500(client, book_id, failing_store):
    token = _register(client, "alice")["token"]

    with failing_store(api_module.library, "INSERT INTO loans"):
        response = client.post(f"/books/borrow/{book_id}", headers=_auth(token))

    assert response.status_code == 500
    assert response.json() == {"kind": "internal_error", "message": "Server error"}
    assert "disk" not in response.text
    book = client.get(f"/books/{book_id}").json()
    assert book["quantity"] == 1
    assert book["borrowers"] == []


def test_unexpected_error_returns_generic_500(client, monkeypatch):
    def explode():
        raise RuntimeError("secret internals")

    monkeypatch.setattr(api_module.library, "list_available", explode)
    quiet_client = TestClient(api_module.app, raise_server_exceptions=False)

    response = quiet_client.get("/books")

    assert response.status_code == 500
    assert response.json() == {"kind": "internal_error", "message": "Server error"}
    assert "secret internals" not in response.text
