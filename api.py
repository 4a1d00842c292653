import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from accounts import Accounts
from auth import Identity, require_identity
from book import Book
from config import settings
from database import get_db_connection
from errors import InternalError, LibraryError, ValidationError
from library import Library
from user import User
from validators import MAX_QUANTITY, IdValidator

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library()
accounts = Accounts()

app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error handlers ---
@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return JSONResponse(status_code=400, content=ValidationError(errors=errors).to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=InternalError().to_dict())


# --- Models ---
class BookCreateModel(BaseModel):
    title: str = Field(min_length=1, description="Title is required")
    author: str = Field(min_length=1, description="Author is required")
    isbn: str = Field(min_length=1, description="ISBN is required")
    quantity: int = Field(ge=0, le=MAX_QUANTITY, strict=True, description="Number of copies on the shelf")

    @field_validator("title", "author", "isbn", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class BookModel(BaseModel):
    id: str
    title: str
    author: str
    isbn: str
    quantity: int
    borrowers: List[str] = []
    created_at: str | None = None


class UserCreateModel(BaseModel):
    username: str = Field(min_length=1)
    email: str = Field(min_length=3)
    # length policy lives in Accounts so it follows settings.password_min_length
    password: str
    is_librarian: bool = False

    @field_validator("username", "email", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class LoginModel(BaseModel):
    email: str = Field(min_length=1)
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class UserModel(BaseModel):
    id: str
    username: str
    email: str
    is_librarian: bool
    created_at: str | None = None


class AuthResponse(BaseModel):
    user: UserModel
    token: str


class MessageResponse(BaseModel):
    message: str


# --- Helpers ---
def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


def _auth_response(user: User, token: str) -> AuthResponse:
    return AuthResponse(user=UserModel(**user.to_dict()), token=token)


def _valid_book_id(book_id: str) -> str:
    return IdValidator.require_valid_id(book_id, "bookId")


def _valid_user_id(user_id: str) -> str:
    return IdValidator.require_valid_id(user_id, "userId")


# --- Health check ---
@app.get("/health")
def health():
    """Lightweight health endpoint that checks the database answers."""
    db_ok = True
    try:
        conn = get_db_connection(library.db_file)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception:
        logger.warning("Health check could not reach the database")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
    }


# --- Books ---
@app.post("/books", response_model=BookModel, status_code=201)
def create_book(payload: BookCreateModel, identity: Identity = Depends(require_identity)):
    book = library.create_book(
        title=payload.title,
        author=payload.author,
        isbn=payload.isbn,
        quantity=payload.quantity,
        identity=identity,
    )
    return _book_model(book)


@app.get("/books", response_model=List[BookModel])
def list_books():
    """Books that currently have at least one copy available."""
    return [_book_model(book) for book in library.list_available()]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str):
    return _book_model(library.get_book(_valid_book_id(book_id)))


@app.post("/books/borrow/{book_id}", response_model=MessageResponse)
def borrow_book(book_id: str, identity: Identity = Depends(require_identity)):
    library.borrow(_valid_book_id(book_id), identity)
    return MessageResponse(message="Book borrowed successfully")


@app.post("/books/return/{book_id}", response_model=MessageResponse)
def return_book(
    book_id: str,
    user_id: Optional[str] = Query(None, alias="userId", description="Must match the token identity if given"),
    identity: Identity = Depends(require_identity),
):
    library.return_book(_valid_book_id(book_id), identity, user_id=user_id)
    return MessageResponse(message="Book returned successfully")


@app.get("/books/users/{user_id}/books", response_model=List[BookModel])
def list_user_books(user_id: str, identity: Identity = Depends(require_identity)):
    books = library.list_borrowed_by(_valid_user_id(user_id), identity)
    return [_book_model(book) for book in books]


# --- Users ---
@app.post("/users", response_model=AuthResponse, status_code=201)
def register_user(payload: UserCreateModel):
    # librarians are created from the CLI unless public librarian signup is enabled
    user, token = accounts.register(
        username=payload.username,
        email=payload.email,
        password=payload.password,
        is_librarian=payload.is_librarian and settings.allow_librarian_signup,
    )
    return _auth_response(user, token)


@app.post("/users/login", response_model=AuthResponse)
def login_user(payload: LoginModel):
    user, token = accounts.login(payload.email, payload.password)
    return _auth_response(user, token)
