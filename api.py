import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Security
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from book import Book
from borrow_record import BorrowRecord, BorrowStatus
from config import settings
from library import BorrowRuleError, Library
from member import Member, MemberStatus

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.app_name} {settings.app_version} using database {library.db_file}")
    yield
    library.close()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- Middleware ---
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    # Lending data changes on every borrow/return
    if request.url.path.startswith(settings.api_prefix):
        response.headers["Cache-Control"] = "no-store"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


# --- Error responses ---
# Every error body is {"message": ...} so clients can show it as-is.
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)},
                        headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"message": message, "errors": jsonable_encoder(errors)})


def _raise_http(exc: Exception) -> None:
    """Translate a domain exception into an HTTPException."""
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, BorrowRuleError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise exc


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Require X-API-Key on mutating endpoints when an API key is configured."""
    if not settings.api_key:
        return None
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Models ---
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookModel(CamelModel):
    id: int
    title: str
    author: str
    isbn: str
    category: str | None = None
    total_quantity: int
    available_quantity: int
    publication_year: int | None = None


class BookCreateModel(CamelModel):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    isbn: str = Field(description="10 or 13 digits")
    category: str | None = None
    total_quantity: int = Field(default=1, ge=1)
    publication_year: int | None = None


class BookUpdateModel(CamelModel):
    title: str | None = None
    author: str | None = None
    isbn: str | None = None
    category: str | None = None
    total_quantity: int | None = Field(default=None, ge=1)
    publication_year: int | None = None


class MemberModel(CamelModel):
    id: int
    name: str
    email: str
    membership_id: str
    phone: str | None = None
    registration_date: str
    status: MemberStatus


class MemberCreateModel(CamelModel):
    name: str = Field(min_length=1)
    email: str
    phone: str | None = None


class MemberStatusModel(CamelModel):
    status: MemberStatus


class BorrowRequestModel(CamelModel):
    book_id: int
    member_id: int


class BorrowRecordModel(CamelModel):
    id: int
    book: BookModel
    member: MemberModel
    borrow_date: str
    due_date: str
    return_date: str | None = None
    fine: float
    status: BorrowStatus


class StatsModel(CamelModel):
    total_books: int
    total_members: int
    active_borrows: int
    overdue: int
    total_fines: float


class HealthModel(CamelModel):
    status: str
    timestamp: str
    db: bool
    total_books: int


class MessageModel(BaseModel):
    message: str


def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


def _member_model(member: Member) -> MemberModel:
    return MemberModel(**member.to_dict())


def _record_model(record: BorrowRecord) -> BorrowRecordModel:
    return BorrowRecordModel(
        id=record.id,
        book=_book_model(record.book),
        member=_member_model(record.member),
        borrow_date=record.borrow_date,
        due_date=record.due_date,
        return_date=record.return_date,
        fine=record.fine,
        status=record.status,
    )


router = APIRouter(prefix=settings.api_prefix)


# --- Books ---
@router.get("/books", response_model=List[BookModel])
def get_books():
    """List every book, including titles with no copies left."""
    return [_book_model(b) for b in library.list_books()]


@router.get("/books/available", response_model=List[BookModel])
def get_available_books():
    """List books with at least one copy on the shelf."""
    return [_book_model(b) for b in library.list_books(available_only=True)]


@router.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int):
    try:
        return _book_model(library.get_book(book_id))
    except LookupError as e:
        _raise_http(e)


@router.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel):
    book = Book(
        title=payload.title,
        author=payload.author,
        isbn=payload.isbn,
        category=payload.category,
        total_quantity=payload.total_quantity,
        publication_year=payload.publication_year,
    )
    try:
        return _book_model(library.add_book(book))
    except (ValueError, BorrowRuleError) as e:
        _raise_http(e)


@router.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: int, update: BookUpdateModel):
    try:
        return _book_model(library.update_book(book_id, **update.model_dump(exclude_unset=True)))
    except (ValueError, LookupError, BorrowRuleError) as e:
        _raise_http(e)


@router.delete("/books/{book_id}", response_model=MessageModel, dependencies=[Depends(get_api_key)])
def delete_book(book_id: int):
    try:
        library.remove_book(book_id)
    except (LookupError, BorrowRuleError) as e:
        _raise_http(e)
    return MessageModel(message=f"Book {book_id} deleted")


# --- Members ---
@router.get("/members", response_model=List[MemberModel])
def get_members():
    return [_member_model(m) for m in library.list_members()]


@router.get("/members/{member_id}", response_model=MemberModel)
def get_member(member_id: int):
    try:
        return _member_model(library.get_member(member_id))
    except LookupError as e:
        _raise_http(e)


@router.post("/members", response_model=MemberModel, status_code=201, dependencies=[Depends(get_api_key)])
def register_member(payload: MemberCreateModel):
    """Register a member; membershipId, registrationDate and ACTIVE status are assigned by the server."""
    member = Member(name=payload.name, email=payload.email, phone=payload.phone)
    try:
        return _member_model(library.register_member(member))
    except (ValueError, BorrowRuleError) as e:
        _raise_http(e)


@router.put("/members/{member_id}/status", response_model=MemberModel, dependencies=[Depends(get_api_key)])
def set_member_status(member_id: int, payload: MemberStatusModel):
    try:
        return _member_model(library.set_member_status(member_id, payload.status))
    except (ValueError, LookupError) as e:
        _raise_http(e)


# --- Borrowing ---
@router.post("/borrow", response_model=BorrowRecordModel, status_code=201, dependencies=[Depends(get_api_key)])
def borrow_book(payload: BorrowRequestModel):
    """Lend a book. Fails unless the book is available, the member is ACTIVE and under the borrow limit."""
    try:
        return _record_model(library.borrow_book(payload.book_id, payload.member_id))
    except (LookupError, BorrowRuleError) as e:
        _raise_http(e)


@router.put("/borrow/{record_id}/return", response_model=BorrowRecordModel, dependencies=[Depends(get_api_key)])
def return_book(record_id: int):
    """Return a borrowed book; the fine is settled from the days past the due date."""
    try:
        return _record_model(library.return_book(record_id))
    except (LookupError, BorrowRuleError) as e:
        _raise_http(e)


@router.get("/borrow/active", response_model=List[BorrowRecordModel])
def get_active_borrows():
    return [_record_model(r) for r in library.list_active_borrows()]


@router.get("/borrow/overdue", response_model=List[BorrowRecordModel])
def get_overdue_borrows():
    """Borrows that were returned late, with their fines."""
    return [_record_model(r) for r in library.list_overdue_borrows()]


@router.get("/borrow/{record_id}", response_model=BorrowRecordModel)
def get_borrow(record_id: int):
    try:
        return _record_model(library.get_borrow(record_id))
    except LookupError as e:
        _raise_http(e)


@router.get("/stats", response_model=StatsModel)
def get_library_stats():
    """Counts for the dashboard cards."""
    return StatsModel(**library.get_statistics())


app.include_router(router)


# --- Health ---
@app.get("/health", response_model=HealthModel)
def health():
    """Lightweight health endpoint with a quick database round trip."""
    db_ok = True
    total_books = 0
    try:
        library.ping()
        total_books = library.get_statistics()["total_books"]
    except Exception as e:
        logger.error(f"Health check database failure: {e}")
        db_ok = False
    return HealthModel(
        status="healthy" if db_ok else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        db=db_ok,
        total_books=total_books,
    )


@app.get("/")
def read_root():
    return {"name": settings.app_name, "version": settings.app_version, "api": settings.api_prefix}
