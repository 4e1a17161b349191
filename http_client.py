"""HTTP client for the library REST API.

All backend calls go through one ``LibraryAPIClient`` so the base URL and
timeout live in a single place.  Calls are grouped the way the dashboard
uses them: ``client.books``, ``client.members`` and ``client.borrow``.

Any failure (connection error, timeout, non-2xx response) is raised as
``APIError`` whose message is the server-provided ``message`` when there is
one, otherwise the fallback text given by the caller.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Request failed. Please try again."


class APIError(Exception):
    """A failed API call, carrying the message to show the user."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LibraryAPIClient:
    """Synchronous client with a fixed timeout and JSON headers."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 http: Optional[httpx.Client] = None) -> None:
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.timeout = settings.api_timeout if timeout is None else timeout
        self._owns_http = http is None
        self._http = http or httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers=self._default_headers(),
        )
        self.books = BooksAPI(self)
        self.members = MembersAPI(self)
        self.borrow = BorrowAPI(self)

    @staticmethod
    def _default_headers() -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if settings.api_key:
            headers["X-API-Key"] = settings.api_key
        return headers

    def request(self, method: str, path: str, *, json: Any = None,
                fallback: str = DEFAULT_ERROR_MESSAGE) -> Any:
        """Send a request and return the decoded JSON body."""
        try:
            response = self._http.request(method, path, json=json, headers=self._default_headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = _server_message(exc.response) or fallback
            logger.error(f"API {method} {path} failed with {exc.response.status_code}: {message}")
            raise APIError(message, exc.response.status_code) from exc
        except httpx.RequestError as exc:
            logger.error(f"API {method} {path} unreachable: {exc}")
            raise APIError(fallback) from exc
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.error(f"API {method} {path} returned a non-JSON body ({response.status_code})")
            raise APIError(fallback, response.status_code) from exc

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs) -> Any:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs) -> Any:
        return self.request("DELETE", path, **kwargs)

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _server_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message") or body.get("detail")
    return None


class BooksAPI:
    def __init__(self, client: LibraryAPIClient) -> None:
        self._client = client

    def get_all(self) -> List[dict]:
        """All books, including out-of-stock titles."""
        return self._client.get("/books", fallback="Error loading books")

    def get_available(self) -> List[dict]:
        """Books with availableQuantity > 0."""
        return self._client.get("/books/available", fallback="Error loading available books")

    def get_by_id(self, book_id: int) -> dict:
        return self._client.get(f"/books/{book_id}", fallback="Error loading book")

    def add(self, data: dict) -> dict:
        return self._client.post("/books", json=data,
                                 fallback="Error adding book. Please check ISBN uniqueness.")

    def update(self, book_id: int, data: dict) -> dict:
        return self._client.put(f"/books/{book_id}", json=data, fallback="Error updating book")

    def delete(self, book_id: int) -> dict:
        return self._client.delete(f"/books/{book_id}", fallback="Error deleting book")


class MembersAPI:
    def __init__(self, client: LibraryAPIClient) -> None:
        self._client = client

    def get_all(self) -> List[dict]:
        return self._client.get("/members", fallback="Error loading members")

    def get_by_id(self, member_id: int) -> dict:
        return self._client.get(f"/members/{member_id}", fallback="Error loading member")

    def register(self, data: dict) -> dict:
        """Register a member; the server assigns membershipId, registrationDate and status."""
        return self._client.post("/members", json=data, fallback="Error registering member")


class BorrowAPI:
    def __init__(self, client: LibraryAPIClient) -> None:
        self._client = client

    def borrow_book(self, book_id: int, member_id: int) -> dict:
        return self._client.post(
            "/borrow",
            json={"bookId": book_id, "memberId": member_id},
            fallback="Cannot borrow this book. Check member status and book limits.",
        )

    def return_book(self, record_id: int) -> dict:
        return self._client.put(f"/borrow/{record_id}/return", fallback="Error returning book")

    def get_active(self) -> List[dict]:
        return self._client.get("/borrow/active", fallback="Error loading active borrows")

    def get_overdue(self) -> List[dict]:
        return self._client.get("/borrow/overdue", fallback="Error loading overdue books")
