import os
import tempfile
from datetime import datetime, timedelta

import pytest

# api.py builds its module-level Library() at import time; keep it off the working directory.
os.environ.setdefault(
    "LIBRARY_DB_FILE", os.path.join(tempfile.gettempdir(), f"library_test_{os.getpid()}.db")
)

from library import Library  # noqa: E402


class FakeClock:
    """Stand-in for library._now that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def lib(tmp_path, request):
    # Unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock(datetime(2024, 3, 1, 10, 0, 0))
    monkeypatch.setattr("library._now", fake)
    return fake


@pytest.fixture
def api_client(lib, monkeypatch):
    """FastAPI TestClient bound to the per-test Library."""
    from fastapi.testclient import TestClient

    import api as api_module
    from config import settings

    monkeypatch.setattr(api_module, "library", lib)
    monkeypatch.setattr(settings, "api_key", None)
    with TestClient(api_module.app) as client:
        yield client


@pytest.fixture
def library_client(api_client):
    """LibraryAPIClient talking to the app in-process through the TestClient transport."""
    from fastapi.testclient import TestClient

    import api as api_module
    from http_client import LibraryAPIClient

    http = TestClient(api_module.app, base_url="http://testserver/api")
    client = LibraryAPIClient(base_url="http://testserver/api", http=http)
    yield client
    http.close()
