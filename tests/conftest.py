import pytest

from trustforge.core.config import settings
from trustforge.db import init_db
from trustforge.services.job_store import JobStore
from trustforge.services.storage import LocalStorageProvider

from tests.factories import InMemoryJobQueue


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Fresh SQLite job store for one test."""
    path = str(tmp_path / "scans.db")
    monkeypatch.setattr(settings, "DATABASE_URL", "")
    monkeypatch.setattr(settings, "SQLITE_PATH", path)
    init_db()
    return path


@pytest.fixture
def store(db_path):
    return JobStore()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def temp_root(tmp_path):
    path = tmp_path / "temp"
    path.mkdir()
    return str(path)


@pytest.fixture
def package_file(tmp_path):
    """Write a minimal ZIP-signed package and return its path."""
    def _write(name: str = "app.apk", content: bytes = b"PK\x03\x04" + b"\x00" * 60) -> str:
        path = tmp_path / name
        path.write_bytes(content)
        return str(path)
    return _write
