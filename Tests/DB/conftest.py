# Tests/DB/conftest.py
import pytest

from listbook.DB.List_Store import ListStore
from listbook.DB.Local_Storage_DB import LocalStorageDB


# --- Database Fixtures ---

@pytest.fixture(scope="function")
def temp_db_path(tmp_path):
    """Provides a temporary database file path."""
    return tmp_path / "listbook_store.db"


@pytest.fixture(scope="function")
def memory_db():
    db = LocalStorageDB(":memory:")
    yield db
    db.close_connection()


@pytest.fixture(scope="function")
def file_db(temp_db_path):
    db = LocalStorageDB(temp_db_path)
    yield db
    db.close_connection()


@pytest.fixture(scope="function")
def store(memory_db):
    return ListStore(memory_db)
