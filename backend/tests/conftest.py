"""
Pytest configuration and shared fixtures for backend tests.
"""
import os
import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test config directory before importing modules
os.environ["CONFIG_DIR"] = "/tmp/catalog_test_config"

# Ensure test config directory exists
Path("/tmp/catalog_test_config").mkdir(parents=True, exist_ok=True)

from database import Base, create_catalog_engine
import models  # noqa: F401 - registers tables
from memory_store import InMemoryStore
from sql_store import SqlLibraryStore
from tests.fixtures.mock_provider import mock_provider, mock_provider_router  # noqa: F401


@pytest.fixture(scope="function")
def test_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_catalog_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_session_factory(test_engine):
    """Session factory bound to the in-memory engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def test_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def sql_store(test_session_factory):
    """SqlLibraryStore over the in-memory database."""
    return SqlLibraryStore(test_session_factory)


@pytest.fixture(scope="function")
def memory_store():
    return InMemoryStore()


@pytest.fixture(params=["memory", "sql"])
def any_store(request, test_session_factory):
    """Runs a test against both store backends."""
    if request.param == "memory":
        return InMemoryStore()
    return SqlLibraryStore(test_session_factory)
