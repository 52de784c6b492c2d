"""
Pytest configuration and fixtures.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from store import FileStore, MemoryStore, SQLStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def file_store(temp_dir):
    store = FileStore("net1", str(temp_dir))
    yield store
    store.close()


@pytest.fixture
def sql_store():
    store = SQLStore("net1", "sqlite://")
    yield store
    store.close()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture(params=["file", "memory", "sql"])
def store(request):
    """Every Store implementation, for contract tests."""
    return request.getfixturevalue(f"{request.param}_store")
