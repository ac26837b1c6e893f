import os
import sys

import pytest
import pytest_asyncio

# Add project root to path so the feed_cache package is importable without installing
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
sys.path.insert(0, project_root)

from dotenv import load_dotenv

# Load test environment variables from .env.test in the project root
dotenv_path = os.path.join(project_root, '.env.test')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)

from feed_cache.core.background import BackgroundTaskRunner
from feed_cache.storage.cache_store import CacheStore


@pytest.fixture
def database_url(tmp_path):
    """A fresh file-backed sqlite database per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'feed_cache_test.db'}"


@pytest_asyncio.fixture
async def store(database_url):
    """Open cache store with every table created; closed after the test."""
    cache_store = CacheStore(database_url)
    await cache_store.open()
    yield cache_store
    await cache_store.close()


@pytest_asyncio.fixture
async def runner():
    """Background task runner; outstanding tasks are cancelled after the test."""
    background = BackgroundTaskRunner("test")
    yield background
    await background.close()
