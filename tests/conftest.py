"""
Test configuration and fixtures for the asset warmup pipeline.

Settings are read at import time, so the environment is prepared here
before any asset_warmup module is imported. Every test that touches the
database gets its own file-backed sqlite database under tmp_path.
"""

import os
import tempfile
from unittest.mock import MagicMock

from dotenv import load_dotenv

load_dotenv()

_test_dir = tempfile.mkdtemp(prefix="asset_warmup_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_test_dir, 'default.db')}"
os.environ["SITE_URL"] = "https://example.org"
os.environ["SITE_ROOT"] = _test_dir
os.environ["ASSETS_CACHE_DIR"] = os.path.join(_test_dir, "assets")
os.environ["LOG_DIR"] = os.path.join(_test_dir, "logs")
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

import pytest
from sqlalchemy.orm import sessionmaker

from asset_warmup.features.resources.services.queue.persistence_queue import AsyncPersistenceQueue
from asset_warmup.features.resources.services.resolution.content_resolver import ContentResolver
from asset_warmup.features.resources.services.storage.database import (
    ResourceQueueTable,
    ResourcesTable,
    UsedCSSTable,
)
from asset_warmup.platform.db.session import build_engine

SITE_URL = "https://example.org"


@pytest.fixture
def engine(tmp_path):
    """Engine on a fresh sqlite file with every table installed."""
    engine = build_engine(f"sqlite:///{tmp_path / 'warmup.db'}")
    for table in (ResourcesTable(engine), UsedCSSTable(engine), ResourceQueueTable(engine)):
        table.install()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def dispatcher():
    """Stands in for drain_resource_queue.delay."""
    return MagicMock(return_value=MagicMock(id="task-123"))


@pytest.fixture
def queue(session_factory, dispatcher):
    return AsyncPersistenceQueue(session_factory=session_factory, dispatcher=dispatcher)


@pytest.fixture
def site_root(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    (root / "a.css").write_bytes(b"body { color: red; }")
    (root / "b.js").write_bytes(b"console.log('b');")
    return root


@pytest.fixture
def asset_cache():
    """RemoteAssetCache double that knows nothing unless a test says so."""
    cache = MagicMock()
    cache.filepath_for.return_value = None
    cache.content_for.return_value = None
    return cache


@pytest.fixture
def resolver(asset_cache, site_root):
    return ContentResolver(asset_cache, site_url=SITE_URL, site_root=str(site_root), cdn_hosts=[])
