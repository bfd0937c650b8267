"""Pytest fixtures shared across the test suite."""

import os

os.environ.setdefault('APP_ENV', 'development')

import pytest

from db import utils as db_utils
from db.repository import SnapshotRepository
from db.schema import ensure_schema


@pytest.fixture
def database(tmp_path):
    """A fresh SQLite database with the tracker schema."""

    engine_wrapper = db_utils.build_engine_from_dsn(
        f"sqlite:///{(tmp_path / 'tracker.db').as_posix()}", timeout=5.0
    )
    ensure_schema(engine_wrapper)
    yield engine_wrapper
    engine_wrapper.dispose()


@pytest.fixture
def repo(database):
    return SnapshotRepository(database)
