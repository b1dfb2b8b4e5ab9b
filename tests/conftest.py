"""Shared fixtures: an in-memory Redis so the store runs without a server."""

from datetime import datetime

import pytest
from fakeredis import FakeAsyncRedis

from kertaus.datastore import Datastore


@pytest.fixture
def store() -> Datastore:
    return Datastore(FakeAsyncRedis())


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 1, 1, 9, 0, 0)
