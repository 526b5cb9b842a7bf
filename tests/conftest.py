"""Shared pytest fixtures for the test suite."""

import time
from datetime import date

import pytest

from service_tracker.services.data_layer import Store

TODAY = date(2024, 6, 15)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def local_tz(monkeypatch):
    """Pin the process time zone to a POSIX TZ string for the test."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")

    def set_tz(name):
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield set_tz
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def store(tmp_path):
    """A fresh SQLite store per test."""
    s = Store(tmp_path / "tracker.db", timeout=1.0)
    s.init_schema()
    return s


@pytest.fixture
def client(store, today):
    """TestClient wired to the temporary store and a fixed 'today'."""
    from fastapi.testclient import TestClient

    from service_tracker import core
    from service_tracker.api import app, get_today

    app.dependency_overrides[core.get_store] = lambda: store
    app.dependency_overrides[get_today] = lambda: today
    yield TestClient(app)
    app.dependency_overrides.clear()
