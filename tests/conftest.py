"""Pytest configuration and shared fixtures for tsmetrics tests."""

from datetime import datetime, timedelta

import pytest
import pytz

from tsmetrics.client import MetricsClient
from tsmetrics.persistence import TestPersister

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=pytz.UTC)


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeStore:
    """Minimal measurement store: a list of added mappings."""

    def __init__(self, items=None):
        self.items = list(items or [])

    @property
    def queued(self):
        return list(self.items)

    def add(self, measurements):
        for name, value in measurements.items():
            self.items.append({'name': name, **value})

    def clear(self):
        self.items.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    """A client that never touches the network and resolves the test backend."""
    return MetricsClient(
        server_url='http://metrics.test/',
        api_key='test-key',
        persistence='test',
        max_retries=1,
        retry_delay=0,
    )


@pytest.fixture
def tagged_client():
    return MetricsClient(
        server_url='http://metrics.test/',
        api_key='test-key',
        persistence='test',
        tagging=True,
        max_retries=1,
        retry_delay=0,
    )


@pytest.fixture
def persister():
    return TestPersister()


@pytest.fixture
def store():
    return FakeStore()
