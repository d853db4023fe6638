from datetime import datetime, timedelta, timezone

import pytest

from keyword_engine.config import KeywordConfig
from keyword_engine.models import AppRecord


def make_app(app_id, name=None, rating=4.5, reviews="1.2k", **kwargs):
    return AppRecord(
        id=str(app_id),
        name=name or f"App {app_id}",
        rating=rating,
        reviews_count=reviews,
        **kwargs,
    )


class FakeSearch:
    """search(query, country) backed by a dict; records every call."""

    def __init__(self, results=None, errors=None):
        self.results = results or {}
        self.errors = errors or {}
        self.calls = []

    async def __call__(self, query, country):
        self.calls.append((query, country))
        if query in self.errors:
            raise self.errors[query]
        return list(self.results.get(query, []))


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def config():
    return KeywordConfig(delay_between_keyword_checks=0)


@pytest.fixture
def clock():
    return FakeClock()
