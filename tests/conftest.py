"""Shared test fixtures."""

import pytest
import requests
from unittest.mock import MagicMock

from readme_core import ReadmeCache, ReadmeFetcher


def make_response(status_code, body=b"", reason=""):
    """Build a real requests.Response without touching the network."""
    resp = requests.Response()
    resp.status_code = status_code
    resp._content = body
    resp.reason = reason
    resp.url = "https://api.github.com/repos/octocat/Hello-World/readme"
    return resp


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ReadmeCache(ttl=3600, clock=clock)


@pytest.fixture
def session():
    s = requests.Session()
    s.get = MagicMock(return_value=make_response(200, b"# Hello\n\nWorld"))
    return s


@pytest.fixture
def fetcher(cache, session):
    return ReadmeFetcher(cache, session=session)


@pytest.fixture
def response():
    return make_response
