"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import pytest

from perf_tap.errors import AdbCommandFailed


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "parsers: diagnostic text parsers")
    config.addinivalue_line("markers", "history: rate derivation and sample history")
    config.addinivalue_line("markers", "collector: snapshot assembly")
    config.addinivalue_line("markers", "adb: adb transport")


class FakeTransport:
    """Canned adb responses keyed by the argument tuple.

    A list value is consumed one item per call; exceptions are raised.
    Unknown commands fail like a non-zero adb exit.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def run(self, device_id, args):
        key = tuple(args)
        self.calls.append((device_id, key))
        if key not in self.responses:
            raise AdbCommandFailed(f"unexpected command: {' '.join(args)}")
        response = self.responses[key]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, *args):
        return sum(1 for _, key in self.calls if key == tuple(args))


class FakeClock:
    def __init__(self, start_ms=1_700_000_000_000):
        self.now = start_ms

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()
