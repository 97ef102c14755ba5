"""
Pytest configuration and shared fixtures.

This file provides:
- Markers and default unit marking
- A fake clock whose sleep advances time instantly
- Builders for fake OpenAI streaming responses
"""

import os
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

BASE_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BASE_DIR))

# api_server reads config at import time; keep it from touching real services.
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("YOUTUBE_API_KEY", "")
os.environ.setdefault("VIDCHAT_LOG_FILE", "")


class FakeClock:
    """Deterministic time source; ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def fake_clock():
    return FakeClock()


def make_chunk(content=None, finish_reason=None):
    delta = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


class FakeCompletionStream:
    """Async iterator standing in for an OpenAI streaming response."""

    def __init__(self, deltas, *, fail_after=None, error=None, finish_reason="stop"):
        self._deltas = list(deltas)
        self._fail_after = fail_after
        self._error = error
        self._finish_reason = finish_reason

    def __aiter__(self):
        return self._generate()

    async def _generate(self):
        for index, delta in enumerate(self._deltas):
            if self._fail_after is not None and index == self._fail_after:
                raise self._error
            yield make_chunk(delta)
        if self._fail_after is not None and self._fail_after >= len(self._deltas):
            raise self._error
        yield make_chunk(None, finish_reason=self._finish_reason)


class FakeCompletions:
    def __init__(self, stream_factory=None, reply="ok", error=None):
        self.stream_factory = stream_factory
        self.reply = reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            return self.stream_factory()
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])


class FakeOpenAI:
    def __init__(self, completions: FakeCompletions):
        self.chat = SimpleNamespace(completions=completions)

    async def close(self):
        return None


@pytest.fixture()
def fake_openai_factory():
    def _build(deltas=("Hello", " world"), **kwargs):
        # Without fail_after the error is raised by create() itself.
        error = None if "fail_after" in kwargs else kwargs.pop("error", None)
        completions = FakeCompletions(
            stream_factory=lambda: FakeCompletionStream(deltas, **kwargs),
            error=error,
        )
        return FakeOpenAI(completions)

    return _build


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config, items):
    """Default every test without an explicit marker to a unit test."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
