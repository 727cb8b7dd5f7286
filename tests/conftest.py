"""
Pytest configuration and fixtures.
"""

import pytest
import os
import time
from unittest.mock import patch

import numpy as np


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "PORT": "7860",
        "LOG_LEVEL": "DEBUG",
        "OPENAI_API_KEY": "test_openai_key",
        "FIREBASE_API_KEY": "test_firebase_key",
        "FIREBASE_STORAGE_BUCKET": "test-bucket.appspot.com",
        "STORAGE_BACKEND": "firebase",
        "SILENCE_THRESHOLD": "0.02",
        "SILENCE_DURATION_MS": "5000",
        "SILENCE_POLL_INTERVAL_MS": "16",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.assistant.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


class FakeStream:
    """Stands in for a sounddevice.InputStream."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs.get("callback")
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True


class FakeStreamFactory:
    """Builds FakeStreams; `delay` simulates a slow device open (runs in a worker thread)."""

    def __init__(self, error=None, delay=0.0):
        self.error = error
        self.delay = delay
        self.streams = []

    def __call__(self, **kwargs):
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        stream = FakeStream(**kwargs)
        self.streams.append(stream)
        return stream

    @property
    def last(self):
        return self.streams[-1]


class SteppingClock:
    """Clock that advances by a fixed step every time it is read."""

    def __init__(self, step: float, start: float = 0.0):
        self.step = step
        self.now = start

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def stream_factory():
    return FakeStreamFactory()


@pytest.fixture
def denied_stream_factory():
    return FakeStreamFactory(error=OSError("Error querying device -1"))


@pytest.fixture
def slow_stream_factory():
    return FakeStreamFactory(delay=0.2)


@pytest.fixture
def stepping_clock():
    """Factory for clocks that advance a fixed step per read."""
    return SteppingClock


@pytest.fixture
def speech_block():
    """100ms of a loud 440Hz tone at 16kHz."""
    t = np.arange(1600) / 16000
    return (np.sin(2 * np.pi * 440 * t) * 16000).astype(np.int16)


@pytest.fixture
def silent_block():
    """100ms of digital silence at 16kHz."""
    return np.zeros(1600, dtype=np.int16)
