"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Test environment setup (the service module builds its gateway at import time)
- Stub providers for rotation/failover/streaming tests
"""

import logging
import os
import sys
from pathlib import Path

import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set before collection: gateway_service needs at least one provider at import.
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")
os.environ.setdefault("CEREBRAS_API_KEY", "test-cerebras-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_COLOR", "false")
os.environ.setdefault("LOG_PATH", "/tmp/chat_gateway_test.log")

from providers import FragmentStream  # noqa: E402


class StubProvider:
    """In-memory provider that records how it was driven."""

    def __init__(self, name, fragments=(), *, setup_error=None, stream_error=None):
        self.name = name
        self.fragments = list(fragments)
        self.setup_error = setup_error
        self.stream_error = stream_error
        self.calls = 0
        self.pulled = 0
        self.closed = False
        self.received = None

    async def chat(self, messages):
        self.calls += 1
        self.received = list(messages)
        if self.setup_error is not None:
            raise self.setup_error
        return FragmentStream(self.name, self._gen(), on_close=self._release)

    async def _gen(self):
        for f in self.fragments:
            self.pulled += 1
            yield f
        if self.stream_error is not None:
            raise self.stream_error

    async def _release(self):
        self.closed = True


@pytest.fixture
def make_provider():
    """Factory for StubProvider instances."""
    return StubProvider


@pytest.fixture
def gateway_caplog(caplog):
    """caplog attached to the (non-propagating) chat_gateway logger."""
    logger = logging.getLogger("chat_gateway")
    logger.addHandler(caplog.handler)
    caplog.set_level(logging.DEBUG, logger="chat_gateway")
    yield caplog
    logger.removeHandler(caplog.handler)


@pytest.fixture(scope="session")
def project_root_path():
    """Get project root path."""
    return project_root
