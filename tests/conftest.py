"""
Root pytest configuration and fixtures for agentdeck.

Provides common fixtures and test utilities for the test suite.
"""

import os
from pathlib import Path
import sys
from unittest.mock import MagicMock

import pytest
import responses

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def base_url():
    """Test server base URL."""
    return "http://127.0.0.1:4096"


@pytest.fixture(autouse=True)
def clean_environment():
    """Clean environment variables before each test."""
    original_env = os.environ.copy()

    # Remove agentdeck environment variables
    for key in list(os.environ.keys()):
        if key.startswith("AGENTDECK_"):
            del os.environ[key]

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def mock_requests():
    """Mock HTTP requests using responses library."""
    with responses.RequestsMock() as rsps:
        yield rsps


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip retry/backoff sleeps."""
    import time

    monkeypatch.setattr(time, "sleep", lambda _seconds: None)


@pytest.fixture
def stream_response():
    """Factory for a mock streaming response that yields the given SSE lines."""

    def _make(lines: list[str]) -> MagicMock:
        resp = MagicMock()
        resp.iter_lines.return_value = iter(lines)
        resp.close = MagicMock()
        return resp

    return _make
