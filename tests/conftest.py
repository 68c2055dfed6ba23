"""Shared pytest configuration and fixtures."""

import os
from pathlib import Path

# Set environment variables before any imports
# Static tokens file so tests need no external auth service
os.environ["CHAPPY_STORE"] = "memory"
os.environ["CHAPPY_TOKENS_FILE"] = str(Path(__file__).parent / "tokens.yaml")
os.environ.pop("CHAPPY_AUTH_URL", None)
os.environ.pop("CHAPPY_AUTH_MODULE", None)
os.environ.pop("CHAPPY_NO_AUTH", None)
os.environ.pop("CHAPPY_CONFIG", None)


import pytest

from chappy.metrics import metrics
from chappy.store import InMemoryStore, reset_store, set_store

pytest_plugins = ["chappy.testing"]


@pytest.fixture(autouse=True, scope="function")
def reset_global_store():
    """Give every test a fresh, empty global store and clean metrics."""
    set_store(InMemoryStore())
    metrics.reset()
    yield
    reset_store()
