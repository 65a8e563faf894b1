"""Pytest configuration and shared fixtures."""

import pytest

from inspector_rpc import Implementation


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def client_info() -> Implementation:
    return Implementation(name="test-client", version="1.0.0")


@pytest.fixture
def server_info() -> Implementation:
    return Implementation(name="test-server", version="2.0.0")
