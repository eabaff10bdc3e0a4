"""
Pytest configuration and fixtures for Cmdlink tests.

Provides common fixtures and test utilities for unit and integration tests.
"""

import shutil
import socket
import tempfile
import time
from pathlib import Path
from typing import Callable, Generator

import pytest

from cmdlink.crypto import KeyPair, save_keypair


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="cmdlink_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture(scope="session")
def server_keypair() -> KeyPair:
    """One 2048-bit key pair shared by the whole session (generation is slow)."""
    return KeyPair.generate(2048)


@pytest.fixture
def pem_files(temp_dir: Path, server_keypair: KeyPair) -> dict:
    """
    Write the session key pair as public.pem / private.pem.

    Returns:
        dict: {"public": Path, "private": Path}
    """
    public_path = temp_dir / "public.pem"
    private_path = temp_dir / "private.pem"
    save_keypair(server_keypair, public_path, private_path)
    return {"public": public_path, "private": private_path}


@pytest.fixture
def free_port() -> int:
    """Return a TCP port that was free on loopback a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """
    Poll a predicate until it is true or the timeout expires.

    Returns:
        Callable(predicate, timeout=5.0) -> bool
    """

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    return _wait


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
