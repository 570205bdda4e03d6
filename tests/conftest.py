"""
Pytest configuration and fixtures for Courier tests.

Provides common fixtures and test utilities for unit and integration tests.
RSA identity generation is slow, so identities shared by many tests are
session scoped; tests that discard an identity create their own.
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator, List

import pytest

from courier.config import Config
from courier.crypto import SessionKey, generate_uid
from courier.identity import IdentityKeyManager
from courier.protocol import Envelope, PeerIdentity, Protocol
from courier.session import SessionContext


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="courier_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def config(temp_dir: Path, monkeypatch) -> Config:
    """Default configuration, isolated from the user's file and environment."""
    for name in list(os.environ):
        if name.startswith("COURIER_"):
            monkeypatch.delenv(name)
    return Config(temp_dir / "config.toml")


def _make_identity() -> IdentityKeyManager:
    manager = IdentityKeyManager()
    manager.generate_identity_key_pair()
    return manager


@pytest.fixture(scope="session")
def alice_identity() -> IdentityKeyManager:
    return _make_identity()


@pytest.fixture(scope="session")
def bob_identity() -> IdentityKeyManager:
    return _make_identity()


@pytest.fixture(scope="session")
def eve_identity() -> IdentityKeyManager:
    return _make_identity()


@pytest.fixture
def fresh_identity() -> IdentityKeyManager:
    """An identity that the test is free to discard."""
    return _make_identity()


@pytest.fixture
def session_key() -> SessionKey:
    return SessionKey.generate()


@pytest.fixture
def alice(alice_identity: IdentityKeyManager) -> SessionContext:
    return SessionContext("alice", generate_uid(), alice_identity)


@pytest.fixture
def bob(bob_identity: IdentityKeyManager) -> SessionContext:
    return SessionContext("bob", generate_uid(), bob_identity)


def peer_entry(context: SessionContext) -> PeerIdentity:
    """Presence entry announcing a context's identity."""
    return PeerIdentity(context.uid, context.username, context.identity.export_public_key())


@pytest.fixture
def introduce() -> Callable[..., None]:
    """Give every context the same presence snapshot of all of them."""

    def _introduce(*contexts: SessionContext) -> None:
        users = [peer_entry(c) for c in contexts]
        for context in contexts:
            context.replace_peers(users)

    return _introduce


class FrameRecorder:
    """Stand-in for the relay write path; records frames as wire lines."""

    def __init__(self):
        self.frames: List[Envelope] = []

    async def __call__(self, envelope: Envelope) -> None:
        Protocol.pack(envelope)
        self.frames.append(envelope)

    def lines(self) -> List[bytes]:
        return [Protocol.pack(frame).strip() for frame in self.frames]


@pytest.fixture
def recorder() -> FrameRecorder:
    return FrameRecorder()


async def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Timed out waiting for condition")
        await asyncio.sleep(0.01)


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        # Add unit marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add integration marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
