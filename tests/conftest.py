# =============================================================================
# Pytest Configuration and Fixtures
# =============================================================================
# Shared fixtures for the popkeep test suite.
# =============================================================================

import pytest
import pytest_asyncio
import tempfile
from pathlib import Path

from popkeep.config import SyncConfig
from popkeep.core import Account, ConnectionConfig, SecurityMode
from popkeep.pop3 import ClientFactory
from popkeep.storage import Database, Repository

from fakes import StaticCredentials


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_account():
    """Create a sample Account for testing."""
    return Account(
        name="test",
        email="test@example.com",
        pop_host="pop.example.com",
        pop_port=995,
        pop_security="implicit-tls",
    )


@pytest.fixture
def connection_config():
    """ConnectionConfig for an implicit TLS server."""
    return ConnectionConfig(
        host="pop.example.com",
        port=995,
        security=SecurityMode.IMPLICIT_TLS,
        timeout=5.0,
    )


@pytest.fixture
def make_factory(sample_account):
    """Build a ClientFactory whose connections go to a fake mailbox."""
    def _make(mailbox, *, credentials=None, **sync_options) -> ClientFactory:
        return ClientFactory(
            sample_account,
            SyncConfig(**sync_options),
            credentials=credentials or StaticCredentials(),
            transport_factory=mailbox,
        )
    return _make


@pytest_asyncio.fixture
async def repo(temp_dir):
    """A Repository on a fresh database file."""
    db = Database(temp_dir / "popkeep.db")
    await db.connect()
    yield Repository(db)
    await db.close()
