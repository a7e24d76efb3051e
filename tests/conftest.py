import os

import pytest

# Set dummy environment variables for testing
# This must run before src.config is imported by any test
os.environ.setdefault("WEBHOOK_SECRET", "test_webhook_secret")
os.environ.setdefault("TREASURY_EVM_ADDRESS", "0x000000000000000000000000000000000000dEaD")
os.environ.setdefault("WALLET_PRIVATE_KEY", "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318")
os.environ.setdefault("X402PAY_WALLET_ADDRESS", "0x000000000000000000000000000000000000bEEF")
os.environ.setdefault("LOG_FORMAT", "text")

from src.database import Database  # noqa: E402


@pytest.fixture
async def test_db(tmp_path):
    """Create a temporary test database."""
    db_path = tmp_path / "test.db"
    db = Database(str(db_path))
    await db.initialize()
    return db


@pytest.fixture
def broken_db(tmp_path):
    """A database whose file can never be opened."""
    return Database(str(tmp_path / "missing" / "ledger.db"))
