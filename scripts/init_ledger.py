"""Database initialization script.

Run this to create the SoulForge ledger and agent store schema and print what
is already recorded.
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import config
from src.database import Database
from src.logging_utils import get_logger, setup_logging
from src.soulforge.ledger import RevenueLedger

setup_logging(config.log_level, config.log_format)
logger = get_logger(__name__)


async def main():
    """Initialize the database."""
    db = Database()
    logger.info("Initializing SoulForge database...")
    logger.info(f"Database path: {db.db_path}")

    await db.initialize()

    ledger = RevenueLedger(db)
    history = await ledger.history()
    totals = await ledger.totals()
    logger.info(f"Ledger holds {len(history)} completed payments")
    for currency, total in totals.items():
        logger.info(f"- {currency}: {total:.2f} total, {total * ledger.platform_fee_rate:.4f} platform fees")

    agents = await db.list_agents()
    logger.info(f"Agent store holds {len(agents)} user agents")

    logger.info("Database initialization complete!")


if __name__ == "__main__":
    asyncio.run(main())
