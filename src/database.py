"""SQLite database interface for the SoulForge ledger and agent store.

Holds the append-only revenue tables, stored agents, premium unlocks and chat
history. Every append is a single transaction; nothing is rewritten in place.
"""

import asyncio
import sqlite3
from datetime import datetime
from typing import Optional

import aiosqlite

from .config import config
from .exceptions import LedgerWriteError
from .logging_utils import get_logger
from .models import Agent, ChatMessage, RevenueDistribution, RevenueRecord

logger = get_logger(__name__)

# SQL Schema
SCHEMA_SQL = """
-- Completed payments (append-only)
CREATE TABLE IF NOT EXISTS revenue_records (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    payment_id TEXT NOT NULL UNIQUE,
    method TEXT NOT NULL CHECK(method IN ('x402pay', 'wallet')),
    amount REAL NOT NULL,
    currency TEXT NOT NULL,
    transaction_id TEXT,
    recorded_at TEXT NOT NULL
);

-- Platform/creator split per completed payment (append-only)
CREATE TABLE IF NOT EXISTS revenue_distributions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    payment_id TEXT NOT NULL UNIQUE,
    total_amount REAL NOT NULL,
    platform_fee REAL NOT NULL,
    creator_revenue REAL NOT NULL,
    method TEXT NOT NULL,
    distributed_at TEXT NOT NULL,
    FOREIGN KEY (payment_id) REFERENCES revenue_records(payment_id)
);

-- User-created agents
CREATE TABLE IF NOT EXISTS agents (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL UNIQUE,
    is_public INTEGER NOT NULL DEFAULT 0,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- Paid unlocks of premium agents
CREATE TABLE IF NOT EXISTS agent_unlocks (
    agent_id TEXT PRIMARY KEY,
    payment_id TEXT NOT NULL,
    unlocked_at TEXT NOT NULL
);

-- Chat history (append-only)
CREATE TABLE IF NOT EXISTS chat_messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    message_id TEXT NOT NULL,
    sender TEXT NOT NULL CHECK(sender IN ('user', 'agent')),
    content TEXT NOT NULL,
    emotion TEXT,
    sent_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_revenue_records_currency ON revenue_records(currency);
CREATE INDEX IF NOT EXISTS idx_chat_messages_agent_id ON chat_messages(agent_id);
"""


class Database:
    """Async database interface for the ledger and agent store."""

    def __init__(self, db_path: str = None):
        """Initialize database connection settings.

        Args:
            db_path: Path to SQLite database file. Defaults to config.database_path.
        """
        self.db_path = db_path or config.database_path
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database schema."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(SCHEMA_SQL)
            await db.commit()
        logger.info(f"Database initialized at {self.db_path}")

    # Revenue operations
    async def append_revenue(self, record: RevenueRecord, distribution: RevenueDistribution) -> bool:
        """Append a revenue record and its distribution in one transaction.

        Args:
            record: Completed payment to record.
            distribution: Split derived from the record.

        Returns:
            True if appended, False if the payment id was already recorded.

        Raises:
            LedgerWriteError: If the database cannot be written.
        """
        try:
            async with self._write_lock:
                async with aiosqlite.connect(self.db_path) as db:
                    try:
                        await db.execute(
                            """
                            INSERT INTO revenue_records
                            (payment_id, method, amount, currency, transaction_id, recorded_at)
                            VALUES (?, ?, ?, ?, ?, ?)
                            """,
                            (
                                record.payment_id,
                                record.method,
                                record.amount,
                                record.currency,
                                record.transaction_id,
                                record.timestamp.isoformat(),
                            ),
                        )
                        await db.execute(
                            """
                            INSERT INTO revenue_distributions
                            (payment_id, total_amount, platform_fee, creator_revenue, method, distributed_at)
                            VALUES (?, ?, ?, ?, ?, ?)
                            """,
                            (
                                distribution.payment_id,
                                distribution.total_amount,
                                distribution.platform_fee,
                                distribution.creator_revenue,
                                distribution.method,
                                distribution.timestamp.isoformat(),
                            ),
                        )
                        await db.commit()
                    except sqlite3.IntegrityError:
                        await db.rollback()
                        logger.warning(f"Payment already recorded (idempotency): {record.payment_id}")
                        return False
        except sqlite3.Error as e:
            raise LedgerWriteError(f"Could not record payment {record.payment_id}: {e}") from e

        logger.info(f"Recorded revenue for payment {record.payment_id}")
        return True

    async def list_revenue_records(self) -> list[RevenueRecord]:
        """Return all revenue records in insertion order."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM revenue_records ORDER BY seq")
            rows = await cursor.fetchall()

        return [
            RevenueRecord(
                payment_id=row["payment_id"],
                method=row["method"],
                amount=row["amount"],
                currency=row["currency"],
                transaction_id=row["transaction_id"],
                timestamp=datetime.fromisoformat(row["recorded_at"]),
            )
            for row in rows
        ]

    async def list_revenue_distributions(self) -> list[RevenueDistribution]:
        """Return all revenue distributions in insertion order."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM revenue_distributions ORDER BY seq")
            rows = await cursor.fetchall()

        return [
            RevenueDistribution(
                payment_id=row["payment_id"],
                total_amount=row["total_amount"],
                platform_fee=row["platform_fee"],
                creator_revenue=row["creator_revenue"],
                method=row["method"],
                timestamp=datetime.fromisoformat(row["distributed_at"]),
            )
            for row in rows
        ]

    async def revenue_totals(self) -> dict[str, float]:
        """Sum recorded amounts per currency."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT currency, SUM(amount) FROM revenue_records GROUP BY currency ORDER BY currency"
            )
            rows = await cursor.fetchall()
        return {currency: total for currency, total in rows}

    # Agent operations
    async def save_agent(self, agent: Agent) -> None:
        """Persist a user-created agent.

        Args:
            agent: Agent to store.
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO agents (agent_id, is_public, payload, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    agent.id,
                    1 if agent.is_public else 0,
                    agent.model_dump_json(),
                    agent.created_at.isoformat(),
                ),
            )
            await db.commit()
        logger.info(f"Stored agent: {agent.id}")

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT payload FROM agents WHERE agent_id = ?", (agent_id,))
            row = await cursor.fetchone()

        if row:
            return Agent.model_validate_json(row[0])
        return None

    async def list_agents(self, public_only: bool = False) -> list[Agent]:
        query = "SELECT payload FROM agents"
        if public_only:
            query += " WHERE is_public = 1"
        query += " ORDER BY seq"

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(query)
            rows = await cursor.fetchall()
        return [Agent.model_validate_json(row[0]) for row in rows]

    async def delete_agent(self, agent_id: str) -> bool:
        """Delete a stored agent and its chat history.

        Returns:
            True if an agent was deleted.
        """
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM agents WHERE agent_id = ?", (agent_id,))
            await db.execute("DELETE FROM chat_messages WHERE agent_id = ?", (agent_id,))
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted agent: {agent_id}")
        return deleted

    # Unlock operations
    async def record_unlock(self, agent_id: str, payment_id: str, unlocked_at: datetime) -> bool:
        """Record that a premium agent was paid for.

        Returns:
            True if recorded, False if the agent was already unlocked.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO agent_unlocks (agent_id, payment_id, unlocked_at) VALUES (?, ?, ?)",
                    (agent_id, payment_id, unlocked_at.isoformat()),
                )
                await db.commit()
        except sqlite3.IntegrityError:
            logger.warning(f"Agent already unlocked: {agent_id}")
            return False
        logger.info(f"Unlocked agent {agent_id} with payment {payment_id}")
        return True

    async def get_unlock_payment(self, agent_id: str) -> Optional[str]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT payment_id FROM agent_unlocks WHERE agent_id = ?", (agent_id,)
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    # Chat operations
    async def append_chat_messages(self, agent_id: str, messages: list[ChatMessage]) -> None:
        """Append messages to an agent's chat history in one transaction."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                """
                INSERT INTO chat_messages (agent_id, message_id, sender, content, emotion, sent_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        agent_id,
                        message.id,
                        message.sender,
                        message.content,
                        message.emotion,
                        message.timestamp.isoformat(),
                    )
                    for message in messages
                ],
            )
            await db.commit()

    async def list_chat_messages(self, agent_id: str) -> list[ChatMessage]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM chat_messages WHERE agent_id = ? ORDER BY seq",
                (agent_id,),
            )
            rows = await cursor.fetchall()

        return [
            ChatMessage(
                id=row["message_id"],
                content=row["content"],
                sender=row["sender"],
                emotion=row["emotion"],
                timestamp=datetime.fromisoformat(row["sent_at"]),
            )
            for row in rows
        ]
