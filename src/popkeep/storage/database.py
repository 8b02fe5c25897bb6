# =============================================================================
# Database Connection and Schema
# =============================================================================
# Manages the SQLite database connection and schema.
#
# Schema overview:
#   - accounts: Configured POP3 accounts
#   - folders: Local folders messages are mirrored into (one INBOX per account)
#   - messages: Mirrored messages, keyed by (folder_id, uidl)
#
# The UIDL is the only durable identity a POP3 message has, so it gets its
# own column with a per-folder uniqueness constraint. The numeric `uid` is
# derived from it and only indexed, never unique.
#
# Uses aiosqlite for async operations, with WAL mode so the CLI can sync
# several accounts against one database file.
# =============================================================================

import logging
from pathlib import Path

import aiosqlite

from popkeep.config import Config

logger = logging.getLogger(__name__)

# Current schema version - increment when making schema changes
SCHEMA_VERSION = 1


class Database:
    """
    Manages the SQLite database connection and schema.

    Usage:
        >>> db = Database()
        >>> await db.connect()
        >>> repo = Repository(db)
        >>> await db.close()

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        """
        Initialize the database manager.

        Args:
            db_path: Path to database file. Defaults to XDG data location.
        """
        self.db_path = db_path or Config.database_path()
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """
        Open the database connection and ensure the schema exists.

        Creates the database file if it doesn't exist.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)

        # Enable foreign keys (off by default in SQLite)
        await self._connection.execute("PRAGMA foreign_keys = ON")

        await self._connection.execute("PRAGMA journal_mode = WAL")

        await self._init_schema()
        logger.debug(f"Opened database {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        """
        Get the active database connection.

        Raises:
            RuntimeError: If not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def _init_schema(self) -> None:
        """Create the tables on a fresh database."""
        try:
            async with self.conn.execute(
                "SELECT version FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
                current_version = row[0] if row else 0
        except aiosqlite.OperationalError:
            # Table doesn't exist, this is a fresh database
            current_version = 0

        if current_version < SCHEMA_VERSION:
            await self._create_schema()

    async def _create_schema(self) -> None:
        """Create the database schema from scratch."""
        schema = """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        );

        CREATE TABLE IF NOT EXISTS accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            email TEXT NOT NULL,
            username TEXT NOT NULL,
            pop_host TEXT NOT NULL,
            pop_port INTEGER NOT NULL DEFAULT 0,
            pop_security TEXT NOT NULL DEFAULT 'implicit-tls',
            enabled INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS folders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            total_messages INTEGER DEFAULT 0,
            last_sync TEXT,
            UNIQUE(account_id, name)
        );

        CREATE TABLE IF NOT EXISTS messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            folder_id INTEGER NOT NULL REFERENCES folders(id) ON DELETE CASCADE,
            uidl TEXT NOT NULL,
            uid INTEGER NOT NULL,       -- crc32(uidl), not unique
            message_id TEXT,
            in_reply_to TEXT,
            "references" TEXT,          -- JSON array of Message-IDs
            subject TEXT,
            sender TEXT,
            sender_name TEXT,
            recipients TEXT,            -- JSON array
            cc TEXT,                    -- JSON array
            date_sent TEXT,
            date_received TEXT,
            flags INTEGER NOT NULL DEFAULT 0,
            size INTEGER NOT NULL DEFAULT 0,
            raw_headers TEXT,
            raw BLOB,
            UNIQUE(folder_id, uidl)
        );

        CREATE INDEX IF NOT EXISTS idx_messages_folder ON messages(folder_id);
        CREATE INDEX IF NOT EXISTS idx_messages_uid ON messages(folder_id, uid);
        CREATE INDEX IF NOT EXISTS idx_messages_date ON messages(date_sent DESC);
        CREATE INDEX IF NOT EXISTS idx_folders_account ON folders(account_id);
        """

        await self.conn.executescript(schema)

        await self.conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,)
        )
        await self.conn.commit()
