# =============================================================================
# Repository - Data Access Layer
# =============================================================================
# High-level operations on accounts, folders and mirrored messages.
#
# It handles:
#   - Converting between domain models and database rows
#   - The identifier snapshot a sync pass diffs against
#   - Inserting a message as one committed statement
#
# All methods are async for non-blocking database access.
# =============================================================================

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from popkeep.core import INBOX, Account, Folder, Message, MessageFlags

if TYPE_CHECKING:
    from popkeep.storage.database import Database

logger = logging.getLogger(__name__)

# Column list shared by every message SELECT, in _row_to_message order
_MESSAGE_COLUMNS = (
    'id, folder_id, uidl, uid, message_id, in_reply_to, "references", '
    "subject, sender, sender_name, recipients, cc, date_sent, date_received, "
    "flags, size, raw_headers, raw"
)


class Repository:
    """
    Data access layer for popkeep.

    Usage:
        >>> repo = Repository(database)
        >>> folder = await repo.get_or_create_folder(account)
        >>> known = await repo.get_known_uidls(folder.id)
        >>> await repo.insert_message(message)

    Attributes:
        db: Database instance for executing queries.
    """

    def __init__(self, db: "Database") -> None:
        self.db = db

    # =========================================================================
    # Account Operations
    # =========================================================================

    async def get_account_by_name(self, name: str) -> Account | None:
        """
        Get an account by its unique name.

        Args:
            name: Account name (e.g., "personal", "work").

        Returns:
            Account if found, None otherwise.
        """
        async with self.db.conn.execute(
            "SELECT id, name, email, username, pop_host, pop_port, pop_security, enabled "
            "FROM accounts WHERE name = ?",
            (name,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_account(row) if row else None

    async def save_account(self, account: Account) -> Account:
        """
        Save an account (insert or update).

        An account that has no ID yet but whose name is already stored
        picks up the stored ID and is updated in place.

        Returns:
            Saved account with ID populated.
        """
        if account.id is None:
            existing = await self.get_account_by_name(account.name)
            if existing is not None:
                account.id = existing.id

        if account.id is None:
            cursor = await self.db.conn.execute(
                """INSERT INTO accounts
                   (name, email, username, pop_host, pop_port, pop_security, enabled)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (account.name, account.email, account.username, account.pop_host,
                 account.pop_port, account.pop_security, account.enabled)
            )
            account.id = cursor.lastrowid
        else:
            await self.db.conn.execute(
                """UPDATE accounts SET
                   name=?, email=?, username=?, pop_host=?, pop_port=?,
                   pop_security=?, enabled=?
                   WHERE id=?""",
                (account.name, account.email, account.username, account.pop_host,
                 account.pop_port, account.pop_security, account.enabled,
                 account.id)
            )
        await self.db.conn.commit()
        return account

    def _row_to_account(self, row) -> Account:
        """Convert a database row to an Account object."""
        return Account(
            id=row[0],
            name=row[1],
            email=row[2],
            username=row[3],
            pop_host=row[4],
            pop_port=row[5],
            pop_security=row[6],
            enabled=bool(row[7]),
        )

    # =========================================================================
    # Folder Operations
    # =========================================================================

    async def get_folder_by_name(self, account_id: int, folder_name: str) -> Folder | None:
        """Get a folder by account ID and folder name."""
        async with self.db.conn.execute(
            "SELECT id, account_id, name, total_messages, last_sync "
            "FROM folders WHERE account_id = ? AND name = ?",
            (account_id, folder_name)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_folder(row) if row else None

    async def get_or_create_folder(self, account: Account, name: str = INBOX) -> Folder:
        """
        Get the local folder an account mirrors into, creating it if needed.

        The account is saved first when it has no ID yet.

        Args:
            account: Owning account.
            name: Local folder name.

        Returns:
            The stored Folder.
        """
        if account.id is None:
            await self.save_account(account)

        folder = await self.get_folder_by_name(account.id, name)
        if folder is None:
            folder = await self.save_folder(Folder(name=name, account_id=account.id))
            logger.debug(f"Created folder {name} for account {account.name}")
        return folder

    async def save_folder(self, folder: Folder) -> Folder:
        """
        Save a folder (insert or update).

        Returns:
            Saved folder with ID populated.
        """
        last_sync = folder.last_sync.isoformat() if folder.last_sync else None
        if folder.id is None:
            cursor = await self.db.conn.execute(
                """INSERT INTO folders (account_id, name, total_messages, last_sync)
                   VALUES (?, ?, ?, ?)""",
                (folder.account_id, folder.name, folder.total_messages, last_sync)
            )
            folder.id = cursor.lastrowid
        else:
            await self.db.conn.execute(
                """UPDATE folders SET name=?, total_messages=?, last_sync=?
                   WHERE id=?""",
                (folder.name, folder.total_messages, last_sync, folder.id)
            )
        await self.db.conn.commit()
        return folder

    def _row_to_folder(self, row) -> Folder:
        """Convert a database row to a Folder object."""
        return Folder(
            id=row[0],
            account_id=row[1],
            name=row[2],
            total_messages=row[3] or 0,
            last_sync=datetime.fromisoformat(row[4]) if row[4] else None,
        )

    # =========================================================================
    # Message Operations
    # =========================================================================

    async def get_known_uidls(self, folder_id: int) -> set[str]:
        """
        Get every UIDL already stored in a folder.

        A sync pass calls this exactly once, before it fetches anything.

        Args:
            folder_id: Folder ID.

        Returns:
            Set of UIDLs stored locally.
        """
        async with self.db.conn.execute(
            "SELECT uidl FROM messages WHERE folder_id = ?",
            (folder_id,)
        ) as cursor:
            rows = await cursor.fetchall()
            return {row[0] for row in rows}

    async def insert_message(self, message: Message) -> Message:
        """
        Insert a newly mirrored message.

        The insert is committed on its own, so a message is either stored
        completely or not at all.

        Args:
            message: Message to insert. Must not have an ID yet.

        Returns:
            The message with its ID populated.

        Raises:
            aiosqlite.IntegrityError: If the folder already holds this UIDL.
        """
        try:
            cursor = await self.db.conn.execute(
                """INSERT INTO messages
                   (folder_id, uidl, uid, message_id, in_reply_to, "references",
                    subject, sender, sender_name, recipients, cc,
                    date_sent, date_received, flags, size, raw_headers, raw)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (message.folder_id, message.uidl, message.uid, message.message_id,
                 message.in_reply_to, json.dumps(message.references),
                 message.subject, message.sender, message.sender_name,
                 json.dumps(message.recipients), json.dumps(message.cc),
                 message.date_sent.isoformat() if message.date_sent else None,
                 message.date_received.isoformat() if message.date_received else None,
                 int(message.flags), message.size, message.raw_headers, message.raw)
            )
            await self.db.conn.commit()
        except BaseException:
            await self.db.conn.rollback()
            raise

        message.id = cursor.lastrowid
        return message

    async def get_message_by_uidl(self, folder_id: int, uidl: str) -> Message | None:
        """Get a message by its UIDL within a folder."""
        async with self.db.conn.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE folder_id = ? AND uidl = ?",
            (folder_id, uidl)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_message(row) if row else None

    async def get_messages(
        self,
        folder_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Message]:
        """
        Get messages from a folder, newest first.

        Args:
            folder_id: Folder to get messages from.
            limit: Maximum number of messages to return.
            offset: Number of messages to skip (for pagination).
        """
        async with self.db.conn.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE folder_id = ? "
            "ORDER BY datetime(date_sent) DESC, id DESC LIMIT ? OFFSET ?",
            (folder_id, limit, offset)
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_message(row) for row in rows]

    async def get_message_count(self, folder_id: int) -> int:
        """Get the total number of messages stored in a folder."""
        async with self.db.conn.execute(
            "SELECT COUNT(*) FROM messages WHERE folder_id = ?",
            (folder_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    def _row_to_message(self, row) -> Message:
        """Convert a database row to a Message object."""
        return Message(
            id=row[0],
            folder_id=row[1],
            uidl=row[2],
            uid=row[3],
            message_id=row[4] or "",
            in_reply_to=row[5] or "",
            references=json.loads(row[6]) if row[6] else [],
            subject=row[7] or "",
            sender=row[8] or "",
            sender_name=row[9] or "",
            recipients=json.loads(row[10]) if row[10] else [],
            cc=json.loads(row[11]) if row[11] else [],
            date_sent=datetime.fromisoformat(row[12]) if row[12] else None,
            date_received=datetime.fromisoformat(row[13]) if row[13] else None,
            flags=MessageFlags(row[14]),
            size=row[15] or 0,
            raw_headers=row[16] or "",
            raw=row[17] or b"",
        )
