# =============================================================================
# Folder Model
# =============================================================================
# Represents a local folder that mirrored messages are stored in.
#
# POP3 has exactly one remote mailbox and no folder concept at all, so every
# account mirrors into a single local folder (INBOX by default). Folders are
# purely local records here; nothing about them is ever sent to the server.
# =============================================================================

from dataclasses import dataclass
from datetime import datetime


# Name of the local folder POP3 messages are mirrored into
INBOX = "INBOX"


@dataclass
class Folder:
    """
    Represents a local folder belonging to an account.

    Attributes:
        name: The folder's name (e.g., "INBOX").
        account_id: Foreign key to the Account this folder belongs to.
        total_messages: Number of messages stored locally.
        last_sync: Timestamp of the last successful synchronization pass.
        id: Database primary key. None until saved to storage.
    """

    name: str
    account_id: int

    total_messages: int = 0
    last_sync: datetime | None = None

    id: int | None = None

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"Folder(name={self.name!r}, messages={self.total_messages})"
