# =============================================================================
# Message Model
# =============================================================================
# Represents a message mirrored from a POP3 mailbox.
#
# POP3 only knows two things about a message:
#   - its message number (1-based, valid only inside one session)
#   - its UIDL (an opaque token that stays stable across sessions)
#
# Only the UIDL is ever persisted as identity. Everything else here is
# derived from the message's own headers after it has been downloaded.
# =============================================================================

import zlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntFlag


class MessageFlags(IntFlag):
    """
    Local message flags, stored as a bitmask.

    POP3 has no server-visible flags, so every mirrored message starts with
    NONE and any flag is purely local state.
    """
    NONE = 0
    SEEN = 1 << 0       # Message has been read
    ANSWERED = 1 << 1   # Message has been replied to
    FLAGGED = 1 << 2    # User-flagged / starred
    DELETED = 1 << 3    # Marked for local deletion
    DRAFT = 1 << 4      # Is a draft


def uidl_key(uidl: str) -> int:
    """
    Derive the numeric key for a UIDL (CRC-32 of its UTF-8 bytes).

    The key is deterministic but NOT unique: two different UIDLs can share a
    key. Identity is always the UIDL itself; storage enforces uniqueness on
    (folder_id, uidl), never on this value.
    """
    return zlib.crc32(uidl.encode("utf-8"))


@dataclass
class Message:
    """
    Represents a mirrored message.

    Threading note:
        'message_id' is the RFC Message-ID header (not our database ID, and
        not the UIDL). 'in_reply_to' and 'references' come straight from the
        headers so conversations can be rebuilt locally.

    Attributes:
        folder_id: Foreign key to the local Folder holding this message.
        uidl: The server's durable unique identifier for this message.
        uid: Numeric key derived from the UIDL (see uidl_key()).

        message_id: RFC 5322 Message-ID header.
        in_reply_to: Message-ID of the message this replies to.
        references: List of Message-IDs in the thread.

        subject: Subject line.
        sender: The "From" address.
        sender_name: Display name of the sender.
        recipients: List of "To" addresses.
        cc: List of "CC" addresses.

        date_sent: From the Date header (now, if missing or unparseable).
        date_received: When we mirrored it.

        flags: Local flags (always NONE on arrival).
        size: Size of the raw message in bytes.
        raw: The full message as downloaded (headers + body, CRLF line endings).
        raw_headers: The header block as text.

        id: Database primary key.
    """

    # Folder association and POP3 identity
    folder_id: int | None = None
    uidl: str = ""
    uid: int = 0

    # Threading
    message_id: str = ""
    in_reply_to: str = ""
    references: list[str] = field(default_factory=list)

    # Envelope information
    subject: str = ""
    sender: str = ""
    sender_name: str = ""
    recipients: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)

    # Timestamps
    date_sent: datetime | None = None
    date_received: datetime | None = None

    flags: MessageFlags = MessageFlags.NONE

    # Content
    size: int = 0
    raw: bytes = b""
    raw_headers: str = ""

    # Database field
    id: int | None = None

    @property
    def display_sender(self) -> str:
        """Prefers the sender's display name, falls back to the address."""
        if self.sender_name:
            return self.sender_name
        return self.sender

    def __str__(self) -> str:
        return f"{self.display_sender}: {self.subject}"

    def __repr__(self) -> str:
        return (
            f"Message(uidl={self.uidl!r}, subject={self.subject!r}, "
            f"from={self.sender!r}, size={self.size})"
        )
