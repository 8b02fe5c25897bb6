# =============================================================================
# Message Access
# =============================================================================
# Typed POP3 operations on top of POP3Client:
#
#   STAT  -> MailboxStat(count, total_size)
#   LIST  -> {message_number: size}
#   UIDL  -> {message_number: uidl}
#   RETR  -> raw message bytes
#   NOOP  -> keepalive
#
# Every call needs an authenticated client. Message numbers returned here are
# only valid for the session that produced them; never persist them.
# =============================================================================

import logging
import re
from dataclasses import dataclass

from popkeep.errors import POP3ProtocolError
from popkeep.pop3.client import POP3Client
from popkeep.pop3.transport import CRLF

logger = logging.getLogger(__name__)

# "+OK 3 1540" (after the marker has been stripped)
_STAT_PATTERN = re.compile(r"^(\d+)\s+(\d+)(?:\s|$)")

# "1 1540"
_LIST_PATTERN = re.compile(rb"^(\d+)\s+(\d+)\s*$")

# "1 whqtswO00WBw418f9t5JxYwZ" - the token may itself contain spaces
_UIDL_PATTERN = re.compile(rb"^(\d+)\s+(.+)$")


@dataclass(frozen=True)
class MailboxStat:
    """
    Mailbox statistics from STAT.

    Attributes:
        count: Number of messages in the mailbox.
        total_size: Combined size of all messages in bytes.
    """
    count: int
    total_size: int


class MessageAccess:
    """
    POP3 mailbox operations with typed results.

    Usage:
        >>> access = MessageAccess(client)
        >>> stat = await access.stat()
        >>> uidls = await access.unique_ids()
        >>> raw = await access.retrieve(1)

    Attributes:
        client: The authenticated POP3Client these calls go through.
    """

    def __init__(self, client: POP3Client) -> None:
        self.client = client

    async def stat(self) -> MailboxStat:
        """
        Get the message count and total size of the mailbox.

        Raises:
            POP3ProtocolError: If the reply is negative or not "<count> <size>".
        """
        self.client.require_authenticated("STAT")
        status = await self.client.execute("STAT")

        match = _STAT_PATTERN.match(status)
        if not match:
            raise POP3ProtocolError(f"Invalid STAT response: {status!r}")

        stat = MailboxStat(count=int(match.group(1)), total_size=int(match.group(2)))
        logger.debug(f"Mailbox has {stat.count} messages ({stat.total_size} bytes)")
        return stat

    async def list_messages(self) -> dict[int, int]:
        """
        Get the size of every message.

        Lines that don't look like "<number> <size>" are skipped; some
        servers add extension lines to LIST output.

        Returns:
            Dictionary mapping message number to size in bytes.
        """
        self.client.require_authenticated("LIST")
        _, lines = await self.client.execute_multiline("LIST")

        sizes: dict[int, int] = {}
        for line in lines:
            match = _LIST_PATTERN.match(line)
            if match:
                sizes[int(match.group(1))] = int(match.group(2))
            else:
                logger.debug(f"Skipping unrecognized LIST line: {line!r}")
        return sizes

    async def unique_ids(self) -> dict[int, str]:
        """
        Get the UIDL of every message.

        Only the first field is the message number; the trimmed remainder
        of the line is the token.

        Returns:
            Dictionary mapping message number to UIDL.
        """
        self.client.require_authenticated("UIDL")
        _, lines = await self.client.execute_multiline("UIDL")

        uidls: dict[int, str] = {}
        for line in lines:
            match = _UIDL_PATTERN.match(line)
            if not match:
                logger.debug(f"Skipping unrecognized UIDL line: {line!r}")
                continue
            token = match.group(2).strip().decode("utf-8", errors="replace")
            if token:
                uidls[int(match.group(1))] = token

        logger.debug(f"Server reported {len(uidls)} UIDLs")
        return uidls

    async def retrieve(self, message_number: int) -> bytes:
        """
        Download one complete message.

        Payload lines are unstuffed by the client and joined here with CRLF
        after every line, whatever line endings the server actually used.

        Args:
            message_number: Session-scoped message number (from LIST/UIDL).

        Returns:
            The raw message (headers + body).

        Raises:
            POP3ProtocolError: If the server refuses the message.
        """
        if message_number < 1:
            raise ValueError(f"Message numbers start at 1, got {message_number}")

        self.client.require_authenticated("RETR")
        _, lines = await self.client.execute_multiline(f"RETR {message_number}")

        return b"".join(line + CRLF for line in lines)

    async def keepalive(self) -> None:
        """
        Send NOOP so an idle session isn't dropped by the server.

        Raises:
            POP3ProtocolError: If the server does not answer +OK.
        """
        self.client.require_authenticated("NOOP")
        await self.client.execute("NOOP")
