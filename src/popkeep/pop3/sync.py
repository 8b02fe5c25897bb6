# =============================================================================
# POP3 Sync Manager
# =============================================================================
# Mirrors a POP3 mailbox into local storage without touching the server.
#
# One pass:
#   1. Resolve credentials (before any network I/O)
#   2. Connect, log in, read STAT (for progress) and the full UIDL map
#   3. Load the UIDLs already stored locally (one query, fresh every pass)
#   4. Diff: remote UIDLs minus local UIDLs, ascending by message number
#   5. RETR each missing message, parse its headers, insert it
#   6. Disconnect (always, on every path)
#
# Failure policy:
#   - Anything going wrong in steps 1-2, or a connection error at any point,
#     aborts the whole pass with SyncAbortedError.
#   - A refused RETR, an unparseable message or a failed insert only skips
#     that one message. It is recorded in SyncResult.failures and the next
#     message is tried. A garbled RETR reply closes the session, so the
#     remaining messages continue on a new one.
#   - Nothing is retried automatically. A skipped message is simply picked
#     up again by the next pass, because it still isn't stored locally.
#
# Key concepts:
#   - Message numbers are only valid inside the session that listed them.
#     They are never stored, and never reused on another connection.
#   - The UIDL is the durable identity; see popkeep.core.message.uidl_key
#     for the (non-unique) numeric key derived from it.
# =============================================================================

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Callable

from popkeep.core import (
    INBOX,
    Account,
    Credentials,
    Folder,
    Message,
    MessageFlags,
    uidl_key,
)
from popkeep.errors import (
    POP3ConnectionError,
    POP3Error,
    POP3ProtocolError,
    SyncAbortedError,
)
from popkeep.pop3.access import MessageAccess
from popkeep.pop3.client import POP3Client
from popkeep.pop3.factory import ClientFactory
from popkeep.pop3.headers import (
    extract_headers,
    parse_addresses,
    parse_date,
    parse_message_ids,
    split_header_block,
)
from popkeep.storage.repository import Repository

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Current status of a sync pass."""
    IDLE = auto()           # Not syncing
    CONNECTING = auto()     # Resolving credentials, connecting, logging in
    LISTING = auto()        # STAT and UIDL
    DIFFING = auto()        # Comparing remote and local UIDLs
    SYNCING = auto()        # Downloading missing messages
    COMPLETE = auto()       # Pass finished
    ERROR = auto()          # Pass aborted
    CANCELLED = auto()      # Pass was cancelled


class FailureKind(Enum):
    """Why a single message was skipped."""
    PROTOCOL = auto()       # Server refused or garbled RETR
    PARSE = auto()          # Message could not be turned into a record
    STORAGE = auto()        # Insert failed


@dataclass
class SyncProgress:
    """
    Progress information for a sync pass.

    Attributes:
        status: Current sync status.
        account: Account being synced.
        server_messages: Message count reported by STAT.
        total_messages: Messages this pass needs to download.
        synced_messages: Messages handled so far (stored or skipped).
        new_messages: Messages stored so far.
        failed_messages: Messages skipped so far.
        error: Error message if status is ERROR.
    """
    status: SyncStatus = SyncStatus.IDLE
    account: str | None = None
    server_messages: int = 0
    total_messages: int = 0
    synced_messages: int = 0
    new_messages: int = 0
    failed_messages: int = 0
    error: str | None = None

    @property
    def percent_complete(self) -> float:
        """Returns completion percentage (0.0 - 100.0) of the download phase."""
        if self.total_messages == 0:
            return 0.0
        return (self.synced_messages / self.total_messages) * 100.0


# Type alias for progress callbacks
ProgressCallback = Callable[[SyncProgress], None]

# Turns raw message bytes into the flat header mapping (see headers.HEADER_FIELDS)
HeaderParser = Callable[[bytes], dict[str, str]]


@dataclass(frozen=True)
class MessageFailure:
    """
    A message that was skipped during a pass.

    Attributes:
        uidl: UIDL of the skipped message.
        message_number: Its number in the session that tried to fetch it.
        kind: Which step failed.
        error: Text of the underlying error.
    """
    uidl: str
    message_number: int
    kind: FailureKind
    error: str


@dataclass
class SyncResult:
    """
    Result of a sync pass that was not aborted.

    Attributes:
        new_messages: Messages stored by this pass.
        failures: Messages that were skipped, in the order they were tried.
        cancelled: True if the pass stopped early because of cancel().
        duration_seconds: Time taken for the pass.
    """
    new_messages: int = 0
    failures: list[MessageFailure] = field(default_factory=list)
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """True if every missing message was stored."""
        return not self.failures and not self.cancelled


# =============================================================================
# Diffing and Record Construction
# =============================================================================

def find_new_identifiers(
    remote: dict[int, str],
    known: set[str],
) -> list[tuple[int, str]]:
    """
    Work out which remote messages still need to be downloaded.

    Args:
        remote: Message number -> UIDL, as reported by the server this session.
        known: UIDLs already stored locally.

    Returns:
        (message_number, uidl) pairs for every UIDL in remote but not in
        known, ascending by message number. A UIDL the server reports under
        several numbers appears once, with its lowest number.

    Example:
        >>> find_new_identifiers({1: "a", 2: "b", 3: "c"}, {"b"})
        [(1, 'a'), (3, 'c')]
    """
    pending: list[tuple[int, str]] = []
    seen: set[str] = set()

    for number in sorted(remote):
        uidl = remote[number]
        if uidl in known or uidl in seen:
            continue
        seen.add(uidl)
        pending.append((number, uidl))

    return pending


def build_message(
    folder_id: int | None,
    uidl: str,
    raw: bytes,
    headers: dict[str, str],
) -> Message:
    """
    Build the local record for a downloaded message.

    Missing headers become empty values; a missing or unparseable Date
    becomes the current time. POP3 has no server flags, so flags are NONE.

    Args:
        folder_id: Local folder the message goes into.
        uidl: The message's UIDL.
        raw: Complete raw message.
        headers: Output of the header parser for raw.
    """
    from_header = headers.get("from", "")
    senders = parse_addresses(from_header)
    if senders:
        sender_name, sender = senders[0]
    else:
        sender_name, sender = "", from_header

    return Message(
        folder_id=folder_id,
        uidl=uidl,
        uid=uidl_key(uidl),
        message_id=headers.get("message_id", ""),
        in_reply_to=headers.get("in_reply_to", ""),
        references=parse_message_ids(headers.get("references", "")),
        subject=headers.get("subject", ""),
        sender=sender,
        sender_name=sender_name,
        recipients=[addr for _, addr in parse_addresses(headers.get("to", ""))],
        cc=[addr for _, addr in parse_addresses(headers.get("cc", ""))],
        date_sent=parse_date(headers.get("date", "")),
        date_received=datetime.now(timezone.utc),
        flags=MessageFlags.NONE,
        size=len(raw),
        raw=raw,
        raw_headers=split_header_block(raw),
    )


# =============================================================================
# Sync Manager
# =============================================================================

class SyncManager:
    """
    Runs synchronization passes for one account.

    Each pass opens its own connection (or, with reconnect_per_message, one
    connection per downloaded message) and closes it before returning.
    Separate SyncManagers can run concurrently; they share nothing but the
    database.

    Usage:
        >>> sync = SyncManager(ClientFactory(account, config.sync), repository)
        >>> result = await sync.sync(progress_callback=print)
        >>> print(result.new_messages)

    Attributes:
        factory: Builds and logs in the POP3 clients.
        repo: Repository for local storage operations.
        account: Account being synced.
        folder_name: Local folder messages are stored in.
        batch_size: Messages downloaded between progress checkpoints.
        reconnect_per_message: Use a fresh connection for every download.
    """

    # Default batch size (overridden by SyncConfig.batch_size)
    BATCH_SIZE = 50

    def __init__(
        self,
        factory: ClientFactory,
        repo: Repository,
        *,
        folder_name: str = INBOX,
        batch_size: int | None = None,
        reconnect_per_message: bool | None = None,
        parser: HeaderParser = extract_headers,
    ) -> None:
        """
        Initialize the sync manager.

        Args:
            factory: Client factory for the account to sync.
            repo: Storage repository for persistence.
            folder_name: Local folder to mirror into.
            batch_size: Overrides factory.sync_config.batch_size.
            reconnect_per_message: Overrides factory.sync_config.reconnect_per_message.
            parser: Header parser applied to each downloaded message.
        """
        self.factory = factory
        self.repo = repo
        self.account: Account = factory.account
        self.folder_name = folder_name
        self.batch_size = max(1, batch_size or factory.sync_config.batch_size or self.BATCH_SIZE)
        if reconnect_per_message is None:
            reconnect_per_message = factory.sync_config.reconnect_per_message
        self.reconnect_per_message = reconnect_per_message
        self.parser = parser
        self._cancelled = False
        self._progress = SyncProgress()

    def _report_progress(
        self,
        callback: ProgressCallback | None,
        **updates,
    ) -> None:
        """
        Update progress and notify callback.

        Args:
            callback: Optional callback to notify.
            **updates: Fields to update in progress.
        """
        for key, value in updates.items():
            if hasattr(self._progress, key):
                setattr(self._progress, key, value)

        if callback:
            callback(self._progress)

    async def sync(
        self,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> SyncResult:
        """
        Run one synchronization pass.

        This is the main entry point for synchronization.

        Args:
            progress_callback: Function to call with progress updates.

        Returns:
            SyncResult with the number of stored messages and any skipped ones.

        Raises:
            SyncAbortedError: If the pass could not connect, log in, list the
                              mailbox, or lost the connection midway.
            asyncio.CancelledError: If the task was cancelled. The connection
                                    is closed first.
        """
        start_time = time.monotonic()
        result = SyncResult()
        self._cancelled = False
        self._progress = SyncProgress(status=SyncStatus.CONNECTING, account=self.account.name)

        client: POP3Client | None = None
        logger.info(f"Starting sync for account: {self.account.name}")

        try:
            self._report_progress(progress_callback, status=SyncStatus.CONNECTING)

            try:
                credentials = self.factory.resolve_credentials()
            except POP3Error as e:
                raise self._abort("Could not resolve credentials", e, result) from e

            folder = await self.repo.get_or_create_folder(self.account, self.folder_name)

            try:
                client = await self.factory.connect(credentials)
                access = MessageAccess(client)

                self._report_progress(progress_callback, status=SyncStatus.LISTING)
                stat = await access.stat()
                remote = await access.unique_ids()
            except POP3Error as e:
                raise self._abort("Could not list mailbox", e, result) from e

            logger.info(f"Server has {stat.count} messages ({len(remote)} UIDLs)")

            if not remote:
                self._report_progress(
                    progress_callback,
                    status=SyncStatus.COMPLETE,
                    server_messages=stat.count,
                )
                logger.info(f"Nothing to sync for {self.account.name}: mailbox is empty")
                result.duration_seconds = time.monotonic() - start_time
                return result

            self._report_progress(
                progress_callback,
                status=SyncStatus.DIFFING,
                server_messages=stat.count,
            )
            known = await self.repo.get_known_uidls(folder.id)
            pending = find_new_identifiers(remote, known)
            logger.info(f"{len(pending)} new messages to download for {self.account.name}")

            if self.reconnect_per_message:
                # Numbers from the listing session are not reused elsewhere
                await client.disconnect()
                client = None

            self._report_progress(
                progress_callback,
                status=SyncStatus.SYNCING,
                total_messages=len(pending),
            )
            await self._download(client, folder, pending, result, credentials, progress_callback)

            if self._cancelled:
                result.cancelled = True
                self._report_progress(progress_callback, status=SyncStatus.CANCELLED)
                logger.info(f"Sync cancelled for {self.account.name}")
            else:
                folder.total_messages = await self.repo.get_message_count(folder.id)
                folder.last_sync = datetime.now(timezone.utc)
                await self.repo.save_folder(folder)
                self._report_progress(progress_callback, status=SyncStatus.COMPLETE)
                logger.info(
                    f"Sync complete for {self.account.name}: {result.new_messages} new, "
                    f"{len(result.failures)} skipped"
                )

        except SyncAbortedError as e:
            logger.error(f"Sync aborted for {self.account.name}: {e}")
            self._report_progress(progress_callback, status=SyncStatus.ERROR, error=str(e))
            raise
        except asyncio.CancelledError:
            self._report_progress(progress_callback, status=SyncStatus.CANCELLED)
            raise
        finally:
            if client is not None:
                await client.disconnect()

        result.duration_seconds = time.monotonic() - start_time
        return result

    async def _download(
        self,
        client: POP3Client | None,
        folder: Folder,
        pending: list[tuple[int, str]],
        result: SyncResult,
        credentials: Credentials,
        progress_callback: ProgressCallback | None,
    ) -> None:
        """
        Download the pending messages batch by batch.

        If a message breaks the framing of the shared session, the client
        closes it. The remaining messages then continue on a replacement
        session, located there by UIDL.
        """
        total = len(pending)
        total_batches = (total + self.batch_size - 1) // self.batch_size

        session = client
        renumbered: dict[str, int] | None = None

        try:
            for i in range(0, total, self.batch_size):
                if self._cancelled:
                    return

                batch = pending[i:i + self.batch_size]
                batch_num = (i // self.batch_size) + 1
                logger.debug(
                    f"Fetching batch {batch_num}/{total_batches} "
                    f"({len(batch)} messages) for {self.account.name}"
                )

                for number, uidl in batch:
                    if self._cancelled:
                        return

                    if session is None and not self.reconnect_per_message:
                        session, renumbered = await self._reopen_session(credentials, result)

                    if session is None:
                        await self._fetch_in_new_session(folder, uidl, result, credentials)
                    else:
                        if renumbered is not None:
                            number = renumbered.get(uidl)
                        if number is None:
                            logger.info(f"Message {uidl} is no longer on the server, skipping")
                        else:
                            await self._fetch_one(MessageAccess(session), folder, number, uidl, result)

                        if not session.is_connected:
                            logger.warning(
                                f"Session for {self.account.name} was closed after "
                                f"message {uidl}; remaining messages use a new session"
                            )
                            if session is not client:
                                await session.disconnect()
                            session = None

                    self._report_progress(
                        progress_callback,
                        synced_messages=self._progress.synced_messages + 1,
                        new_messages=result.new_messages,
                        failed_messages=len(result.failures),
                    )
        finally:
            if session is not None and session is not client:
                await session.disconnect()

    async def _reopen_session(
        self,
        credentials: Credentials,
        result: SyncResult,
    ) -> tuple[POP3Client, dict[str, int]]:
        """
        Open a replacement session and map each UIDL to its number there.

        Raises:
            SyncAbortedError: If the server can't be reached or listed again.
        """
        try:
            client = await self.factory.connect(credentials)
        except POP3Error as e:
            raise self._abort("Could not reconnect", e, result) from e

        try:
            remote = await MessageAccess(client).unique_ids()
        except POP3Error as e:
            await client.disconnect()
            raise self._abort("Could not list mailbox after reconnecting", e, result) from e
        except BaseException:
            await client.disconnect()
            raise

        return client, {uidl: n for n, uidl in find_new_identifiers(remote, set())}

    async def _fetch_in_new_session(
        self,
        folder: Folder,
        uidl: str,
        result: SyncResult,
        credentials: Credentials,
    ) -> None:
        """
        Download one message over its own connection.

        The message is located again by UIDL, since numbers from another
        session mean nothing here.
        """
        try:
            async with await self.factory.connect(credentials) as client:
                access = MessageAccess(client)
                numbers = find_new_identifiers(await access.unique_ids(), set())
                number = next((n for n, u in numbers if u == uidl), None)
                if number is None:
                    logger.info(f"Message {uidl} is no longer on the server, skipping")
                    return
                await self._fetch_one(access, folder, number, uidl, result)
        except SyncAbortedError:
            raise
        except POP3Error as e:
            raise self._abort(f"Could not reconnect for {uidl}", e, result) from e

    async def _fetch_one(
        self,
        access: MessageAccess,
        folder: Folder,
        number: int,
        uidl: str,
        result: SyncResult,
    ) -> None:
        """
        Retrieve, parse and store one message.

        Isolated failures are recorded in result; connection errors abort.
        """
        try:
            raw = await access.retrieve(number)
        except POP3ConnectionError as e:
            raise self._abort(f"Connection lost while fetching {uidl}", e, result) from e
        except POP3ProtocolError as e:
            self._record_failure(result, uidl, number, FailureKind.PROTOCOL, e)
            return

        try:
            message = build_message(folder.id, uidl, raw, self.parser(raw))
        except Exception as e:
            self._record_failure(result, uidl, number, FailureKind.PARSE, e)
            return

        try:
            await self.repo.insert_message(message)
        except Exception as e:
            self._record_failure(result, uidl, number, FailureKind.STORAGE, e)
            return

        result.new_messages += 1
        logger.debug(f"Stored message {uidl} ({message.size} bytes)")

    def _record_failure(
        self,
        result: SyncResult,
        uidl: str,
        number: int,
        kind: FailureKind,
        error: Exception,
    ) -> None:
        logger.error(
            f"Skipping message {uidl} (#{number}) for {self.account.name}: "
            f"{kind.name.lower()} error: {error}",
            exc_info=True,
        )
        result.failures.append(MessageFailure(uidl, number, kind, str(error)))

    def _abort(self, reason: str, error: POP3Error, result: SyncResult) -> SyncAbortedError:
        """Build the error that ends the pass, keeping the cause's kind."""
        return SyncAbortedError(
            f"{reason}: {error}",
            kind=error.kind,
            new_messages=result.new_messages,
        )

    def cancel(self) -> None:
        """
        Request cancellation of the current pass.

        The pass stops before the next message; the one being downloaded
        is finished (or skipped) first.
        """
        logger.info("Sync cancellation requested")
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        """Check if sync was cancelled."""
        return self._cancelled
