# =============================================================================
# POP3 Client
# =============================================================================
# Speaks the POP3 protocol (RFC 1939, STLS from RFC 2595) over a Transport.
#
# Key responsibilities:
#   - Connection lifecycle (connect, STARTTLS upgrade, disconnect)
#   - Authentication (USER / PASS)
#   - Command/response framing: one status line per command, optionally
#     followed by payload lines ending with a lone "."
#   - Byte-unstuffing of payload lines
#
# Design notes:
#   - POP3 has no pipelining. Exactly one command may be in flight; issuing
#     a second one before the first response is fully read is a bug in the
#     caller and raises immediately.
#   - A reply without +OK/-ERR, or a failure halfway through a response,
#     leaves the stream in an unknown position. The connection is closed
#     rather than guessed at.
#   - The client never sends anything that changes the mailbox (no DELE).
# =============================================================================

import logging
from enum import Enum, auto

from popkeep.core.account import ConnectionConfig, SecurityMode
from popkeep.errors import (
    ConfigurationError,
    POP3AuthenticationError,
    POP3ConnectionError,
    POP3Error,
    POP3ProtocolError,
)
from popkeep.pop3.transport import Transport

# Set up logging for this module
logger = logging.getLogger(__name__)

# Status markers (RFC 1939 section 3)
OK = b"+OK"
ERR = b"-ERR"

# Lone dot ending every multi-line response
TERMINATOR = b"."


def unstuff(line: bytes) -> bytes:
    """
    Undo POP3 byte-stuffing on one payload line.

    The server prefixes every payload line that starts with "." with one
    extra ".", so that a line holding a literal "." can't be mistaken for
    the terminator. Exactly one leading dot is removed:

        b"..": b"."     b"...x": b"..x"     b"x.": b"x."
    """
    if line.startswith(b"."):
        return line[1:]
    return line


def _decode(line: bytes) -> str:
    """Decode a status line for messages and parsing."""
    return line.decode("utf-8", errors="replace")


class NegativeReply(POP3ProtocolError):
    """
    A well-formed -ERR reply.

    Unlike other protocol errors the stream is still in sync afterwards,
    so the session stays usable.
    """
    pass


class ConnectionState(Enum):
    """
    Lifecycle of a POP3Client.

    Transitions only go forward:
        DISCONNECTED -> CONNECTED -> AUTHENTICATED
    CLOSED is terminal and reachable from any state. A closed client is
    never reopened; build a new one instead.
    """
    DISCONNECTED = auto()   # Nothing opened yet
    CONNECTED = auto()      # Greeting consumed (and TLS active, if configured)
    AUTHENTICATED = auto()  # USER/PASS accepted (TRANSACTION state)
    CLOSED = auto()         # Transport released


class POP3Client:
    """
    Async POP3 protocol client.

    Usage:
        >>> async with POP3Client(config) as client:
        ...     await client.login("user@example.com", password)
        ...     status = await client.execute("STAT")

    Leaving the `async with` block always disconnects, whether the block
    finished, raised, or was cancelled.

    Attributes:
        config: Connection settings for this client.
        state: Current ConnectionState.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        transport: Transport | None = None,
    ) -> None:
        """
        Initialize the client. Nothing is opened until connect().

        Args:
            config: Connection settings.
            transport: Transport to use. Defaults to a new Transport(config);
                       tests pass a scripted stand-in here.
        """
        self.config = config
        self.state = ConnectionState.DISCONNECTED
        self._transport = transport if transport is not None else Transport(config)
        self._in_flight: str | None = None

    @property
    def is_connected(self) -> bool:
        """True when the session can accept commands."""
        return self.state in (ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED)

    @property
    def is_authenticated(self) -> bool:
        """True once the server accepted the login."""
        return self.state == ConnectionState.AUTHENTICATED

    async def __aenter__(self) -> "POP3Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> None:
        """
        Open the connection and consume the server greeting.

        For STARTTLS the STLS command is issued right after the greeting and
        the stream is upgraded before anything else is sent.

        Raises:
            POP3ConnectionError: If the transport fails, or the client was closed.
            POP3ProtocolError: If the greeting or STLS reply is not +OK.
        """
        if self.is_connected:
            return
        if self.state == ConnectionState.CLOSED:
            raise POP3ConnectionError("Client is closed; create a new client to reconnect")

        logger.info(f"Connecting to {self.config.host}:{self.config.port}")

        try:
            await self._transport.open()

            greeting = await self._read_status("greeting")
            logger.debug(f"Server greeting: {greeting}")

            if self.config.security == SecurityMode.STARTTLS:
                await self._starttls()

        except BaseException:
            # Includes cancellation: nothing half-open may be left behind
            await self._close_transport()
            raise

        self.state = ConnectionState.CONNECTED
        logger.debug(f"Connected to {self.config.host}")

    async def _starttls(self) -> None:
        """Issue STLS and upgrade the stream to TLS."""
        logger.debug("Upgrading to TLS via STLS")
        await self._transport.write_line("STLS")
        await self._read_status("STLS")
        await self._transport.upgrade()

    async def login(self, username: str, password: str) -> None:
        """
        Authenticate with USER and PASS.

        Connects first if needed.

        Args:
            username: Mailbox login name.
            password: Mailbox password. Never logged.

        Raises:
            ConfigurationError: If no password was supplied.
            POP3AuthenticationError: If the server rejects USER or PASS.
            POP3ConnectionError: If the connection fails.
        """
        if not password:
            raise ConfigurationError(f"No password available for {username}")

        if self.state == ConnectionState.AUTHENTICATED:
            return
        if self.state != ConnectionState.CONNECTED:
            await self.connect()

        logger.debug(f"Authenticating as {username}")

        try:
            await self._command(f"USER {username}")
        except NegativeReply as e:
            raise POP3AuthenticationError(f"Server rejected user {username}: {e}") from e

        try:
            await self._command(f"PASS {password}", log_as="PASS ****")
        except NegativeReply as e:
            raise POP3AuthenticationError(f"Authentication failed for {username}: {e}") from e

        self.state = ConnectionState.AUTHENTICATED
        logger.debug("Authentication successful")

    async def disconnect(self) -> None:
        """
        End the session and release the connection.

        Sends QUIT when a session is open and reads the reply, ignoring any
        failure of that exchange. If a command is still in flight (for
        example after cancellation mid-response), QUIT is skipped because the
        reply could not be told apart from leftover payload.

        Safe to call in any state and any number of times. Never raises.
        """
        if self.is_connected and self._in_flight is None:
            try:
                logger.debug("Sending QUIT")
                await self._command("QUIT")
            except POP3Error as e:
                logger.warning(f"Error during QUIT: {e}")

        await self._close_transport()

    async def _close_transport(self) -> None:
        """Close the transport and enter the terminal CLOSED state."""
        self.state = ConnectionState.CLOSED
        self._in_flight = None
        await self._transport.close()

    def require_authenticated(self, operation: str) -> None:
        """
        Check that the session is in the TRANSACTION state.

        Raises:
            POP3ConnectionError: If the connection is not open.
            POP3ProtocolError: If the client has not logged in yet.
        """
        if self.state == ConnectionState.AUTHENTICATED:
            return
        if self.state == ConnectionState.CONNECTED:
            raise POP3ProtocolError(f"{operation} requires an authenticated session")
        raise POP3ConnectionError(f"{operation} failed: not connected to {self.config.host}")

    # =========================================================================
    # Commands
    # =========================================================================

    async def execute(self, command: str) -> str:
        """
        Send a single-line command and return the text after "+OK".

        Raises:
            POP3ProtocolError: On a -ERR reply or a framing violation.
            POP3ConnectionError: If the connection fails.
        """
        return await self._command(command)

    async def execute_multiline(self, command: str) -> tuple[str, list[bytes]]:
        """
        Send a command whose positive reply carries a payload.

        Reads every payload line up to the terminating ".", unstuffing each
        one, so the connection is ready for the next command on return.

        Returns:
            Tuple of (status text after "+OK", unstuffed payload lines).

        Raises:
            POP3ProtocolError: On a -ERR reply or a framing violation.
            POP3ConnectionError: If the connection fails mid-response.
        """
        return await self._command(command, multiline=True)

    async def _command(
        self,
        command: str,
        *,
        multiline: bool = False,
        log_as: str | None = None,
    ) -> str | tuple[str, list[bytes]]:
        """
        One full round trip: write the command, read the complete response.

        Any failure other than a clean -ERR (transport error, framing
        violation, cancellation) leaves the stream position unknown, so the
        connection is closed before the error propagates.
        """
        shown = log_as or command
        name = shown.split(" ", 1)[0].upper()

        if self._in_flight is not None:
            raise RuntimeError(
                f"Cannot send {name} while {self._in_flight} is still in flight "
                f"(POP3 does not pipeline)"
            )
        if not self.is_connected:
            raise POP3ConnectionError(f"{name} failed: not connected to {self.config.host}")

        self._in_flight = name
        logger.debug(f"> {shown}")

        try:
            await self._transport.write_line(command)
            status = await self._read_status(name)
            payload = await self._read_payload() if multiline else None
        except NegativeReply:
            raise
        except BaseException:
            await self._close_transport()
            raise
        finally:
            self._in_flight = None

        if multiline:
            return status, payload
        return status

    async def _read_status(self, name: str) -> str:
        """
        Read and classify one status line.

        Returns:
            The text after "+OK".

        Raises:
            NegativeReply: On "-ERR".
            POP3ProtocolError: If the line carries neither marker.
        """
        line = await self._transport.read_line()

        if line.startswith(OK):
            return _decode(line[len(OK):]).strip()
        if line.startswith(ERR):
            reason = _decode(line[len(ERR):]).strip()
            raise NegativeReply(f"{name} failed: {reason or '-ERR'}")

        raise POP3ProtocolError(f"Unexpected reply to {name}: {_decode(line)!r}")

    async def _read_payload(self) -> list[bytes]:
        """Read payload lines up to the lone "." and unstuff them."""
        lines: list[bytes] = []
        while True:
            line = await self._transport.read_line()
            if line == TERMINATOR:
                return lines
            lines.append(unstuff(line))
