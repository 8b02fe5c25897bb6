# =============================================================================
# POP3 Transport
# =============================================================================
# A single bidirectional line-based byte stream to one server.
#
# Key responsibilities:
#   - Opening the TCP connection (TLS-wrapped right away for implicit TLS)
#   - Upgrading a plaintext connection in place (STARTTLS)
#   - Reading and writing CRLF-terminated lines with a bounded timeout
#   - Closing idempotently
#
# Design notes:
#   - No protocol knowledge lives here; POP3Client owns the conversation.
#   - Lines are bytes: message payloads may be in any charset, so decoding
#     is left to whoever knows what the line means.
#   - Every await on the socket is bounded by ConnectionConfig.timeout.
#     Expiry is a connection error and is never retried here.
# =============================================================================

import asyncio
import logging
import ssl

from popkeep.core.account import ConnectionConfig, SecurityMode
from popkeep.errors import POP3ConnectionError, POP3ProtocolError

logger = logging.getLogger(__name__)

# POP3 line terminator (RFC 1939)
CRLF = b"\r\n"


def create_ssl_context(config: ConnectionConfig) -> ssl.SSLContext:
    """
    Build the TLS context for a connection.

    Peer and hostname verification are on by default. They are only turned
    off when the account explicitly sets verify_certificates = false.
    """
    context = ssl.create_default_context(cafile=config.ca_file)
    if not config.verify_certificates:
        logger.warning(
            f"Certificate verification disabled for {config.host}:{config.port}"
        )
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class Transport:
    """
    Line-oriented connection to a single POP3 server.

    Usage:
        >>> transport = Transport(config)
        >>> await transport.open()
        >>> greeting = await transport.read_line()
        >>> await transport.write_line("NOOP")
        >>> await transport.close()

    Attributes:
        config: Immutable connection settings.
    """

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._encrypted = False

    @property
    def is_open(self) -> bool:
        """True while the underlying stream is usable."""
        return self._writer is not None

    @property
    def is_encrypted(self) -> bool:
        """True once TLS is active on the stream."""
        return self._encrypted

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def open(self) -> None:
        """
        Connect to the server.

        Implicit TLS wraps the socket before the first byte is read;
        plain and STARTTLS connections start unencrypted.

        Raises:
            POP3ConnectionError: On DNS failure, refused connection, timeout
                                 or certificate validation failure.
        """
        if self._writer is not None:
            return

        host, port = self.config.host, self.config.port
        implicit_tls = self.config.security == SecurityMode.IMPLICIT_TLS
        ssl_context = create_ssl_context(self.config) if implicit_tls else None

        logger.debug(f"Opening connection to {host}:{port} ({self.config.security.value})")

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host,
                    port,
                    ssl=ssl_context,
                    server_hostname=host if ssl_context else None,
                    limit=self.config.max_line_length,
                ),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise POP3ConnectionError(
                f"Connection timed out to {host}:{port}"
            ) from e
        except ssl.SSLCertVerificationError as e:
            raise POP3ConnectionError(
                f"Certificate rejected by {host}:{port}: {e.verify_message}"
            ) from e
        except OSError as e:
            raise POP3ConnectionError(
                f"Failed to connect to {host}:{port}: {e}"
            ) from e

        self._encrypted = implicit_tls

    async def upgrade(self) -> None:
        """
        Perform the TLS handshake on the already-open plaintext stream.

        Only meaningful in STARTTLS mode, after the server accepted STLS.

        Raises:
            POP3ConnectionError: If the handshake fails or the stream is closed.
        """
        writer = self._require_open()
        if self._encrypted:
            return

        host = self.config.host
        logger.debug(f"Upgrading connection to {host} to TLS")

        try:
            await asyncio.wait_for(
                writer.start_tls(
                    create_ssl_context(self.config),
                    server_hostname=host,
                ),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise POP3ConnectionError(f"TLS handshake with {host} timed out") from e
        except ssl.SSLCertVerificationError as e:
            raise POP3ConnectionError(
                f"Certificate rejected by {host}: {e.verify_message}"
            ) from e
        except OSError as e:
            raise POP3ConnectionError(f"TLS handshake with {host} failed: {e}") from e

        self._encrypted = True

    async def close(self) -> None:
        """
        Close the connection.

        Idempotent and never raises. Called on failure paths, so the caller
        keeps reporting its own error.
        """
        writer = self._writer
        self._reader = None
        self._writer = None
        self._encrypted = False

        if writer is None:
            return

        try:
            writer.close()
            await asyncio.wait_for(writer.wait_closed(), timeout=self.config.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Error while closing connection to {self.config.host}: {e}")

    # =========================================================================
    # Line I/O
    # =========================================================================

    async def read_line(self) -> bytes:
        """
        Read one line, with the trailing CR/LF removed.

        Raises:
            POP3ConnectionError: If the peer closed the connection or the
                                 timeout elapsed.
            POP3ProtocolError: If the line exceeds max_line_length.
        """
        reader = self._require_reader()

        try:
            line = await asyncio.wait_for(reader.readline(), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise POP3ConnectionError(
                f"Timed out waiting for {self.config.host} after {self.config.timeout}s"
            ) from e
        except ValueError as e:
            # StreamReader raises ValueError when a line overruns its limit
            raise POP3ProtocolError(
                f"Line from {self.config.host} exceeds {self.config.max_line_length} bytes"
            ) from e
        except OSError as e:
            raise POP3ConnectionError(f"Read from {self.config.host} failed: {e}") from e

        if not line.endswith(b"\n"):
            # EOF: either nothing at all, or a partial line without terminator
            raise POP3ConnectionError(f"Connection closed by {self.config.host}")

        return line.rstrip(b"\r\n")

    async def write_line(self, line: str | bytes) -> None:
        """
        Write one line, appending CRLF.

        Raises:
            POP3ConnectionError: If the write fails or times out.
        """
        writer = self._require_open()
        data = line.encode("utf-8") if isinstance(line, str) else line

        try:
            writer.write(data + CRLF)
            await asyncio.wait_for(writer.drain(), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise POP3ConnectionError(f"Timed out writing to {self.config.host}") from e
        except OSError as e:
            raise POP3ConnectionError(f"Write to {self.config.host} failed: {e}") from e

    def _require_open(self) -> asyncio.StreamWriter:
        if self._writer is None:
            raise POP3ConnectionError(f"Not connected to {self.config.host}")
        return self._writer

    def _require_reader(self) -> asyncio.StreamReader:
        self._require_open()
        assert self._reader is not None
        return self._reader
