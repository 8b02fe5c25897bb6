# =============================================================================
# Client Factory
# =============================================================================
# Builds ready-to-use POP3 clients for an account.
#
#   Account + SyncConfig  ->  ConnectionConfig  ->  POP3Client
#   keyring               ->  Credentials       ->  login
#
# Passwords come from the system keyring (service "popkeep:<account>", user =
# the account's username) and are resolved before any network I/O, so a
# missing password never costs a connection attempt.
# =============================================================================

import logging
from typing import Callable, Protocol

import keyring
import keyring.errors

from popkeep.config import SyncConfig
from popkeep.core import Account, ConnectionConfig, Credentials
from popkeep.errors import ConfigurationError
from popkeep.pop3.access import MailboxStat, MessageAccess
from popkeep.pop3.client import POP3Client
from popkeep.pop3.transport import Transport

logger = logging.getLogger(__name__)

# Protocol capabilities, for callers that handle several mail protocols.
# POP3 sees one mailbox, has no server-side flags and cannot search.
PROTOCOL_NAME = "pop3"
SUPPORTS_FOLDERS = False
SUPPORTS_FLAGS = False
SUPPORTS_SEARCH = False


class CredentialProvider(Protocol):
    """Anything that can produce login credentials for an account."""

    def resolve(self, account: Account) -> Credentials:
        ...


class KeyringCredentialProvider:
    """
    Looks up account passwords in the system keyring.

    Store one with:
        keyring set popkeep:personal user@example.com
    """

    def resolve(self, account: Account) -> Credentials:
        """
        Get the credentials for an account.

        Raises:
            ConfigurationError: If no password is stored, or the keyring
                                backend is unavailable.
        """
        try:
            password = keyring.get_password(account.keyring_service, account.username)
        except keyring.errors.KeyringError as e:
            raise ConfigurationError(f"Keyring unavailable for {account.name}: {e}") from e

        if not password:
            raise ConfigurationError(
                f"No password found in keyring for {account.username}. "
                f"Set it with: keyring set {account.keyring_service} {account.username}"
            )
        return Credentials(username=account.username, password=password)


class ClientFactory:
    """
    Creates POP3 clients for one account.

    Every call to create() or connect() returns a brand new client; clients
    are never shared or reopened.

    Usage:
        >>> factory = ClientFactory(account, config.sync)
        >>> credentials = factory.resolve_credentials()
        >>> async with await factory.connect(credentials) as client:
        ...     uidls = await MessageAccess(client).unique_ids()

    Attributes:
        account: The account clients are built for.
        sync_config: Timeouts, line limit and TLS settings.
    """

    def __init__(
        self,
        account: Account,
        sync_config: SyncConfig | None = None,
        *,
        credentials: CredentialProvider | None = None,
        transport_factory: Callable[[ConnectionConfig], Transport] | None = None,
    ) -> None:
        """
        Args:
            account: Account to connect.
            sync_config: Connection tunables. Defaults to SyncConfig().
            credentials: Password source. Defaults to the system keyring.
            transport_factory: Builds the transport for each new client.
                               Defaults to a real Transport.
        """
        self.account = account
        self.sync_config = sync_config or SyncConfig()
        self._credentials = credentials or KeyringCredentialProvider()
        self._transport_factory = transport_factory

    @property
    def connection_config(self) -> ConnectionConfig:
        """Connection settings for the account. Raises ConfigurationError if incomplete."""
        return self.sync_config.connection_config(self.account)

    def resolve_credentials(self) -> Credentials:
        """Resolve the account's credentials. Raises ConfigurationError if missing."""
        return self._credentials.resolve(self.account)

    def create(self) -> POP3Client:
        """Build a new, not yet connected client."""
        config = self.connection_config
        transport = self._transport_factory(config) if self._transport_factory else None
        return POP3Client(config, transport=transport)

    async def connect(self, credentials: Credentials | None = None) -> POP3Client:
        """
        Build a client, connect and log in.

        If anything fails the half-built client is disconnected before the
        error propagates.

        Args:
            credentials: Credentials to log in with. Resolved from the
                         provider when omitted.

        Returns:
            An authenticated client. The caller owns it and must disconnect it.
        """
        if credentials is None:
            credentials = self.resolve_credentials()

        client = self.create()
        try:
            await client.login(credentials.username, credentials.password)
        except BaseException:
            await client.disconnect()
            raise
        return client

    async def test_connection(self) -> MailboxStat:
        """
        Check that the account can connect and log in.

        Returns:
            The mailbox statistics reported by STAT.

        Raises:
            ConfigurationError: If settings or the password are missing.
            POP3ConnectionError: If the server can't be reached.
            POP3AuthenticationError: If the login is rejected.
        """
        logger.info(f"Testing connection for {self.account.name}")
        async with await self.connect() as client:
            stat = await MessageAccess(client).stat()
        logger.info(
            f"{self.account.name}: {stat.count} messages, {stat.total_size} bytes on server"
        )
        return stat
