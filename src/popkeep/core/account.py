# =============================================================================
# Account Model
# =============================================================================
# Represents a POP3 account and the connection settings derived from it.
#
# IMPORTANT: Passwords are NOT stored here. They are retrieved from the system
# keyring at runtime using the 'keyring' library. This keeps credentials secure
# and out of config files.
# =============================================================================

from dataclasses import dataclass, field
from enum import Enum

from popkeep.errors import ConfigurationError


class SecurityMode(Enum):
    """
    How the connection to the POP3 server is encrypted.

        - PLAIN: Never encrypted (port 110, only for trusted networks)
        - IMPLICIT_TLS: TLS from the first byte (port 995, recommended)
        - STARTTLS: Starts in plaintext, upgraded with the STLS command (port 110)
    """
    PLAIN = "plain"
    IMPLICIT_TLS = "implicit-tls"
    STARTTLS = "starttls"

    @classmethod
    def parse(cls, value: "str | SecurityMode") -> "SecurityMode":
        """
        Convert a config value into a SecurityMode.

        Accepts the canonical names plus the short aliases commonly found in
        mail client configs ("none", "ssl", "tls").

        Raises:
            ConfigurationError: If the value names no known mode.
        """
        if isinstance(value, cls):
            return value

        normalized = str(value).strip().lower()
        aliases = {
            "none": cls.PLAIN,
            "ssl": cls.IMPLICIT_TLS,
            "tls": cls.STARTTLS,
        }
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(f"Unsupported security mode: {value!r}") from None


# Standard ports per security mode
DEFAULT_PORTS = {
    SecurityMode.PLAIN: 110,
    SecurityMode.IMPLICIT_TLS: 995,
    SecurityMode.STARTTLS: 110,
}


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Everything the transport needs to reach one server.

    Frozen: a client never sees its connection settings change underneath it.

    Attributes:
        host: Hostname of the POP3 server.
        port: TCP port.
        security: Encryption mode.
        timeout: Seconds allowed for connecting and for every single read/write.
        max_line_length: Longest line (in bytes) accepted from the server.
        verify_certificates: Verify the peer certificate and hostname.
                             Only disable for servers you explicitly trust.
        ca_file: Optional CA bundle used instead of the system store.
    """
    host: str
    port: int
    security: SecurityMode = SecurityMode.IMPLICIT_TLS
    timeout: float = 30.0
    max_line_length: int = 65536
    verify_certificates: bool = True
    ca_file: str | None = None


@dataclass(frozen=True)
class Credentials:
    """Username and password for one login. The password never shows up in repr()."""
    username: str
    password: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='****')"


@dataclass
class Account:
    """
    Represents a POP3 account.

    Attributes:
        name: A unique identifier for this account (e.g., "personal", "work").
              Used as the key in config files and for keyring lookups.
        email: The email address associated with this account.
        username: Login name for the server. Defaults to the email address.

        pop_host: Hostname of the POP3 server (e.g., "pop.example.com").
        pop_port: Port for the POP3 connection. Defaults to the standard port
                  of the security mode (995 for implicit TLS, 110 otherwise).
        pop_security: "plain", "implicit-tls" or "starttls".

        id: Database primary key. None until the account is saved to storage.
        enabled: Whether this account is active. Disabled accounts won't sync.

    Example:
        >>> account = Account(
        ...     name="personal",
        ...     email="user@example.com",
        ...     pop_host="pop.example.com",
        ...     pop_security="implicit-tls",
        ... )
    """

    # Account identification
    name: str
    email: str
    username: str = ""

    # POP3 configuration
    pop_host: str = ""
    pop_port: int = 0                   # 0 = standard port for pop_security
    pop_security: str = "implicit-tls"

    # Database fields
    id: int | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.username:
            self.username = self.email

    @property
    def security_mode(self) -> SecurityMode:
        """The parsed security mode. Raises ConfigurationError if unknown."""
        return SecurityMode.parse(self.pop_security)

    @property
    def keyring_service(self) -> str:
        """
        Returns the service name used for keyring password storage.

            keyring set popkeep:personal user@example.com
        """
        return f"popkeep:{self.name}"

    def connection_config(
        self,
        *,
        timeout: float = 30.0,
        max_line_length: int = 65536,
        verify_certificates: bool = True,
        ca_file: str | None = None,
    ) -> ConnectionConfig:
        """
        Build the immutable connection settings for this account.

        Raises:
            ConfigurationError: If the host is missing or the security mode is unknown.
        """
        if not self.pop_host:
            raise ConfigurationError(f"Account {self.name!r} has no pop_host configured")

        security = self.security_mode
        return ConnectionConfig(
            host=self.pop_host,
            port=self.pop_port or DEFAULT_PORTS[security],
            security=security,
            timeout=timeout,
            max_line_length=max_line_length,
            verify_certificates=verify_certificates,
            ca_file=ca_file or None,
        )

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"

    def __repr__(self) -> str:
        return (
            f"Account(name={self.name!r}, email={self.email!r}, "
            f"pop={self.pop_host}:{self.pop_port} ({self.pop_security}))"
        )
