# =============================================================================
# Configuration Management
# =============================================================================
# Handles loading, saving, and validating popkeep configuration.
#
# XDG Base Directory Compliance (https://specifications.freedesktop.org/basedir-spec/):
#   - Config:  $XDG_CONFIG_HOME/popkeep/  (default: ~/.config/popkeep/)
#   - Data:    $XDG_DATA_HOME/popkeep/    (default: ~/.local/share/popkeep/)
#
# Files:
#   - config.toml: User configuration (accounts, sync settings)
#   - popkeep.db: SQLite database with the mirrored messages (data directory)
#
# Example config.toml:
#
#   [sync]
#   batch_size = 50
#   timeout_seconds = 30
#
#   [accounts.personal]
#   email = "user@example.com"
#   pop_host = "pop.example.com"
#   pop_security = "implicit-tls"
# =============================================================================

import os
import tomllib  # Built into Python 3.11+
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w  # For writing TOML (tomllib is read-only)

from popkeep.core import Account
from popkeep.core.account import ConnectionConfig
from popkeep.errors import ConfigurationError


# =============================================================================
# XDG Directory Management
# =============================================================================

# Application identifier used in all XDG paths
APP_NAME = "popkeep"


def get_xdg_config_home() -> Path:
    """
    Returns the XDG config directory for popkeep.

    Respects $XDG_CONFIG_HOME if set, otherwise uses ~/.config/popkeep/
    """
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / APP_NAME


def get_xdg_data_home() -> Path:
    """
    Returns the XDG data directory for popkeep.

    Respects $XDG_DATA_HOME if set, otherwise uses ~/.local/share/popkeep/
    This is where the mirrored mail lives.
    """
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        base = Path(xdg_data)
    else:
        base = Path.home() / ".local" / "share"
    return base / APP_NAME


def ensure_directories() -> dict[str, Path]:
    """
    Creates the XDG directories popkeep uses if they don't exist.

    Returns:
        Dictionary mapping directory type to path.
    """
    dirs = {
        "config": get_xdg_config_home(),
        "data": get_xdg_data_home(),
    }

    for dir_path in dirs.values():
        dir_path.mkdir(parents=True, exist_ok=True)

    return dirs


# =============================================================================
# Configuration Data Structures
# =============================================================================

@dataclass
class SyncConfig:
    """
    Configuration for synchronization passes.

    Attributes:
        batch_size: Messages fetched between progress checkpoints. Bounds how
                    much work is in memory at once; has no transactional meaning.
        timeout_seconds: Limit for connecting and for every single socket read
                         or write. Expiry aborts the pass; it is not retried.
        max_line_length: Longest line accepted from the server, in bytes.
        reconnect_per_message: Open a fresh connection for every RETR instead
                               of reusing the session that listed the UIDLs.
        verify_certificates: Verify server certificates and hostnames.
        ca_file: Optional CA bundle path (e.g. for a private CA).
    """
    batch_size: int = 50
    timeout_seconds: float = 30.0
    max_line_length: int = 65536
    reconnect_per_message: bool = False
    verify_certificates: bool = True
    ca_file: str = ""

    def connection_config(self, account: Account) -> ConnectionConfig:
        """Build the connection settings for an account under this config."""
        return account.connection_config(
            timeout=self.timeout_seconds,
            max_line_length=self.max_line_length,
            verify_certificates=self.verify_certificates,
            ca_file=self.ca_file or None,
        )


@dataclass
class Config:
    """
    Main configuration container for popkeep.

    Attributes:
        accounts: Dictionary of configured accounts, keyed by name.
        sync: Synchronization settings shared by all accounts.
        path: File this config was loaded from (None = XDG default).

    Usage:
        >>> config = Config.load()
        >>> print(config.accounts['personal'].pop_host)
        'pop.example.com'
    """
    accounts: dict[str, Account] = field(default_factory=dict)
    sync: SyncConfig = field(default_factory=SyncConfig)
    path: Path | None = None

    # -------------------------------------------------------------------------
    # File Paths
    # -------------------------------------------------------------------------

    @staticmethod
    def config_file_path() -> Path:
        """Returns the path to the main config file."""
        return get_xdg_config_home() / "config.toml"

    @staticmethod
    def database_path() -> Path:
        """Returns the path to the SQLite database."""
        return get_xdg_data_home() / "popkeep.db"

    # -------------------------------------------------------------------------
    # Loading and Saving
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """
        Load configuration from a config file.

        If the file doesn't exist, returns default configuration.

        Args:
            path: Config file to read. Defaults to the XDG location.

        Returns:
            Loaded Config object.

        Raises:
            ConfigError: If the config file exists but is invalid.
        """
        if path is None:
            ensure_directories()
        config_path = path or cls.config_file_path()

        if not config_path.exists():
            return cls(path=path)

        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e

        config = cls._from_dict(data)
        config.path = path
        return config

    def save(self) -> None:
        """
        Save configuration to its config file.

        Creates the config directory if it doesn't exist.
        """
        config_path = self.path or self.config_file_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "wb") as f:
            tomli_w.dump(self._to_dict(), f)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """
        Create a Config object from a dictionary (parsed TOML).

        Raises:
            ConfigError: If a value has the wrong type or an account has an
                         unknown security mode.
        """
        config = cls()

        sync = data.get("sync", {})
        try:
            config.sync = SyncConfig(
                batch_size=int(sync.get("batch_size", 50)),
                timeout_seconds=float(sync.get("timeout_seconds", 30.0)),
                max_line_length=int(sync.get("max_line_length", 65536)),
                reconnect_per_message=bool(sync.get("reconnect_per_message", False)),
                verify_certificates=bool(sync.get("verify_certificates", True)),
                ca_file=str(sync.get("ca_file", "")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid [sync] section: {e}") from e

        if config.sync.batch_size < 1:
            raise ConfigError("sync.batch_size must be at least 1")
        if config.sync.timeout_seconds <= 0:
            raise ConfigError("sync.timeout_seconds must be positive")

        # Accounts - each key under [accounts] is an account name
        accounts_data = data.get("accounts", {})
        for name, acct_data in accounts_data.items():
            account = Account(
                name=name,
                email=acct_data.get("email", ""),
                username=acct_data.get("username", ""),
                pop_host=acct_data.get("pop_host", ""),
                pop_port=acct_data.get("pop_port", 0),
                pop_security=acct_data.get("pop_security", "implicit-tls"),
                enabled=acct_data.get("enabled", True),
            )
            try:
                account.security_mode
            except ConfigurationError as e:
                raise ConfigError(f"Account {name!r}: {e}") from e
            config.accounts[name] = account

        return config

    def _to_dict(self) -> dict[str, Any]:
        """Convert Config to a dictionary for TOML serialization."""
        data: dict[str, Any] = {}

        data["sync"] = {
            "batch_size": self.sync.batch_size,
            "timeout_seconds": self.sync.timeout_seconds,
            "max_line_length": self.sync.max_line_length,
            "reconnect_per_message": self.sync.reconnect_per_message,
            "verify_certificates": self.sync.verify_certificates,
            "ca_file": self.sync.ca_file,
        }

        data["accounts"] = {}
        for name, account in self.accounts.items():
            data["accounts"][name] = {
                "email": account.email,
                "username": account.username,
                "pop_host": account.pop_host,
                "pop_port": account.pop_port,
                "pop_security": account.pop_security,
                "enabled": account.enabled,
            }

        return data

    def select_accounts(self, names: list[str] | None = None) -> list[Account]:
        """
        Pick the accounts to work on.

        Args:
            names: Explicit account names. If empty, all enabled accounts.

        Raises:
            ConfigError: If a named account isn't configured.
        """
        if not names:
            return [a for a in self.accounts.values() if a.enabled]

        missing = [n for n in names if n not in self.accounts]
        if missing:
            raise ConfigError(f"Unknown account(s): {', '.join(missing)}")
        return [self.accounts[n] for n in names]


# =============================================================================
# Exceptions
# =============================================================================

class ConfigError(ConfigurationError):
    """Raised when there's an error loading or parsing configuration."""
    pass


# =============================================================================
# Utility Functions
# =============================================================================

def print_paths() -> None:
    """
    Print all XDG paths for debugging.
    Useful for users wondering where their config/data is stored.
    """
    print(f"Config:  {get_xdg_config_home()}")
    print(f"Data:    {get_xdg_data_home()}")
    print()
    print(f"Config file:  {Config.config_file_path()}")
    print(f"Database:     {Config.database_path()}")
