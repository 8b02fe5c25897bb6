# =============================================================================
# popkeep Core Module
# =============================================================================
# Core domain models. These are plain dataclasses with no I/O, so they can be
# imported anywhere without causing circular dependency issues.
#
#   - Account: A POP3 account (server settings, keyring lookup)
#   - ConnectionConfig / Credentials: What a client needs to log in
#   - Folder: The local folder messages are mirrored into
#   - Message: A mirrored message
# =============================================================================

from popkeep.core.account import (
    Account,
    ConnectionConfig,
    Credentials,
    SecurityMode,
)
from popkeep.core.folder import INBOX, Folder
from popkeep.core.message import Message, MessageFlags, uidl_key

__all__ = [
    "Account",
    "ConnectionConfig",
    "Credentials",
    "SecurityMode",
    "Folder",
    "INBOX",
    "Message",
    "MessageFlags",
    "uidl_key",
]
