# =============================================================================
# POP3 Module
# =============================================================================
# Everything that talks to a POP3 server, bottom-up:
#
#   transport  - line-based TCP/TLS stream with timeouts
#   client     - POP3 conversation (greeting, STLS, USER/PASS, QUIT, framing)
#   access     - typed STAT / LIST / UIDL / RETR / NOOP
#   factory    - builds logged-in clients for an account (keyring passwords)
#   headers    - header extraction from downloaded messages
#   sync       - the keep-on-server mirror pass
# =============================================================================

from popkeep.pop3.access import MailboxStat, MessageAccess
from popkeep.pop3.client import ConnectionState, NegativeReply, POP3Client
from popkeep.pop3.factory import (
    PROTOCOL_NAME,
    ClientFactory,
    CredentialProvider,
    KeyringCredentialProvider,
)
from popkeep.pop3.sync import (
    FailureKind,
    MessageFailure,
    SyncManager,
    SyncProgress,
    SyncResult,
    SyncStatus,
    build_message,
    find_new_identifiers,
)
from popkeep.pop3.transport import Transport

__all__ = [
    # Transport / client
    "Transport",
    "POP3Client",
    "ConnectionState",
    "NegativeReply",
    # Mailbox access
    "MessageAccess",
    "MailboxStat",
    # Factory
    "ClientFactory",
    "CredentialProvider",
    "KeyringCredentialProvider",
    "PROTOCOL_NAME",
    # Sync
    "SyncManager",
    "SyncStatus",
    "SyncProgress",
    "SyncResult",
    "MessageFailure",
    "FailureKind",
    "build_message",
    "find_new_identifiers",
]
