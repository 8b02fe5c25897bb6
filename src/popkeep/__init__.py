# =============================================================================
# popkeep: Keep-on-Server POP3 Mailbox Mirror
# =============================================================================
#
# popkeep downloads every message from a POP3 mailbox that isn't stored
# locally yet, and never deletes or changes anything on the server.
#
# Features:
#   - Implicit TLS, STARTTLS (STLS) or plain connections
#   - UIDL-based sync: each message is downloaded exactly once
#   - Per-message fault tolerance; connection errors abort cleanly
#   - SQLite storage, passwords in the system keyring
#   - XDG Base Directory compliant
#
# =============================================================================

__version__ = "0.1.0"
__app_name__ = "popkeep"

# Main entry point - this is what gets called by the 'popkeep' command
from popkeep.app import main

__all__ = ["main", "__version__", "__app_name__"]
