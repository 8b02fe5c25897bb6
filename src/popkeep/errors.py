# =============================================================================
# Error Taxonomy
# =============================================================================
# Every failure popkeep surfaces belongs to one of a small, closed set of
# kinds. Callers can branch on `error.kind` instead of on exception classes:
#
#   CONNECTION     - DNS, refused, timeout, certificate rejected, peer closed
#   PROTOCOL       - -ERR reply, malformed status line, unparseable numbers
#   AUTH           - server rejected USER or PASS
#   CONFIGURATION  - missing password, unknown security mode, bad config file
#
# None of these are retried automatically anywhere in popkeep.
# =============================================================================

from enum import Enum


class ErrorKind(Enum):
    """The kind of failure carried by every POP3Error."""
    CONNECTION = "connection"
    PROTOCOL = "protocol"
    AUTH = "auth"
    CONFIGURATION = "configuration"


class POP3Error(Exception):
    """Base exception for all popkeep failures."""

    kind: ErrorKind = ErrorKind.PROTOCOL


class POP3ConnectionError(POP3Error):
    """Raised when the transport fails or the connection is gone."""

    kind = ErrorKind.CONNECTION


class POP3ProtocolError(POP3Error):
    """Raised when a server reply is negative or violates the framing."""

    kind = ErrorKind.PROTOCOL


class POP3AuthenticationError(POP3Error):
    """Raised when the server rejects the username or password."""

    kind = ErrorKind.AUTH


class ConfigurationError(POP3Error):
    """Raised for preconditions the user must fix before trying again."""

    kind = ErrorKind.CONFIGURATION


class SyncAbortedError(POP3Error):
    """
    Raised when a synchronization pass cannot continue.

    The kind is copied from the error that caused the abort, so a caller
    can tell "could not connect" from "could not authenticate" without
    digging through __cause__.

    Attributes:
        new_messages: Messages that were stored before the pass aborted.
    """

    def __init__(self, message: str, kind: ErrorKind, new_messages: int = 0) -> None:
        super().__init__(message)
        self.kind = kind
        self.new_messages = new_messages
