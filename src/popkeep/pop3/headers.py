# =============================================================================
# Header Extraction
# =============================================================================
# Turns a raw downloaded message into the flat header mapping the sync engine
# builds message records from.
#
# Recognized keys (always present, "" when the header is missing):
#   subject, from, to, cc, date, message_id, in_reply_to, references
#
# Only the header block is parsed; bodies and attachments are left alone.
# =============================================================================

import email.errors
import email.header
import email.utils
import logging
from datetime import datetime, timezone
from email.parser import HeaderParser

logger = logging.getLogger(__name__)

# Result key -> header name
HEADER_FIELDS = {
    "subject": "Subject",
    "from": "From",
    "to": "To",
    "cc": "Cc",
    "date": "Date",
    "message_id": "Message-ID",
    "in_reply_to": "In-Reply-To",
    "references": "References",
}


def decode_header(value: str) -> str:
    """
    Decode an RFC 2047 encoded header value.

    Example:
        >>> decode_header("=?utf-8?q?Gr=C3=BC=C3=9Fe?=")
        'Grüße'
    """
    if not value:
        return ""
    try:
        decoded_parts = email.header.decode_header(value)
        result = ""
        for part, charset in decoded_parts:
            if isinstance(part, bytes):
                try:
                    result += part.decode(charset or "utf-8", errors="replace")
                except LookupError:
                    # Unknown charset name in the encoded word
                    result += part.decode("utf-8", errors="replace")
            else:
                result += part
        return result
    except (ValueError, email.errors.HeaderParseError):
        return value


def _unfold(value: str) -> str:
    """Collapse folded header lines into a single line."""
    return " ".join(value.split())


def extract_headers(raw: bytes) -> dict[str, str]:
    """
    Parse the header block of a raw message.

    Args:
        raw: Raw RFC 5322 message bytes.

    Returns:
        Mapping with every key of HEADER_FIELDS; missing headers map to "".
    """
    # Decode up front so raw 8-bit header bytes can't leak surrogates
    parsed = HeaderParser().parsestr(split_header_block(raw) + "\r\n\r\n")

    headers: dict[str, str] = {}
    for key, name in HEADER_FIELDS.items():
        value = parsed.get(name)
        headers[key] = _unfold(decode_header(str(value))) if value is not None else ""
    return headers


def split_header_block(raw: bytes) -> str:
    """Return the header block of a raw message as text (without the blank line)."""
    for separator in (b"\r\n\r\n", b"\n\n"):
        head, found, _ = raw.partition(separator)
        if found:
            return head.decode("utf-8", errors="replace")
    return raw.decode("utf-8", errors="replace")


def parse_addresses(value: str) -> list[tuple[str, str]]:
    """
    Split an address header into (display name, address) pairs.

    Example:
        >>> parse_addresses('Alice <alice@example.com>, bob@example.com')
        [('Alice', 'alice@example.com'), ('', 'bob@example.com')]
    """
    if not value:
        return []
    return [
        (name, addr)
        for name, addr in email.utils.getaddresses([value])
        if addr
    ]


def parse_message_ids(value: str) -> list[str]:
    """Split a References header into individual Message-IDs."""
    return [part for part in value.split() if part]


def parse_date(value: str) -> datetime:
    """
    Parse a Date header, normalized to UTC.

    Falls back to the current time when the header is missing or
    unparseable, so every stored message has a sortable date.
    """
    if value:
        try:
            parsed = email.utils.parsedate_to_datetime(value)
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (TypeError, ValueError, IndexError) as e:
            logger.debug(f"Unparseable Date header {value!r}: {e}")
    return datetime.now(timezone.utc)
