# =============================================================================
# Header Extraction Tests
# =============================================================================

from datetime import datetime, timedelta, timezone

from popkeep.pop3.headers import (
    HEADER_FIELDS,
    decode_header,
    extract_headers,
    parse_addresses,
    parse_date,
    parse_message_ids,
    split_header_block,
)


RAW = (
    b"From: =?utf-8?q?J=C3=BCrgen?= <juergen@example.com>\r\n"
    b"To: a@example.com, Bob <b@example.com>\r\n"
    b"Subject: A long\r\n"
    b" folded subject\r\n"
    b"Date: Tue, 16 Jan 2024 09:00:00 +0100\r\n"
    b"Message-ID: <abc@example.com>\r\n"
    b"References: <one@example.com> <two@example.com>\r\n"
    b"\r\n"
    b"Subject: not a header\r\n"
)


def test_extract_headers():
    headers = extract_headers(RAW)

    assert headers["from"] == "Jürgen <juergen@example.com>"
    assert headers["subject"] == "A long folded subject"
    assert headers["message_id"] == "<abc@example.com>"
    assert headers["references"] == "<one@example.com> <two@example.com>"


def test_missing_headers_are_empty():
    headers = extract_headers(b"Subject: only this\r\n\r\nbody\r\n")

    assert set(headers) == set(HEADER_FIELDS)
    assert headers["subject"] == "only this"
    assert headers["from"] == ""
    assert headers["cc"] == ""


def test_body_is_not_parsed():
    headers = extract_headers(b"X-Other: 1\r\n\r\nSubject: not a header\r\n")
    assert headers["subject"] == ""


def test_non_utf8_header_bytes():
    headers = extract_headers(b"Subject: caf\xe9\r\n\r\n")
    assert headers["subject"].startswith("caf")


def test_split_header_block():
    assert split_header_block(b"A: 1\r\nB: 2\r\n\r\nbody") == "A: 1\r\nB: 2"
    assert split_header_block(b"A: 1\n\nbody") == "A: 1"
    assert split_header_block(b"A: 1") == "A: 1"


def test_decode_header():
    assert decode_header("=?utf-8?q?Gr=C3=BC=C3=9Fe?=") == "Grüße"
    assert decode_header("plain") == "plain"
    assert decode_header("") == ""


def test_parse_addresses():
    assert parse_addresses("Alice <alice@example.com>, bob@example.com") == [
        ("Alice", "alice@example.com"),
        ("", "bob@example.com"),
    ]
    assert parse_addresses("") == []


def test_parse_message_ids():
    assert parse_message_ids("<a@x>  <b@x>\t<c@x>") == ["<a@x>", "<b@x>", "<c@x>"]
    assert parse_message_ids("") == []


def test_parse_date_normalizes_to_utc():
    parsed = parse_date("Tue, 16 Jan 2024 09:00:00 +0100")
    assert parsed == datetime(2024, 1, 16, 8, 0, tzinfo=timezone.utc)


def test_parse_date_falls_back_to_now():
    before = datetime.now(timezone.utc) - timedelta(seconds=1)

    for value in ("", "not a date"):
        parsed = parse_date(value)
        assert parsed.tzinfo is not None
        assert parsed >= before
