# =============================================================================
# Message Access Tests
# =============================================================================

import pytest

from popkeep.core import ConnectionConfig
from popkeep.errors import POP3ConnectionError, POP3ProtocolError
from popkeep.pop3.access import MailboxStat, MessageAccess
from popkeep.pop3.client import POP3Client

from fakes import ScriptedTransport


async def logged_in(lines):
    """MessageAccess over an authenticated client that will see `lines` next."""
    config = ConnectionConfig(host="pop.example.com", port=995)
    transport = ScriptedTransport([b"+OK ready", b"+OK", b"+OK"] + lines)
    client = POP3Client(config, transport=transport)
    await client.login("user", "secret")
    return MessageAccess(client), transport


class TestStat:

    @pytest.mark.asyncio
    async def test_stat(self):
        access, transport = await logged_in([b"+OK 3 1540"])

        assert await access.stat() == MailboxStat(count=3, total_size=1540)
        assert transport.sent[-1] == "STAT"

    @pytest.mark.asyncio
    async def test_stat_with_trailing_text(self):
        access, _ = await logged_in([b"+OK 0 0 mailbox empty"])
        assert await access.stat() == MailboxStat(count=0, total_size=0)

    @pytest.mark.asyncio
    async def test_unparseable_stat(self):
        access, _ = await logged_in([b"+OK nope"])

        with pytest.raises(POP3ProtocolError):
            await access.stat()

    @pytest.mark.asyncio
    async def test_stat_requires_login(self):
        config = ConnectionConfig(host="pop.example.com", port=995)
        client = POP3Client(config, transport=ScriptedTransport([b"+OK ready"]))
        await client.connect()

        with pytest.raises(POP3ProtocolError):
            await MessageAccess(client).stat()

    @pytest.mark.asyncio
    async def test_stat_without_connection(self):
        config = ConnectionConfig(host="pop.example.com", port=995)
        client = POP3Client(config, transport=ScriptedTransport([]))

        with pytest.raises(POP3ConnectionError):
            await MessageAccess(client).stat()


class TestList:

    @pytest.mark.asyncio
    async def test_list_skips_unrecognized_lines(self):
        access, _ = await logged_in([
            b"+OK 2 messages",
            b"1 120",
            b"X-EXTENSION something",
            b"2 4000",
            b".",
        ])

        assert await access.list_messages() == {1: 120, 2: 4000}

    @pytest.mark.asyncio
    async def test_empty_list(self):
        access, _ = await logged_in([b"+OK", b"."])
        assert await access.list_messages() == {}


class TestUniqueIds:

    @pytest.mark.asyncio
    async def test_uidl(self):
        access, _ = await logged_in([
            b"+OK",
            b"1 whqtswO00WBw418f9t5JxYwZ",
            b"2 QhdPYR:00WBw1Ph7x7",
            b".",
        ])

        assert await access.unique_ids() == {
            1: "whqtswO00WBw418f9t5JxYwZ",
            2: "QhdPYR:00WBw1Ph7x7",
        }

    @pytest.mark.asyncio
    async def test_token_with_spaces_is_trimmed_remainder(self):
        access, _ = await logged_in([b"+OK", b"1   token with spaces  ", b"garbage", b"."])
        assert await access.unique_ids() == {1: "token with spaces"}


class TestRetrieve:

    @pytest.mark.asyncio
    async def test_retrieve_joins_with_crlf(self):
        access, transport = await logged_in([
            b"+OK 40 octets",
            b"Subject: hi",
            b"",
            b"..",
            b"body",
            b".",
        ])

        raw = await access.retrieve(2)

        assert raw == b"Subject: hi\r\n\r\n.\r\nbody\r\n"
        assert transport.sent[-1] == "RETR 2"

    @pytest.mark.asyncio
    async def test_retrieve_refused(self):
        access, _ = await logged_in([b"-ERR no such message"])

        with pytest.raises(POP3ProtocolError):
            await access.retrieve(7)

        assert access.client.is_authenticated

    @pytest.mark.asyncio
    async def test_invalid_message_number(self):
        access, transport = await logged_in([])

        with pytest.raises(ValueError):
            await access.retrieve(0)

        assert "RETR 0" not in transport.sent


class TestKeepalive:

    @pytest.mark.asyncio
    async def test_noop(self):
        access, transport = await logged_in([b"+OK"])
        await access.keepalive()
        assert transport.sent[-1] == "NOOP"

    @pytest.mark.asyncio
    async def test_noop_refused(self):
        access, _ = await logged_in([b"-ERR"])

        with pytest.raises(POP3ProtocolError):
            await access.keepalive()
