# =============================================================================
# POP3 Client Tests
# =============================================================================

import asyncio

import pytest

from popkeep.core import ConnectionConfig, SecurityMode
from popkeep.errors import (
    ConfigurationError,
    ErrorKind,
    POP3AuthenticationError,
    POP3ConnectionError,
    POP3ProtocolError,
)
from popkeep.pop3.client import ConnectionState, NegativeReply, POP3Client, unstuff

from fakes import ScriptedTransport


def make_client(lines, security=SecurityMode.IMPLICIT_TLS, **kwargs):
    config = ConnectionConfig(host="pop.example.com", port=995, security=security)
    transport = ScriptedTransport(lines, **kwargs)
    return POP3Client(config, transport=transport), transport


class TestUnstuff:
    """Tests for payload byte-unstuffing."""

    def test_removes_exactly_one_leading_dot(self):
        assert unstuff(b"..") == b"."
        assert unstuff(b"...x") == b"..x"
        assert unstuff(b".hidden") == b"hidden"

    def test_leaves_other_lines_alone(self):
        assert unstuff(b"x.") == b"x."
        assert unstuff(b"") == b""
        assert unstuff(b"plain text") == b"plain text"


class TestConnect:
    """Tests for greeting handling and security modes."""

    @pytest.mark.asyncio
    async def test_greeting_ok(self):
        client, transport = make_client([b"+OK POP3 ready"])
        await client.connect()

        assert client.state == ConnectionState.CONNECTED
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_connect_is_noop_when_connected(self):
        client, transport = make_client([b"+OK POP3 ready"])
        await client.connect()
        await client.connect()

        assert transport.open_calls == 1

    @pytest.mark.asyncio
    async def test_negative_greeting_closes(self):
        client, transport = make_client([b"-ERR go away"])

        with pytest.raises(POP3ProtocolError):
            await client.connect()

        assert client.state == ConnectionState.CLOSED
        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_open_failure_is_connection_error(self):
        client, transport = make_client(
            [], open_error=POP3ConnectionError("Failed to connect to pop.example.com:995")
        )

        with pytest.raises(POP3ConnectionError) as exc_info:
            await client.connect()

        assert exc_info.value.kind == ErrorKind.CONNECTION
        assert client.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_closed_client_cannot_reconnect(self):
        client, _ = make_client([b"+OK"])
        await client.disconnect()

        with pytest.raises(POP3ConnectionError):
            await client.connect()

    @pytest.mark.asyncio
    async def test_starttls_sends_stls_and_upgrades(self):
        client, transport = make_client(
            [b"+OK POP3 ready", b"+OK begin TLS"], security=SecurityMode.STARTTLS
        )
        await client.connect()

        assert transport.sent == ["STLS"]
        assert transport.upgraded
        assert client.is_connected

    @pytest.mark.asyncio
    async def test_starttls_refused(self):
        client, transport = make_client(
            [b"+OK POP3 ready", b"-ERR TLS not available"], security=SecurityMode.STARTTLS
        )

        with pytest.raises(POP3ProtocolError):
            await client.connect()

        assert not transport.upgraded
        assert client.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("security", [SecurityMode.PLAIN, SecurityMode.IMPLICIT_TLS])
    async def test_no_stls_outside_starttls_mode(self, security):
        client, transport = make_client(
            [b"+OK POP3 ready", b"+OK", b"+OK"], security=security
        )
        await client.login("user", "secret")

        assert "STLS" not in transport.sent
        assert not transport.upgraded


class TestLogin:
    """Tests for USER/PASS authentication."""

    @pytest.mark.asyncio
    async def test_login_connects_and_authenticates(self):
        client, transport = make_client([b"+OK ready", b"+OK", b"+OK welcome"])
        await client.login("user@example.com", "secret")

        assert client.is_authenticated
        assert transport.sent == ["USER user@example.com", "PASS secret"]

    @pytest.mark.asyncio
    async def test_rejected_password(self):
        client, _ = make_client([b"+OK ready", b"+OK", b"-ERR [AUTH] invalid password"])

        with pytest.raises(POP3AuthenticationError) as exc_info:
            await client.login("user@example.com", "wrong")

        assert exc_info.value.kind == ErrorKind.AUTH
        assert "invalid password" in str(exc_info.value)
        assert not client.is_authenticated

    @pytest.mark.asyncio
    async def test_rejected_user(self):
        client, transport = make_client([b"+OK ready", b"-ERR unknown user"])

        with pytest.raises(POP3AuthenticationError):
            await client.login("nobody", "secret")

        assert transport.sent == ["USER nobody"]

    @pytest.mark.asyncio
    async def test_empty_password_is_configuration_error(self):
        client, transport = make_client([b"+OK ready"])

        with pytest.raises(ConfigurationError):
            await client.login("user", "")

        assert transport.open_calls == 0

    @pytest.mark.asyncio
    async def test_password_never_logged(self, caplog):
        client, _ = make_client([b"+OK ready", b"+OK", b"+OK"])

        with caplog.at_level("DEBUG"):
            await client.login("user", "hunter2")

        assert "hunter2" not in caplog.text
        assert "PASS ****" in caplog.text


class TestCommands:
    """Tests for command/response framing."""

    async def authenticated(self, lines):
        client, transport = make_client([b"+OK ready", b"+OK", b"+OK"] + lines)
        await client.login("user", "secret")
        return client, transport

    @pytest.mark.asyncio
    async def test_execute_returns_status_text(self):
        client, _ = await self.authenticated([b"+OK 2 320"])
        assert await client.execute("STAT") == "2 320"

    @pytest.mark.asyncio
    async def test_multiline_unstuffs_payload(self):
        client, _ = await self.authenticated([
            b"+OK message follows",
            b"Subject: hi",
            b"",
            b"..",
            b"...x",
            b"x.",
            b".",
        ])

        status, lines = await client.execute_multiline("RETR 1")

        assert status == "message follows"
        assert lines == [b"Subject: hi", b"", b".", b"..x", b"x."]

    @pytest.mark.asyncio
    async def test_negative_reply_keeps_session(self):
        client, _ = await self.authenticated([b"-ERR no such message", b"+OK"])

        with pytest.raises(NegativeReply):
            await client.execute_multiline("RETR 9")

        assert client.is_authenticated
        assert await client.execute("NOOP") == ""

    @pytest.mark.asyncio
    async def test_framing_violation_closes_connection(self):
        client, transport = await self.authenticated([b"garbage"])

        with pytest.raises(POP3ProtocolError) as exc_info:
            await client.execute("STAT")

        assert not isinstance(exc_info.value, NegativeReply)
        assert client.state == ConnectionState.CLOSED
        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_connection_lost_mid_payload(self):
        client, _ = await self.authenticated([b"+OK", b"line one"])

        with pytest.raises(POP3ConnectionError):
            await client.execute_multiline("RETR 1")

        assert client.state == ConnectionState.CLOSED
        with pytest.raises(POP3ConnectionError):
            await client.execute("NOOP")

    @pytest.mark.asyncio
    async def test_second_command_while_in_flight(self):
        client, _ = await self.authenticated([])
        client._in_flight = "RETR"

        with pytest.raises(RuntimeError):
            await client.execute("NOOP")

    @pytest.mark.asyncio
    async def test_require_authenticated(self):
        client, _ = make_client([b"+OK ready"])

        with pytest.raises(POP3ConnectionError):
            client.require_authenticated("STAT")

        await client.connect()
        with pytest.raises(POP3ProtocolError):
            client.require_authenticated("STAT")


class TestDisconnect:
    """Tests for connection release."""

    @pytest.mark.asyncio
    async def test_sends_quit(self):
        client, transport = make_client([b"+OK ready", b"+OK bye"])
        await client.connect()
        await client.disconnect()

        assert transport.sent == ["QUIT"]
        assert client.state == ConnectionState.CLOSED
        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_quit_failure_is_swallowed(self):
        client, transport = make_client([b"+OK ready", b"-ERR whatever"])
        await client.connect()
        await client.disconnect()

        assert client.state == ConnectionState.CLOSED
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_quit_on_dead_connection_is_swallowed(self):
        client, _ = make_client([b"+OK ready"])
        await client.connect()
        await client.disconnect()

        assert client.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self):
        client, transport = make_client([b"+OK ready", b"+OK bye"])
        await client.connect()
        await client.disconnect()
        await client.disconnect()

        assert transport.sent == ["QUIT"]

    @pytest.mark.asyncio
    async def test_disconnect_before_connect(self):
        client, transport = make_client([])
        await client.disconnect()

        assert transport.sent == []
        assert client.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_quit_skipped_while_command_in_flight(self):
        client, transport = make_client([b"+OK ready", b"+OK bye"])
        await client.connect()
        client._in_flight = "RETR"

        await client.disconnect()

        assert "QUIT" not in transport.sent
        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_context_manager_disconnects_on_error(self):
        client, transport = make_client([b"+OK ready", b"+OK bye"])

        with pytest.raises(ValueError):
            async with client:
                await client.connect()
                raise ValueError("boom")

        assert transport.sent == ["QUIT"]
        assert client.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_read_closes_connection(self):
        gate = asyncio.Event()

        class HangingTransport(ScriptedTransport):
            async def read_line(self):
                if not self.incoming:
                    await gate.wait()
                return await super().read_line()

        config = ConnectionConfig(host="pop.example.com", port=995)
        transport = HangingTransport([b"+OK ready", b"+OK", b"+OK"])
        client = POP3Client(config, transport=transport)
        await client.login("user", "secret")

        task = asyncio.create_task(client.execute_multiline("RETR 1"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.state == ConnectionState.CLOSED
        await client.disconnect()
        assert "QUIT" not in transport.sent
