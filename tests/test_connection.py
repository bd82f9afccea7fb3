"""Tests for connection establishment and error mapping."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import asyncssh
import pytest

from sshtail.config import HostKeyPolicy, TailOptions
from sshtail.connection import establish
from sshtail.errors import AuthError, DialError, HostVerificationError
from sshtail.keys import Credential

from conftest import make_endpoint


@pytest.fixture
def credential():
    return Credential(host_tag="tail1", key_path=Path("/keys/id"), key=Mock(name="key"))


class TestEstablish:
    @pytest.mark.asyncio
    async def test_connects_with_credential(self, credential):
        endpoint = make_endpoint("tail1", port=2222)
        conn = Mock(name="conn")

        with patch("sshtail.connection.asyncssh.connect", AsyncMock(return_value=conn)) as connect:
            connection = await establish(endpoint, credential, TailOptions())

        assert connection.conn is conn
        assert connection.host_tag == "tail1"
        assert connection.remote_file == "/var/log/syslog"
        args, kwargs = connect.call_args
        assert args == ("tail1.example.com",)
        assert kwargs["port"] == 2222
        assert kwargs["username"] == "me"
        assert kwargs["client_keys"] == [credential.key]
        # Default policy reads ~/.ssh/known_hosts
        assert kwargs["known_hosts"] == ()

    @pytest.mark.asyncio
    async def test_explicit_known_hosts_file(self, credential):
        options = TailOptions(known_hosts=Path("/etc/ssh/fleet_known_hosts"))

        with patch("sshtail.connection.asyncssh.connect", AsyncMock()) as connect:
            await establish(make_endpoint("tail1"), credential, options)

        assert connect.call_args.kwargs["known_hosts"] == "/etc/ssh/fleet_known_hosts"

    @pytest.mark.asyncio
    async def test_skip_policy_disables_verification(self, credential, caplog):
        options = TailOptions(host_key_policy=HostKeyPolicy.SKIP)

        with patch("sshtail.connection.asyncssh.connect", AsyncMock()) as connect:
            await establish(make_endpoint("tail1"), credential, options)

        assert connect.call_args.kwargs["known_hosts"] is None
        assert "verification is disabled" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raised, expected",
        [
            (ConnectionRefusedError(111, "Connection refused"), DialError),
            (TimeoutError(), DialError),
            (asyncssh.ConnectionLost("reset during handshake"), DialError),
            (asyncssh.PermissionDenied("publickey"), AuthError),
            (asyncssh.HostKeyNotVerifiable("unknown host key"), HostVerificationError),
        ],
    )
    async def test_error_mapping(self, credential, raised, expected):
        endpoint = make_endpoint("tail1")

        with patch("sshtail.connection.asyncssh.connect", AsyncMock(side_effect=raised)):
            with pytest.raises(expected) as exc_info:
                await establish(endpoint, credential, TailOptions())

        assert exc_info.value.host_tag == "tail1"
        assert "tail1" in str(exc_info.value)
        assert endpoint.target in str(exc_info.value)
