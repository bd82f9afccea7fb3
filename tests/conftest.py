"""Shared fixtures and asyncssh stand-ins for sshtail tests."""

from __future__ import annotations

import asyncio

import pytest

from sshtail.config import HostEndpoint
from sshtail.connection import ClientConnection


class FakeStdout:
    """Replays queued chunks, then blocks until the process is closed."""

    def __init__(self, chunks=(), eof=False, error=None):
        self.chunks = list(chunks)
        self.eof = eof
        self.error = error
        self.closed = asyncio.Event()

    async def read(self, n=-1):
        await asyncio.sleep(0)
        if self.chunks:
            return self.chunks.pop(0)
        if self.error is not None:
            raise self.error
        if not self.eof:
            await self.closed.wait()
        return b""


class FakeProcess:
    """Minimal stand-in for asyncssh.SSHClientProcess."""

    def __init__(self, chunks=(), eof=False, exit_status=None, exit_signal=None, error=None,
                 close_error=None):
        self.stdout = FakeStdout(chunks, eof=eof, error=error)
        self.exit_status = exit_status
        self.exit_signal = exit_signal
        self.close_error = close_error
        self.close_calls = 0

    def close(self):
        self.close_calls += 1
        self.stdout.closed.set()
        if self.close_error is not None:
            raise self.close_error

    async def wait_closed(self):
        if not self.stdout.eof:
            await self.stdout.closed.wait()


class FakeSSHConnection:
    """Minimal stand-in for asyncssh.SSHClientConnection."""

    def __init__(self, process=None, create_error=None, close_error=None):
        self.process = process if process is not None else FakeProcess()
        self.create_error = create_error
        self.close_error = close_error
        self.commands = []
        self.close_calls = 0

    async def create_process(self, command, encoding="utf-8"):
        self.commands.append((command, encoding))
        if self.create_error is not None:
            raise self.create_error
        return self.process

    def close(self):
        self.close_calls += 1
        self.process.stdout.closed.set()
        if self.close_error is not None:
            raise self.close_error

    async def wait_closed(self):
        return None


def make_endpoint(tag="host1", remote_file="/var/log/syslog", port=22):
    return HostEndpoint(
        host_tag=tag,
        hostname=f"{tag}.example.com",
        port=port,
        username="me",
        remote_file=remote_file,
    )


def make_connection(tag="host1", **kwargs):
    return ClientConnection(endpoint=make_endpoint(tag), conn=FakeSSHConnection(**kwargs))


@pytest.fixture
def spec_text():
    return """hosts:
  tail1:
    hostname: remote-host-1
    file: /var/log/syslog
  tail2:
    hostname: remote-host-2
    username: me
    file: /var/log/messages
    port: 2222
keys:
  tail2:
    path: ~/.ssh/tail2_key
"""


@pytest.fixture
def spec_file(tmp_path, spec_text):
    path = tmp_path / "fleet.yml"
    path.write_text(spec_text)
    return path
