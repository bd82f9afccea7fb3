"""A single remote tail command running over one SSH connection."""

from __future__ import annotations

import asyncio
import logging
import shlex
from enum import Enum
from pathlib import Path
from typing import Callable

import asyncssh

from .connection import ClientConnection
from .errors import (
    AlreadyClosedError,
    AlreadyStartedError,
    ClosedSessionError,
    SessionCloseError,
    SessionStartError,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 32 * 1024


class SessionState(Enum):
    """Lifecycle of a tail session. CLOSED is terminal."""

    CREATED = "created"
    STARTED = "started"
    CLOSED = "closed"


# Type alias for state callback
StateCallback = Callable[[str, SessionState], None]  # (host_tag, state) -> None


def tail_command(remote_file: str) -> str:
    return f"tail -n 0 -f {shlex.quote(remote_file)}"


class TailSession:
    """Runs ``tail -n 0 -f`` on one host and copies its output into a shared queue.

    The session owns its connection: closing the session closes the
    connection too.
    """

    def __init__(
        self,
        connection: ClientConnection,
        log_file: Path | None = None,
        on_state: StateCallback | None = None,
    ):
        self.connection = connection
        self.log_file = log_file
        self.on_state = on_state
        self.state = SessionState.CREATED
        self.exit_status: int | None = None
        self._process: asyncssh.SSHClientProcess | None = None
        self._task: asyncio.Task | None = None
        self._runtime_errors: list[BaseException | str] = []

    def __repr__(self) -> str:
        return f"<TailSession {self.host_tag} {self.state.value}>"

    @property
    def host_tag(self) -> str:
        return self.connection.host_tag

    @property
    def prefix(self) -> bytes:
        return f"[ {self.host_tag} ] ".encode()

    @property
    def command(self) -> str:
        return tail_command(self.connection.remote_file)

    @property
    def is_started(self) -> bool:
        return self.state is SessionState.STARTED

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def _set_state(self, state: SessionState) -> None:
        self.state = state
        if self.on_state:
            self.on_state(self.host_tag, state)

    async def start(self, sink: asyncio.Queue) -> None:
        """Open the command channel and begin copying output into ``sink``.

        Returns as soon as the remote command is running. Failures of the
        running command are not raised here; they are reported by close().
        """
        if self.is_closed:
            raise AlreadyClosedError(self.host_tag)
        if self.is_started:
            raise AlreadyStartedError(self.host_tag)

        try:
            process = await self.connection.conn.create_process(
                self.command, encoding=None
            )
        except (asyncssh.Error, OSError) as e:
            raise SessionStartError(self.host_tag, str(e)) from e

        if self.is_closed:
            # Closed while the channel was being opened
            process.close()
            raise ClosedSessionError(self.host_tag)

        self._process = process
        self._task = asyncio.create_task(
            self._copy_output(process, sink), name=f"tail-{self.host_tag}"
        )
        self._set_state(SessionState.STARTED)
        logger.debug("[%s] Running: %s", self.host_tag, self.command)

    async def _copy_output(self, process: asyncssh.SSHClientProcess, sink: asyncio.Queue) -> None:
        """Copy stdout chunks into the sink until the command ends."""
        try:
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._write_log(chunk)
                await sink.put(self.prefix + chunk)
            await process.wait_closed()
        except (asyncssh.Error, OSError) as e:
            if not self.is_closed:
                logger.warning("[%s] Output stopped: %s", self.host_tag, e)
                self._runtime_errors.append(e)
            return

        self.exit_status = process.exit_status
        if self.is_closed:
            return

        # The command ended on its own, before anyone asked it to
        if process.exit_signal:
            reason = f"remote command killed by signal {process.exit_signal[0]}"
        elif self.exit_status:
            reason = f"remote command exited with status {self.exit_status}"
        else:
            logger.info("[%s] Remote command finished", self.host_tag)
            return
        logger.warning("[%s] %s", self.host_tag, reason)
        self._runtime_errors.append(reason)

    def _write_log(self, chunk: bytes) -> None:
        if self.log_file:
            with open(self.log_file, "ab") as f:
                f.write(chunk)

    async def wait(self) -> None:
        """Wait until the output copy task has ended."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def close(self) -> None:
        """Stop the remote command and disconnect. A second call does nothing.

        Every close step is attempted. Failures, together with any runtime
        failure seen while tailing, are raised as one SessionCloseError.
        """
        if self.is_closed:
            return
        self._set_state(SessionState.CLOSED)
        logger.info("Closing session to %s", self.host_tag)

        causes = list(self._runtime_errors)
        if self._process is not None:
            try:
                self._process.close()
            except (asyncssh.Error, OSError) as e:
                causes.append(e)

        try:
            await self.connection.close()
        except (asyncssh.Error, OSError) as e:
            causes.append(e)

        if self._task is not None and not self._task.done():
            self._task.cancel()
        await self.wait()

        if causes:
            raise SessionCloseError(self.host_tag, causes)
