"""Consolidated writer: fans output from every tail session into one stream."""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping, Protocol

import asyncssh

from .config import HostEndpoint, SpecData, TailOptions
from .connection import establish
from .errors import SessionCloseError, TailError
from .keys import Credential
from .session import StateCallback, TailSession

logger = logging.getLogger(__name__)


class Destination(Protocol):
    def write(self, data: bytes) -> object: ...


class WriterState(Enum):
    """Lifecycle of a consolidated writer."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class RunResult:
    """Outcome of a completed tail run."""

    interrupted: bool = False
    close_errors: list[SessionCloseError] = field(default_factory=list)


def prepare_log_dir(base: Path, source_path: Path | None = None) -> Path:
    """Create a timestamped directory for per-host output logs."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = base / timestamp
    log_dir.mkdir(parents=True, exist_ok=True)

    # Copy the source spec file to the log directory
    if source_path and source_path.exists():
        shutil.copy(source_path, log_dir / "spec.yml")
    return log_dir


class ConsolidatedWriter:
    """Owns every tail session, the shared output queue and the destination."""

    def __init__(self, sessions: Iterable[TailSession], destination: Destination):
        self.sessions = list(sessions)
        self.destination = destination
        self.state = WriterState.NOT_STARTED
        # Many session writers, one relay reader. None marks the end of output.
        self.channel: asyncio.Queue[bytes | None] = asyncio.Queue(
            maxsize=max(1, len(self.sessions))
        )
        self._close_task: asyncio.Future | None = None
        self._coordinator: ShutdownCoordinator | None = None
        self._write_failed = False

    @classmethod
    async def build(
        cls,
        endpoints: Iterable[HostEndpoint],
        credentials: Mapping[str, Credential],
        destination: Destination,
        options: TailOptions | None = None,
        log_dir: Path | None = None,
        on_state: StateCallback | None = None,
    ) -> ConsolidatedWriter:
        """Connect to every host and wrap each connection in a tail session.

        All hosts are connected concurrently. If any host fails, every
        connection that did open is closed and the first failure (in host
        order) is raised.
        """
        options = options or TailOptions()
        endpoints = list(endpoints)

        async def connect(endpoint: HostEndpoint):
            credential = credentials.get(endpoint.host_tag)
            if credential is None:
                raise TailError(f"[{endpoint.host_tag}] No credential for host")
            return await establish(endpoint, credential, options)

        results = await asyncio.gather(
            *(connect(endpoint) for endpoint in endpoints), return_exceptions=True
        )

        connections = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            for connection in connections:
                logger.debug("[%s] Closing connection after failed setup", connection.host_tag)
                try:
                    await connection.close()
                except (asyncssh.Error, OSError) as e:
                    logger.warning("[%s] Error closing connection: %s", connection.host_tag, e)
            raise failures[0]

        sessions = [
            TailSession(
                connection,
                log_file=log_dir / f"{connection.host_tag}.log" if log_dir else None,
                on_state=on_state,
            )
            for connection in connections
        ]
        return cls(sessions, destination)

    @property
    def shutdown_requested(self) -> bool:
        return self._close_task is not None

    @property
    def interrupted(self) -> bool:
        return self._coordinator is not None and self._coordinator.triggered

    async def start(
        self,
        install_signal_handlers: bool = True,
        signals: tuple[signal.Signals, ...] | None = None,
    ) -> RunResult:
        """Start every session and relay their output until they all end.

        Startup is all-or-nothing: if one session fails to start, every
        session is closed and the error is raised. Once running, this blocks
        until every session has finished or close() was called, then closes
        all sessions and flushes the remaining output.

        ``signals`` narrows which termination signals trigger shutdown.
        """
        if self.state is not WriterState.NOT_STARTED:
            raise TailError("Consolidated writer was already started")
        self.state = WriterState.RUNNING

        if install_signal_handlers:
            self._coordinator = ShutdownCoordinator(self, signals)
            self._coordinator.install()

        try:
            for session in self.sessions:
                if session.is_started or session.is_closed:
                    continue
                try:
                    await session.start(self.channel)
                except TailError:
                    if self.shutdown_requested:
                        break
                    logger.error("Failed to start consolidated writer. Closing sessions.")
                    await self.close()
                    self.state = WriterState.STOPPED
                    raise

            relay = asyncio.create_task(self._relay(), name="tail-relay")
            if not self.shutdown_requested:
                logger.info("Started tailing, send interrupt signal to exit")

            await asyncio.gather(*(session.wait() for session in self.sessions))

            close_errors = await self.close()
            if not relay.done():
                await self.channel.put(None)
            await relay
        finally:
            if self._coordinator is not None:
                self._coordinator.uninstall()

        self.state = WriterState.STOPPED
        return RunResult(interrupted=self.interrupted, close_errors=close_errors)

    async def _relay(self) -> None:
        """Copy every queued item to the destination until the end marker."""
        while True:
            item = await self.channel.get()
            if item is None:
                break
            if self._write_failed:
                continue
            try:
                self.destination.write(item)
                flush = getattr(self.destination, "flush", None)
                if flush:
                    flush()
            except Exception as e:
                # Keep draining so session writers never block on a full queue
                logger.error("Unable to write output, closing sessions: %s", e)
                self._write_failed = True
                self.request_close()

    def request_close(self) -> asyncio.Future:
        """Begin closing all sessions, once. Returns the shared close future."""
        if self._close_task is None:
            if self.state is WriterState.RUNNING:
                self.state = WriterState.SHUTTING_DOWN
            self._close_task = asyncio.ensure_future(self._close_sessions())
        return self._close_task

    async def close(self) -> list[SessionCloseError]:
        """Close every session still open. Safe to call repeatedly or concurrently.

        Close failures are logged and returned, never raised.
        """
        return await asyncio.shield(self.request_close())

    async def _close_sessions(self) -> list[SessionCloseError]:
        errors = []
        for session in self.sessions:
            # Created sessions are included so their connections are released
            if session.is_closed:
                continue
            try:
                await session.close()
            except SessionCloseError as e:
                logger.warning("%s", e)
                errors.append(e)
        return errors


class ShutdownCoordinator:
    """Turns SIGINT/SIGTERM into a single close() of a consolidated writer."""

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(
        self,
        writer: ConsolidatedWriter,
        signals: tuple[signal.Signals, ...] | None = None,
    ):
        self.writer = writer
        self.signals = tuple(signals or self.SIGNALS)
        self.triggered = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous: dict[int, object] = {}

    def install(self) -> None:
        if self._loop is not None:
            raise TailError("Shutdown coordinator is already installed")
        self._loop = asyncio.get_running_loop()
        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, self.trigger, sig)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                self._previous[sig] = signal.signal(
                    sig, lambda signum, frame: self._loop.call_soon_threadsafe(self.trigger, signum)
                )

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for sig in self.signals:
            if sig in self._previous:
                signal.signal(sig, self._previous.pop(sig))
            else:
                self._loop.remove_signal_handler(sig)

    def trigger(self, signum: int = signal.SIGINT) -> None:
        """Start shutdown. Only the first call has any effect."""
        if self.triggered:
            return
        self.triggered = True
        logger.info("Signal received (%s), closing sessions", signal.Signals(signum).name)
        self.writer.request_close()


async def run_spec(
    spec: SpecData,
    credentials: dict[str, Credential],
    destination: Destination,
    options: TailOptions | None = None,
    on_state: StateCallback | None = None,
) -> RunResult:
    """Tail every host in ``spec`` into ``destination`` until interrupted.

    Setup errors are raised after every opened connection has been closed.
    ``credentials`` is emptied once the connections are established.
    """
    options = options or TailOptions()

    log_dir = None
    log_base = options.log_dir or spec.log_dir
    if log_base:
        log_dir = prepare_log_dir(log_base, spec.source_path)
        logger.info("Writing host output logs to %s", log_dir)

    try:
        writer = await ConsolidatedWriter.build(
            spec.hosts,
            credentials,
            destination,
            options=options,
            log_dir=log_dir,
            on_state=on_state,
        )
    finally:
        credentials.clear()
    result = await writer.start(install_signal_handlers=options.install_signal_handlers)

    if result.interrupted:
        logger.info("Shut down complete (interrupted)")
    else:
        logger.info("Shut down complete (all sessions ended)")
    return result
