"""SSH execution of one command on one host."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence, TextIO

import asyncssh

from .counter import ErrorCounter

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 8192


class OutputMode(Enum):
    """How a host's output reaches the console."""

    STREAM = "stream"
    BUFFER = "buffer"


class HostStatus(Enum):
    """Status of a host's execution."""

    PENDING = "pending"
    CONNECTING = "connecting"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class FailureKind(Enum):
    """Where a failed host went wrong."""

    CONNECTION = "connection"
    SESSION = "session"
    COMMAND = "command"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running the command on one host."""

    host: str
    address: str
    ok: bool
    lines: tuple[str, ...] = ()
    failure: FailureKind | None = None


# (host, status) -> None
StatusCallback = Callable[[str, HostStatus], None]


def parse_host(host: str, username: str) -> tuple[str, str]:
    """Split ``user@address`` into (user, address), defaulting the user."""
    if "@" in host:
        user, address = host.split("@", 1)
        return user, address
    return username, host


def split_output(address: str, output: str) -> tuple[str, ...]:
    """Prefix each line of captured output with the host address."""
    if output.endswith("\n"):
        output = output[:-1]
    return tuple(f"{address}: {line}" for line in output.split("\n"))


def _exit_error(exit_status: int | None) -> str | None:
    if exit_status is None:
        return "remote command exited without exit status"
    if exit_status != 0:
        return f"Process exited with status {exit_status}"
    return None


async def _pipe(stream, out: TextIO) -> None:
    """Copy raw bytes to ``out``, bypassing its text layer when it has one."""
    binary = getattr(out, "buffer", None)
    while True:
        chunk = await stream.read(STREAM_CHUNK_SIZE)
        if not chunk:
            break
        if binary is not None:
            out.flush()
            binary.write(chunk)
            binary.flush()
        else:
            out.write(chunk.decode("utf-8", errors="replace"))
            out.flush()


class RemoteExecutor:
    """Runs the batch command on single hosts.

    Everything shared by the hosts of one batch is bound here; ``run`` does
    the per-host work and never raises for a host failure.
    """

    def __init__(
        self,
        username: str,
        command: str,
        credentials: Sequence[asyncssh.SSHKeyPair],
        counter: ErrorCounter,
        mode: OutputMode = OutputMode.STREAM,
        port: int = 22,
        known_hosts: str | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        on_status: StatusCallback | None = None,
    ):
        self.username = username
        self.command = command
        self.credentials = credentials
        self.counter = counter
        self.mode = mode
        self.port = port
        self.known_hosts = known_hosts
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self.on_status = on_status

    def _emit_status(self, host: str, status: HostStatus) -> None:
        if self.on_status:
            self.on_status(host, status)

    @staticmethod
    def _failure(host: str, address: str, kind: FailureKind, cause: object) -> ExecutionResult:
        """Turn a failure into a single error line."""
        logger.debug("%s failed (%s): %s", host, kind.value, cause)
        return ExecutionResult(
            host=host,
            address=address,
            ok=False,
            lines=(f"{address} error: {cause}",),
            failure=kind,
        )

    async def run(self, host: str) -> ExecutionResult:
        """Connect to ``host``, run the command and report the result.

        Every failure is counted exactly once and returned as a result.
        """
        result = await self._run(host)
        if result.ok:
            self._emit_status(host, HostStatus.SUCCESS)
        else:
            self.counter.increment()
            self._emit_status(host, HostStatus.FAILED)
        return result

    async def _run(self, host: str) -> ExecutionResult:
        user, address = parse_host(host, self.username)

        self._emit_status(host, HostStatus.CONNECTING)
        logger.debug("Connecting to %s@%s:%d", user, address, self.port)

        try:
            async with asyncssh.connect(
                address,
                port=self.port,
                username=user,
                client_keys=self.credentials,
                known_hosts=self.known_hosts,
            ) as conn:
                self._emit_status(host, HostStatus.RUNNING)

                try:
                    if self.mode is OutputMode.STREAM:
                        error, lines = await self._run_streaming(conn)
                    else:
                        error, lines = await self._run_buffered(conn, address)
                except asyncssh.ChannelOpenError as e:
                    return self._failure(host, address, FailureKind.SESSION, e)
                except (asyncssh.Error, OSError) as e:
                    return self._failure(host, address, FailureKind.COMMAND, e)

        except (asyncssh.Error, OSError) as e:
            return self._failure(host, address, FailureKind.CONNECTION, e)
        except Exception as e:
            # e.g. UnicodeError from IDNA encoding of an invalid hostname
            logger.warning("Unexpected error on %s", host, exc_info=True)
            return self._failure(host, address, FailureKind.CONNECTION, e)

        if error:
            return self._failure(host, address, FailureKind.COMMAND, error)

        return ExecutionResult(host=host, address=address, ok=True, lines=lines)

    async def _run_streaming(
        self, conn: asyncssh.SSHClientConnection
    ) -> tuple[str | None, tuple[str, ...]]:
        """Copy remote output byte for byte to the local streams as it arrives."""
        async with conn.create_process(self.command, encoding=None) as proc:
            await asyncio.gather(
                _pipe(proc.stdout, self.stdout),
                _pipe(proc.stderr, self.stderr),
            )
            await proc.wait()
            return _exit_error(proc.exit_status), ()

    async def _run_buffered(
        self, conn: asyncssh.SSHClientConnection, address: str
    ) -> tuple[str | None, tuple[str, ...]]:
        """Capture stdout and stderr together and prefix every line."""
        completed = await conn.run(
            self.command,
            stderr=asyncssh.STDOUT,
            encoding="utf-8",
            errors="replace",
        )
        error = _exit_error(completed.exit_status)
        if error:
            return error, ()
        return None, split_output(address, completed.stdout or "")
