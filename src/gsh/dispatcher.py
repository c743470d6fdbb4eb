"""Concurrent dispatch of one command to every host, with a batch deadline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence, TextIO

import asyncssh

from .config import Config
from .counter import ErrorCounter
from .credentials import CredentialProvider
from .executor import ExecutionResult, RemoteExecutor, StatusCallback

logger = logging.getLogger(__name__)

TIMEOUT_INDICATOR = "!! - Timed out - !!"

# (host, line) -> None; host is None for the timeout indicator
OutputCallback = Callable[[str | None, str], None]


class BatchState(Enum):
    """Lifecycle of one batch."""

    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class BatchOutcome:
    """What a finished batch reports to its caller."""

    attempted: int
    received: int
    errors: int
    timed_out: bool

    @property
    def ok(self) -> bool:
        """True only when no host failed."""
        return self.errors == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


def _print_line(host: str | None, line: str) -> None:
    print(line, flush=True)


class Dispatcher:
    """Runs the configured command on all hosts at once and collects results.

    Results are emitted in arrival order. When the deadline passes, hosts
    still running are left behind and their results are never read.
    """

    def __init__(
        self,
        config: Config,
        credentials: Sequence[asyncssh.SSHKeyPair],
        on_output: OutputCallback | None = None,
        on_status: StatusCallback | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        self.config = config
        self.credentials = credentials
        self.on_output = on_output or _print_line
        self.on_status = on_status
        self.stdout = stdout
        self.stderr = stderr
        self.state = BatchState.DISPATCHING
        self._tasks: set[asyncio.Task] = set()

    def _emit_output(self, host: str | None, line: str) -> None:
        self.on_output(host, line)

    async def _execute(
        self,
        executor: RemoteExecutor,
        host: str,
        results: asyncio.Queue[ExecutionResult],
    ) -> None:
        result = await executor.run(host)
        # Bounded at len(hosts), so this never waits
        results.put_nowait(result)

    async def run(self) -> BatchOutcome:
        """Dispatch every host, then collect until done or out of time."""
        hosts = self.config.hosts
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.timeout

        counter = ErrorCounter()
        executor = RemoteExecutor(
            self.config.user,
            self.config.command,
            self.credentials,
            counter,
            mode=self.config.mode,
            port=self.config.port,
            known_hosts=self.config.known_hosts,
            stdout=self.stdout,
            stderr=self.stderr,
            on_status=self.on_status,
        )
        results: asyncio.Queue[ExecutionResult] = asyncio.Queue(maxsize=max(1, len(hosts)))

        self.state = BatchState.DISPATCHING
        logger.info(
            "Dispatching to %d hosts (mode=%s, timeout=%ss)",
            len(hosts),
            self.config.mode.value,
            self.config.timeout,
        )
        for host in hosts:
            task = asyncio.create_task(self._execute(executor, host, results))
            # Keep a reference until done so the task is not garbage collected
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self.state = BatchState.COLLECTING
        received = 0
        for _ in range(len(hosts)):
            remaining = max(0.0, deadline - loop.time())
            try:
                result = await asyncio.wait_for(results.get(), timeout=remaining)
            except asyncio.TimeoutError:
                self.state = BatchState.TIMED_OUT
                self._emit_output(None, TIMEOUT_INDICATOR)
                logger.warning(
                    "Timed out after %ss with %d of %d results",
                    self.config.timeout,
                    received,
                    len(hosts),
                )
                break

            received += 1
            for line in result.lines:
                self._emit_output(result.host, line)
        else:
            self.state = BatchState.COMPLETED

        outcome = BatchOutcome(
            attempted=len(hosts),
            received=received,
            errors=counter.value,
            timed_out=self.state is BatchState.TIMED_OUT,
        )
        logger.info(
            "Batch %s: %d/%d results, %d errors",
            self.state.value,
            outcome.received,
            outcome.attempted,
            outcome.errors,
        )
        return outcome

    @property
    def pending(self) -> int:
        """Tasks dispatched by this batch that have not finished yet."""
        return len(self._tasks)


async def run_batch(
    config: Config,
    on_output: OutputCallback | None = None,
    on_status: StatusCallback | None = None,
    agent_path: str | None = None,
) -> BatchOutcome:
    """Open the agent, run one batch, and release the agent on every path.

    Raises:
        AgentUnavailableError: Before any host is contacted
    """
    async with await CredentialProvider.open(agent_path) as provider:
        dispatcher = Dispatcher(
            config,
            provider.auth_method(),
            on_output=on_output,
            on_status=on_status,
        )
        return await dispatcher.run()
