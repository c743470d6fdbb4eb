"""Tests for batch dispatch and collection."""

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import async_cm
from gsh.config import Config
from gsh.dispatcher import (
    TIMEOUT_INDICATOR,
    BatchOutcome,
    BatchState,
    Dispatcher,
    run_batch,
)
from gsh.errors import AgentUnavailableError


def make_config(hosts, timeout=5.0, buffer=True, user="bob") -> Config:
    return Config(hosts=list(hosts), command="hostname", user=user, timeout=timeout, buffer=buffer)


class Recorder:
    """Collects what the dispatcher would have printed."""

    def __init__(self):
        self.lines: list[tuple[str | None, str]] = []

    def __call__(self, host, line):
        self.lines.append((host, line))

    @property
    def printed(self) -> list[str]:
        return [line for _, line in self.lines]


async def abandon(dispatcher: Dispatcher) -> None:
    """Cancel tasks a timed-out batch left behind so the test loop closes cleanly."""
    for task in list(dispatcher._tasks):
        task.cancel()
    await asyncio.sleep(0)


class TestBatchOutcome:
    def test_zero_errors_is_success(self):
        outcome = BatchOutcome(attempted=3, received=3, errors=0, timed_out=False)
        assert outcome.ok
        assert outcome.exit_code == 0

    def test_one_error_is_failure(self):
        outcome = BatchOutcome(attempted=3, received=3, errors=1, timed_out=False)
        assert not outcome.ok
        assert outcome.exit_code == 1

    def test_timeout_alone_is_not_failure(self):
        outcome = BatchOutcome(attempted=3, received=2, errors=0, timed_out=True)
        assert outcome.exit_code == 0


class TestCollection:
    @pytest.mark.asyncio
    async def test_one_line_per_host_and_no_errors(self, network):
        hosts = [f"h{i}" for i in range(5)]
        for host in hosts:
            network.add(host, stdout=f"{host}-up\n")
        out = Recorder()
        dispatcher = Dispatcher(make_config(hosts), (), on_output=out)

        outcome = await dispatcher.run()

        assert sorted(out.printed) == sorted(f"{h}: {h}-up" for h in hosts)
        assert outcome == BatchOutcome(attempted=5, received=5, errors=0, timed_out=False)
        assert dispatcher.state is BatchState.COMPLETED

    @pytest.mark.asyncio
    async def test_unreachable_hosts_counted_others_printed(self, network):
        hosts = ["a", "b", "c", "d"]
        network.fail("b", OSError("connection refused"))
        network.fail("d", OSError("name not known"))
        out = Recorder()

        outcome = await Dispatcher(make_config(hosts), (), on_output=out).run()

        assert outcome.errors == 2
        assert outcome.received == 4
        assert "a: ok" in out.printed
        assert "c: ok" in out.printed
        assert "b error: connection refused" in out.printed
        assert "d error: name not known" in out.printed
        assert outcome.exit_code == 1

    @pytest.mark.asyncio
    async def test_error_count_never_exceeds_hosts(self, network):
        hosts = ["x", "y"]
        for host in hosts:
            network.fail(host, OSError("down"))

        outcome = await Dispatcher(make_config(hosts), (), on_output=Recorder()).run()

        assert outcome.errors == 2

    @pytest.mark.asyncio
    async def test_malformed_host_fails_without_stalling_batch(self, network):
        bad = "a" * 64 + ".example"
        network.fail(bad, UnicodeError("label empty or too long"))
        out = Recorder()

        outcome = await Dispatcher(make_config([bad, "h1"], timeout=2.0), (), on_output=out).run()

        assert outcome == BatchOutcome(attempted=2, received=2, errors=1, timed_out=False)
        assert f"{bad} error: label empty or too long" in out.printed
        assert TIMEOUT_INDICATOR not in out.printed

    @pytest.mark.asyncio
    async def test_per_host_user(self, network):
        await Dispatcher(make_config(["alice@h1", "h2"]), (), on_output=Recorder()).run()

        assert network.user_for("h1") == "alice"
        assert network.user_for("h2") == "bob"

    @pytest.mark.asyncio
    async def test_lines_of_one_host_stay_in_order(self, network):
        network.add("h1", stdout="line1\nline2\n")
        out = Recorder()

        await Dispatcher(make_config(["h1"]), (), on_output=out).run()

        assert out.lines == [("h1", "h1: line1"), ("h1", "h1: line2")]

    @pytest.mark.asyncio
    async def test_results_printed_in_arrival_order(self, network):
        network.add("slow", stdout="slow\n", delay=0.2)
        network.add("fast", stdout="fast\n")
        out = Recorder()

        await Dispatcher(make_config(["slow", "fast"]), (), on_output=out).run()

        assert out.printed == ["fast: fast", "slow: slow"]

    @pytest.mark.asyncio
    async def test_same_batch_twice_prints_same_lines(self, network):
        hosts = ["h1", "h2", "h3"]
        first, second = Recorder(), Recorder()

        await Dispatcher(make_config(hosts), (), on_output=first).run()
        await Dispatcher(make_config(hosts), (), on_output=second).run()

        assert sorted(first.printed) == sorted(second.printed)

    @pytest.mark.asyncio
    async def test_hosts_run_concurrently(self, network):
        hosts = [f"h{i}" for i in range(10)]
        for host in hosts:
            network.add(host, stdout="x\n", delay=0.1)

        loop = asyncio.get_running_loop()
        start = loop.time()
        await Dispatcher(make_config(hosts), (), on_output=Recorder()).run()
        elapsed = loop.time() - start

        # Serial execution would take ~1s
        assert elapsed < 0.5, f"Expected parallel execution, got {elapsed:.3f}s"

    @pytest.mark.asyncio
    async def test_default_output_prints(self, network, capsys):
        network.add("h1", stdout="hello\n")

        await Dispatcher(make_config(["h1"]), ()).run()

        assert capsys.readouterr().out == "h1: hello\n"


class TestTimeout:
    @pytest.mark.asyncio
    async def test_slow_host_is_abandoned(self, network):
        network.add("slow", stdout="late\n", delay=5)
        network.add("q1", stdout="one\n")
        network.add("q2", stdout="two\n")
        out = Recorder()
        dispatcher = Dispatcher(make_config(["slow", "q1", "q2"], timeout=0.3), (), on_output=out)

        outcome = await dispatcher.run()

        assert sorted(out.printed[:2]) == ["q1: one", "q2: two"]
        assert out.lines[-1] == (None, TIMEOUT_INDICATOR)
        assert "slow: late" not in out.printed
        assert outcome.timed_out
        assert outcome.received == 2
        assert outcome.received < outcome.attempted
        assert dispatcher.state is BatchState.TIMED_OUT
        # Left running, not cancelled
        assert dispatcher.pending == 1

        await abandon(dispatcher)

    @pytest.mark.asyncio
    async def test_deadline_is_for_whole_batch(self, network):
        # c arrives less than a timeout after b, but after the batch deadline
        network.add("a", stdout="a\n", delay=0.1)
        network.add("b", stdout="b\n", delay=0.3)
        network.add("c", stdout="c\n", delay=0.55)
        out = Recorder()
        dispatcher = Dispatcher(make_config(["a", "b", "c"], timeout=0.4), (), on_output=out)

        outcome = await dispatcher.run()

        assert out.printed == ["a: a", "b: b", TIMEOUT_INDICATOR]
        assert outcome.received == 2

        await abandon(dispatcher)

    @pytest.mark.asyncio
    async def test_timeout_printed_once(self, network):
        for host in ("s1", "s2"):
            network.add(host, delay=5)
        out = Recorder()
        dispatcher = Dispatcher(make_config(["s1", "s2"], timeout=0.1), (), on_output=out)

        outcome = await dispatcher.run()

        assert out.printed == [TIMEOUT_INDICATOR]
        assert outcome.received == 0
        assert outcome.errors == 0

        await abandon(dispatcher)


class TestStreamingBatch:
    @pytest.mark.asyncio
    async def test_successful_stream_prints_nothing_from_collector(self, network):
        proc = MagicMock()
        proc.stdout.read = AsyncMock(side_effect=[b"streamed\n", b""])
        proc.stderr.read = AsyncMock(side_effect=[b""])
        proc.wait = AsyncMock()
        proc.exit_status = 0
        conn = network.add("h1")
        conn.create_process = MagicMock(return_value=async_cm(proc))
        out = Recorder()
        stdout = io.StringIO()
        dispatcher = Dispatcher(
            make_config(["h1"], buffer=False), (), on_output=out, stdout=stdout
        )

        outcome = await dispatcher.run()

        assert out.lines == []
        assert stdout.getvalue() == "streamed\n"
        assert outcome.ok


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_agent_opened_and_closed(self, network):
        provider = MagicMock()
        provider.auth_method.return_value = ("key",)
        provider.__aenter__ = AsyncMock(return_value=provider)
        provider.__aexit__ = AsyncMock(return_value=False)

        with patch("gsh.dispatcher.CredentialProvider.open", AsyncMock(return_value=provider)):
            outcome = await run_batch(make_config(["h1"]), on_output=Recorder())

        assert outcome.ok
        assert network.calls[0]["client_keys"] == ("key",)
        provider.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_agent_unavailable_before_dispatch(self, network):
        with patch(
            "gsh.dispatcher.CredentialProvider.open",
            AsyncMock(side_effect=AgentUnavailableError("SSH_AUTH_SOCK is not set")),
        ):
            with pytest.raises(AgentUnavailableError):
                await run_batch(make_config(["h1"]))

        assert network.calls == []
