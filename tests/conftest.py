"""Shared fixtures for gsh tests."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest


def async_cm(value: Any) -> MagicMock:
    """An async context manager yielding ``value`` and not swallowing errors."""
    cm = MagicMock()
    cm.__aenter__.return_value = value
    cm.__aexit__.return_value = False
    return cm


def make_connection(stdout: str = "", exit_status: int | None = 0, delay: float = 0) -> MagicMock:
    """Mock SSH connection whose ``run`` returns a completed process."""
    conn = MagicMock()

    async def run(*args, **kwargs):
        if delay:
            await asyncio.sleep(delay)
        return MagicMock(stdout=stdout, exit_status=exit_status)

    conn.run = AsyncMock(side_effect=run)
    return conn


class FakeNetwork:
    """Stands in for ``asyncssh.connect`` across a set of hosts.

    Addresses in ``failures`` raise the mapped exception at connect time;
    every other address gets the connection registered for it, or a default
    one printing ``ok``.
    """

    def __init__(self) -> None:
        self.connections: dict[str, MagicMock] = {}
        self.failures: dict[str, BaseException] = {}
        self.calls: list[dict[str, Any]] = []

    def add(self, address: str, **kwargs) -> MagicMock:
        conn = make_connection(**kwargs)
        self.connections[address] = conn
        return conn

    def fail(self, address: str, exc: BaseException) -> None:
        self.failures[address] = exc

    def connect(self, address: str, **kwargs) -> MagicMock:
        self.calls.append({"address": address, **kwargs})
        if address in self.failures:
            raise self.failures[address]
        conn = self.connections.get(address) or make_connection(stdout="ok\n")
        return async_cm(conn)

    def user_for(self, address: str) -> str:
        for call in self.calls:
            if call["address"] == address:
                return call["username"]
        raise KeyError(address)


@pytest.fixture
def network(monkeypatch) -> FakeNetwork:
    """Patch asyncssh.connect with a FakeNetwork."""
    fake = FakeNetwork()
    monkeypatch.setattr("gsh.executor.asyncssh.connect", fake.connect)
    return fake


@pytest.fixture
def gsh_dir(tmp_path, monkeypatch):
    """Point GSH_DIR at an empty temporary directory."""
    monkeypatch.setenv("GSH_DIR", str(tmp_path))
    return tmp_path
