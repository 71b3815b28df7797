"""Tests for the RCON session manager."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, List

import pytest

from minerelay.services.rcon.session import RconDisabledError, RconSessionManager
from minerelay.services.rcon.transport import RconError
from minerelay.shared.config.bridge import RconSettings
from tests.conftest import FakeRconServer


class FakeSession:
    def __init__(self, name: str):
        self.name = name
        self.commands: List[str] = []
        self.fail_next = False
        self.ended = False
        self._handlers: List[Callable[[], None]] = []

    def on_terminated(self, handler: Callable[[], None]) -> None:
        self._handlers.append(handler)

    def drop(self) -> None:
        for handler in self._handlers:
            handler()

    async def exec(self, command: str) -> str:
        if self.fail_next:
            raise RconError("RCON closed")
        self.commands.append(command)
        return f"{self.name}:{command}"

    async def end(self) -> None:
        self.ended = True


class FakeTransport:
    def __init__(self, *, delay: float = 0.0, fail: int = 0):
        self.sessions: List[FakeSession] = []
        self.connect_calls = 0
        self._delay = delay
        self._fail = fail

    async def connect(self, host, port, password, timeout):
        self.connect_calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail:
            self._fail -= 1
            raise RconError("connection refused")
        session = FakeSession(f"s{len(self.sessions) + 1}")
        self.sessions.append(session)
        return session


@pytest.mark.asyncio
async def test_connects_lazily_and_reuses_session(rcon_settings: RconSettings) -> None:
    transport = FakeTransport()
    manager = RconSessionManager(rcon_settings, transport)

    assert transport.connect_calls == 0
    assert await manager.send("list") == "s1:list"
    assert await manager.send("time query daytime") == "s1:time query daytime"
    assert transport.connect_calls == 1
    assert manager.connected


@pytest.mark.asyncio
async def test_disabled_raises(rcon_settings: RconSettings) -> None:
    manager = RconSessionManager(replace(rcon_settings, enabled=False), FakeTransport())

    with pytest.raises(RconDisabledError):
        await manager.send("list")


@pytest.mark.asyncio
async def test_reconnects_after_drop(rcon_settings: RconSettings) -> None:
    transport = FakeTransport()
    manager = RconSessionManager(rcon_settings, transport)
    await manager.send("list")

    transport.sessions[0].drop()
    assert not manager.connected

    assert await manager.send("list") == "s2:list"
    assert transport.sessions[0].commands == ["list"]
    assert transport.connect_calls == 2


@pytest.mark.asyncio
async def test_failed_command_invalidates_without_retry(rcon_settings: RconSettings) -> None:
    transport = FakeTransport()
    manager = RconSessionManager(rcon_settings, transport)
    await manager.send("list")
    stale = transport.sessions[0]
    stale.fail_next = True

    with pytest.raises(RconError):
        await manager.send("save-all")

    assert not manager.connected
    assert stale.ended
    assert transport.connect_calls == 1

    assert await manager.send("save-all") == "s2:save-all"
    assert stale.commands == ["list"]


@pytest.mark.asyncio
async def test_stale_termination_handler_ignored(rcon_settings: RconSettings) -> None:
    transport = FakeTransport()
    manager = RconSessionManager(rcon_settings, transport)
    await manager.send("list")
    transport.sessions[0].drop()
    await manager.send("list")

    transport.sessions[0].drop()

    assert manager.connected


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_connect(rcon_settings: RconSettings) -> None:
    transport = FakeTransport(delay=0.05)
    manager = RconSessionManager(rcon_settings, transport)

    results = await asyncio.gather(*(manager.send(f"cmd{i}") for i in range(5)))

    assert transport.connect_calls == 1
    assert results == [f"s1:cmd{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_connect_failure_clears_connecting(rcon_settings: RconSettings) -> None:
    transport = FakeTransport(fail=1)
    manager = RconSessionManager(rcon_settings, transport)

    with pytest.raises(RconError, match="refused"):
        await manager.send("list")
    assert not manager.connecting
    assert not manager.connected

    assert await manager.send("list") == "s1:list"


@pytest.mark.asyncio
async def test_close_never_raises(rcon_settings: RconSettings) -> None:
    class BrokenSession(FakeSession):
        async def end(self) -> None:
            raise OSError("socket already closed")

    class BrokenTransport(FakeTransport):
        async def connect(self, host, port, password, timeout):
            self.connect_calls += 1
            return BrokenSession("broken")

    manager = RconSessionManager(rcon_settings, BrokenTransport())
    await manager.send("list")

    await manager.close()
    await manager.close()

    assert not manager.connected


@pytest.mark.asyncio
async def test_server_drop_reconnects_on_next_send(rcon_settings: RconSettings) -> None:
    async with FakeRconServer(rcon_settings.password, close_after_commands=1) as server:
        manager = RconSessionManager(replace(rcon_settings, port=server.port))
        try:
            assert await manager.send("list") == "There are 0 of a max of 20 players online: "

            for _ in range(200):
                if not manager.connected:
                    break
                await asyncio.sleep(0.01)
            assert not manager.connected

            assert await manager.send("list") == "There are 0 of a max of 20 players online: "
            assert manager.connected
            assert server.connections == 2
        finally:
            await manager.close()
