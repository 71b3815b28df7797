"""Shared fakes for bridge tests."""

from __future__ import annotations

import asyncio
from typing import List, Optional, Set, Tuple

import pytest

from minerelay.services.rcon.transport import (
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_RESPONSE_VALUE,
    RconError,
    pack_packet,
    read_packet,
)
from minerelay.shared.config.bridge import RconSettings


class FakeMessenger:
    """Records everything the bridge would post to Discord."""

    def __init__(self, *, available: bool = True, fail_on: Optional[Set[int]] = None):
        self.available = available
        self.sent: List[str] = []
        self.embeds: List[Tuple[str, int]] = []
        self.disconnected = 0
        self._fail_on = fail_on or set()
        self._attempts = 0

    async def send(self, content: str) -> bool:
        self._attempts += 1
        if self._attempts in self._fail_on:
            raise RuntimeError("Missing Access")
        self.sent.append(content)
        return True

    async def send_embed(self, text: str, color: int) -> bool:
        self.embeds.append((text, color))
        return True

    async def disconnect(self) -> None:
        self.disconnected += 1


@pytest.fixture()
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture()
def rcon_settings() -> RconSettings:
    return RconSettings(
        enabled=True,
        host="127.0.0.1",
        port=25575,
        password="hunter2",
        connect_timeout_ms=500,
    )


class FakeRconServer:
    """In-process Source RCON server on a loopback port."""

    def __init__(
        self,
        password: str = "hunter2",
        *,
        close_after_auth: bool = False,
        close_after_commands: Optional[int] = None,
    ):
        self.password = password
        self.commands: List[str] = []
        self.connections = 0
        self._close_after_auth = close_after_auth
        self._close_after_commands = close_after_commands
        self._server = None

    async def __aenter__(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def __aexit__(self, *exc):
        self._server.close()
        await self._server.wait_closed()

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    async def _handle(self, reader, writer):
        self.connections += 1
        answered = 0
        try:
            req_id, kind, body = await read_packet(reader)
            assert kind == SERVERDATA_AUTH
            writer.write(pack_packet(req_id, SERVERDATA_RESPONSE_VALUE, ""))
            if body != self.password:
                writer.write(pack_packet(-1, SERVERDATA_AUTH_RESPONSE, ""))
                await writer.drain()
                return
            writer.write(pack_packet(req_id, SERVERDATA_AUTH_RESPONSE, ""))
            await writer.drain()
            if self._close_after_auth:
                return
            while self._close_after_commands is None or answered < self._close_after_commands:
                req_id, _, body = await read_packet(reader)
                self.commands.append(body)
                reply = "There are 0 of a max of 20 players online: " if body == "list" else ""
                writer.write(pack_packet(req_id, SERVERDATA_RESPONSE_VALUE, reply))
                await writer.drain()
                answered += 1
        except RconError:
            pass
        finally:
            writer.close()
