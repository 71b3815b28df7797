"""
Source RCON transport (asyncio).

Packet layout (little-endian):
    int32 length | int32 request id | int32 type | body | 0x00 0x00

The server answers an auth request with request id -1 when the password
is rejected. One connection carries one command at a time.
"""

from __future__ import annotations

import asyncio
import itertools
import struct
from typing import Callable, Dict, List, Optional, Tuple

from minerelay.shared.logging.logger import get_logger

log = get_logger("rcon.transport", runtime="rcon")

SERVERDATA_AUTH = 3
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_RESPONSE_VALUE = 0

MAX_PACKET_SIZE = 4096 + 10


class RconError(RuntimeError):
    """Transport-level RCON failure."""


class RconAuthError(RconError):
    """The server rejected the RCON password."""


def pack_packet(req_id: int, kind: int, body: str) -> bytes:
    data = struct.pack("<ii", req_id, kind) + body.encode("utf-8") + b"\x00\x00"
    return struct.pack("<i", len(data)) + data


async def read_packet(reader: asyncio.StreamReader) -> Tuple[int, int, str]:
    try:
        raw_len = await reader.readexactly(4)
        (length,) = struct.unpack("<i", raw_len)
        if length < 10 or length > MAX_PACKET_SIZE:
            raise RconError(f"RCON invalid packet length {length}")
        data = await reader.readexactly(length)
    except asyncio.IncompleteReadError:
        raise RconError("RCON closed") from None
    req_id, kind = struct.unpack("<ii", data[:8])
    body = data[8:-2].decode("utf-8", "ignore")
    return req_id, kind, body


class RconConnection:
    """
    An authenticated RCON session.

    After authentication a reader task owns the socket: responses are
    routed to the waiting command by request id, and end-of-stream or a
    read error ends the connection. Termination handlers run once, when
    the connection ends for any reason.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._handlers: List[Callable[[], None]] = []
        self._pending: Dict[int, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def on_terminated(self, handler: Callable[[], None]) -> None:
        self._handlers.append(handler)

    async def _request(self, kind: int, body: str) -> int:
        req_id = next(self._ids)
        self._writer.write(pack_packet(req_id, kind, body))
        await self._writer.drain()
        return req_id

    async def authenticate(self, password: str) -> None:
        async with self._lock:
            req_id = await self._request(SERVERDATA_AUTH, password)
            while True:
                rid, kind, _ = await read_packet(self._reader)
                # Some servers send an empty RESPONSE_VALUE before the auth reply
                if kind != SERVERDATA_AUTH_RESPONSE:
                    continue
                if rid == -1:
                    raise RconAuthError("RCON auth failed")
                if rid == req_id:
                    break
        self._reader_task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            while True:
                rid, _, body = await read_packet(self._reader)
                waiter = self._pending.pop(rid, None)
                if waiter is None or waiter.done():
                    log.debug(f"Discarding stale RCON response id={rid}")
                    continue
                waiter.set_result(body)
        except (OSError, RconError) as e:
            log.debug(f"RCON reader stopped: {e}")
            self._terminate()

    async def exec(self, command: str) -> str:
        if self._ended:
            raise RconError("RCON connection closed")

        async with self._lock:
            if self._ended:
                raise RconError("RCON connection closed")
            req_id = next(self._ids)
            waiter = asyncio.get_running_loop().create_future()
            self._pending[req_id] = waiter
            try:
                self._writer.write(pack_packet(req_id, SERVERDATA_EXECCOMMAND, command))
                await self._writer.drain()
                return await waiter
            except OSError as e:
                self._terminate()
                raise RconError(f"RCON connection lost: {e}") from e
            finally:
                self._pending.pop(req_id, None)

    async def end(self) -> None:
        if self._ended:
            return
        self._terminate()
        task = self._reader_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        try:
            await self._writer.wait_closed()
        except (OSError, RconError):
            pass

    def _terminate(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._writer.close()

        task = self._reader_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        for waiter in self._pending.values():
            if not waiter.done():
                waiter.set_exception(RconError("RCON closed"))
        self._pending.clear()

        for handler in self._handlers:
            try:
                handler()
            except Exception as e:
                log.error(f"RCON termination handler failed: {e}")


class RconTransport:
    """
    Factory for authenticated RCON connections.
    """

    async def connect(
        self,
        host: str,
        port: int,
        password: str,
        timeout: float,
    ) -> RconConnection:
        async def _open() -> RconConnection:
            reader, writer = await asyncio.open_connection(host, port)
            connection = RconConnection(reader, writer)
            try:
                await connection.authenticate(password)
            except BaseException:
                connection._terminate()
                raise
            return connection

        try:
            return await asyncio.wait_for(_open(), timeout)
        except asyncio.TimeoutError:
            raise RconError(f"RCON connect to {host}:{port} timed out after {timeout}s") from None
        except OSError as e:
            raise RconError(f"RCON connect to {host}:{port} failed: {e}") from e
