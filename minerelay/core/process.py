"""
Game Server Process Supervisor

Owns the child process handle for the lifetime of the bridge.

Responsibilities:
- spawn the launch script (bash) in the configured working directory
- tag every non-blank stdout/stderr line and hand it to the BatchQueue
- forward console input to the child's stdin (best-effort)
- announce spawn / exit to Discord and force-flush trailing output on exit
- provide the stop primitives used by the ShutdownCoordinator

States: NOT_STARTED -> RUNNING -> (STOPPING) -> EXITED
"""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from minerelay.shared.logging.logger import get_logger
from minerelay.core.batch_queue import BatchQueue
from minerelay.services.discord.embeds import COLORS

log = get_logger("core.process")

STOP_COMMAND = b"stop\n"
STREAM_LIMIT = 1024 * 1024
STDIN_BUFFER_LIMIT = 1024 * 1024


class ProcessStartError(RuntimeError):
    """Raised when the child process cannot be launched."""


class ProcessState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPING = "stopping"
    EXITED = "exited"


@dataclass(frozen=True)
class ProcessExit:
    code: Optional[int]
    signal: Optional[str]

    @classmethod
    def from_returncode(cls, returncode: int) -> "ProcessExit":
        # asyncio reports death-by-signal as a negative return code
        if returncode < 0:
            try:
                name = signal.Signals(-returncode).name
            except ValueError:
                name = str(-returncode)
            return cls(code=None, signal=name)
        return cls(code=returncode, signal=None)


async def _read_line(stream: asyncio.StreamReader) -> bytes:
    """
    Read one line, however long. Lines over the stream limit are read in
    pieces and joined. Returns b"" at end of stream.
    """
    parts = []
    while True:
        try:
            parts.append(await stream.readuntil(b"\n"))
            break
        except asyncio.LimitOverrunError as e:
            parts.append(await stream.readexactly(e.consumed))
        except asyncio.IncompleteReadError as e:
            parts.append(e.partial)
            break
    return b"".join(parts)


class ProcessSupervisor:
    def __init__(
        self,
        *,
        workdir: Path,
        run_script: str,
        queue: BatchQueue,
        messenger,
        env: Optional[Dict[str, str]] = None,
    ):
        self._workdir = Path(workdir)
        self._run_script = run_script
        self._queue = queue
        self._messenger = messenger
        self._env = env

        self._state = ProcessState.NOT_STARTED
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._exit: Optional[ProcessExit] = None
        self._terminate_sent = False

    # --------------------------------------------------
    # Introspection
    # --------------------------------------------------

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def running(self) -> bool:
        return self._process is not None and self._state in (
            ProcessState.RUNNING,
            ProcessState.STOPPING,
        )

    @property
    def exit_info(self) -> Optional[ProcessExit]:
        return self._exit

    @property
    def stdin_writable(self) -> bool:
        proc = self._process
        return (
            proc is not None
            and proc.stdin is not None
            and not proc.stdin.is_closing()
        )

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self) -> None:
        if self._state is not ProcessState.NOT_STARTED:
            log.warning("Process supervisor already started")
            return

        if not self._workdir.is_dir():
            raise ProcessStartError(f"MC_WORKDIR does not exist: {self._workdir}")

        script_path = (self._workdir / self._run_script).resolve()
        if not script_path.is_file():
            raise ProcessStartError(f"run script not found at {script_path}")

        log.info(f"[MC] Starting script: {script_path}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                "bash",
                str(script_path),
                cwd=str(self._workdir),
                env=self._env if self._env is not None else dict(os.environ),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ProcessStartError(f"Failed to spawn {script_path}: {e}") from e

        self._state = ProcessState.RUNNING
        log.info(f"[MC] Process spawned (pid={self._process.pid})")

        await self._messenger.send_embed(
            "**Minecraft server starting**, log streaming attached.",
            COLORS["green"],
        )

        self._watch_task = asyncio.create_task(self._watch(self._process))

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.gather(
            self._pump(process.stdout, "[OUT]"),
            self._pump(process.stderr, "[ERR]"),
        )
        returncode = await process.wait()
        await self._on_close(ProcessExit.from_returncode(returncode))

    async def _pump(self, stream: Optional[asyncio.StreamReader], marker: str) -> None:
        if stream is None:
            return
        while True:
            raw = await _read_line(stream)
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line.strip():
                continue
            self._queue.enqueue(f"{marker} {line}")

    async def _on_close(self, exit_info: ProcessExit) -> None:
        self._exit = exit_info
        self._state = ProcessState.EXITED
        self._process = None
        self._closed.set()

        log.info(f"[MC] Process ended (code={exit_info.code}, signal={exit_info.signal})")

        try:
            await self._messenger.send_embed(
                "**Minecraft server process ended** "
                f"(code=`{exit_info.code}`, signal=`{exit_info.signal or 'null'}`).",
                COLORS["red"],
            )
        except Exception as e:
            log.error(f"Exit announcement failed: {e}")

        try:
            await self._queue.flush(force=True)
        except Exception as e:
            log.error(f"Trailing output flush failed: {e}")

    # --------------------------------------------------
    # Input relay
    # --------------------------------------------------

    def write_input(self, data: bytes) -> bool:
        """
        Forward raw bytes to the child's stdin. Dropped when not writable.

        Writes never wait for drain(). Input is dropped instead once
        STDIN_BUFFER_LIMIT bytes are queued for a child that stops reading.
        """
        if not self.stdin_writable:
            return False
        stdin = self._process.stdin
        if stdin.transport.get_write_buffer_size() >= STDIN_BUFFER_LIMIT:
            log.warning("[MC] stdin buffer full; input dropped")
            return False
        try:
            stdin.write(data)
            return True
        except Exception as e:
            log.warning(f"[MC] stdin write failed: {e}")
            return False

    # --------------------------------------------------
    # Stop primitives
    # --------------------------------------------------

    def request_stop(self) -> bool:
        """
        Ask the server to stop itself via its console.
        """
        if not self.running:
            return False
        self._state = ProcessState.STOPPING
        sent = self.write_input(STOP_COMMAND)
        if sent:
            log.info("[MC] Sent 'stop' to server console")
        return sent

    async def wait_closed(self, timeout: float) -> bool:
        """
        Wait for the close event up to timeout seconds.

        Returns True if the process closed first, False if the timeout won.
        """
        if self._process is None or self._closed.is_set():
            return True

        waiter = asyncio.ensure_future(self._closed.wait())
        done, _ = await asyncio.wait({waiter}, timeout=timeout)
        if waiter in done:
            return True
        waiter.cancel()
        return False

    def terminate(self) -> bool:
        """
        Send SIGTERM to the child. Issued at most once per supervisor.
        """
        proc = self._process
        if proc is None or self._terminate_sent:
            return False
        self._terminate_sent = True
        log.warning(f"[MC] Grace period elapsed; sending SIGTERM to pid {proc.pid}")
        try:
            proc.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            log.debug("[MC] Process already gone before SIGTERM")
        return True
