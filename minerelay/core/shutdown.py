"""
Shutdown Coordinator

Ordered, one-shot teardown of the bridge:

1. announce shutdown in the channel
2. write the no-restart flag for the external restart wrapper
3. ask the server to stop via its console
4. wait for the process to close; SIGTERM it if the grace period wins
5. force-flush the outbound queue (also stops its timer)
6. close the RCON session
7. disconnect from Discord
8. terminate with exit code 0

Every step is best-effort: failures are logged and the sequence continues.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from minerelay.shared.logging.logger import get_logger
from minerelay.core.batch_queue import BatchQueue
from minerelay.core.process import ProcessSupervisor
from minerelay.services.discord.embeds import COLORS
from minerelay.services.rcon.session import RconSessionManager

log = get_logger("core.shutdown")


class ShutdownCoordinator:
    def __init__(
        self,
        *,
        messenger,
        supervisor: ProcessSupervisor,
        queue: BatchQueue,
        rcon: RconSessionManager,
        flag_path: Path,
        grace_seconds: float,
        terminate: Callable[[int], None],
    ):
        self._messenger = messenger
        self._supervisor = supervisor
        self._queue = queue
        self._rcon = rcon
        self._flag_path = Path(flag_path)
        self._grace_seconds = grace_seconds
        self._terminate = terminate
        self._triggered = False

    @property
    def triggered(self) -> bool:
        return self._triggered

    async def shutdown(self) -> bool:
        """
        Run the teardown sequence. Returns False if it was already triggered.
        """
        if self._triggered:
            log.debug("[SYS] Shutdown already in progress; ignoring trigger")
            return False
        self._triggered = True

        log.info("[SYS] Shutting down...")

        try:
            await self._messenger.send_embed("**Logger shutting down...**", COLORS["yellow"])
        except Exception as e:
            log.error(f"[SYS] Shutdown announcement failed: {e}")

        try:
            self._flag_path.write_text("1", encoding="utf-8")
            log.info(f"[SYS] Wrote no-restart flag: {self._flag_path}")
        except Exception as e:
            log.error(f"[SYS] Failed to write no-restart flag: {e}")

        try:
            if self._supervisor.running and self._supervisor.stdin_writable:
                self._supervisor.request_stop()
        except Exception as e:
            log.error(f"[SYS] Failed to write 'stop' to server stdin: {e}")

        try:
            closed = await self._supervisor.wait_closed(self._grace_seconds)
            if not closed:
                self._supervisor.terminate()
        except Exception as e:
            log.error(f"[SYS] Process stop failed: {e}")

        try:
            await self._queue.flush(force=True)
        except Exception as e:
            log.error(f"[SYS] Final flush failed: {e}")

        try:
            await self._rcon.close()
        except Exception as e:
            log.warning(f"[SYS] RCON close error ignored: {e}")

        try:
            await self._messenger.disconnect()
        except Exception as e:
            log.warning(f"[SYS] Discord disconnect error ignored: {e}")

        log.info("[SYS] Shutdown complete")
        self._terminate(0)
        return True
