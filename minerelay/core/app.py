import asyncio
import signal
import sys
from typing import Optional

from minerelay.core.batch_queue import BatchQueue
from minerelay.core.console import ConsoleRelay
from minerelay.core.process import ProcessStartError, ProcessSupervisor
from minerelay.core.shutdown import ShutdownCoordinator
from minerelay.runtime import version
from minerelay.shared.config.bridge import BridgeConfig, ConfigError, load_bridge_config
from minerelay.shared.logging.logger import get_logger
from minerelay.services.discord.client import ChannelResolutionError, DiscordClient
from minerelay.services.discord.commands.rcon import RconCommandHandler
from minerelay.services.discord.embeds import COLORS
from minerelay.services.discord.messenger import DiscordMessenger
from minerelay.services.discord.permissions import RconPermissionResolver
from minerelay.services.rcon.session import RconSessionManager
from minerelay.services.rcon.transport import RconTransport

log = get_logger("core.app")


class StartupError(RuntimeError):
    """The bridge could not reach a running state."""


class BridgeRuntime:
    """
    Every resource the bridge owns, wired together once.

    start() brings the bridge up (Discord, channel, game server, console);
    shutdown() runs the coordinator and resolves with the exit code.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        client: Optional[DiscordClient] = None,
        transport: Optional[RconTransport] = None,
    ):
        self.config = config

        self.client = client or DiscordClient(
            config.discord,
            on_message=self._on_message,
        )
        self.messenger = DiscordMessenger(disconnect=self.client.shutdown)

        self.queue = BatchQueue(
            self.messenger,
            interval_seconds=config.batch.interval_seconds,
            max_lines=config.batch.max_lines,
            max_content=config.batch.max_content,
        )
        self.supervisor = ProcessSupervisor(
            workdir=config.server.workdir,
            run_script=config.server.run_script,
            queue=self.queue,
            messenger=self.messenger,
        )
        self.console = ConsoleRelay(self.supervisor)

        self.rcon = RconSessionManager(config.rcon, transport)
        self.commands = RconCommandHandler(
            settings=config.rcon,
            channel_id=config.discord.channel_id,
            permissions=RconPermissionResolver(
                allowed_user_ids=config.rcon.allowed_user_ids,
                allowed_role_id=config.rcon.allowed_role_id,
            ),
            rcon=self.rcon,
        )

        self.coordinator = ShutdownCoordinator(
            messenger=self.messenger,
            supervisor=self.supervisor,
            queue=self.queue,
            rcon=self.rcon,
            flag_path=config.server.no_restart_path,
            grace_seconds=config.server.stop_grace_seconds,
            terminate=self._terminate,
        )

        self._client_task: Optional[asyncio.Task] = None
        self._exit_code: Optional[int] = None

    async def _on_message(self, message) -> None:
        await self.commands.handle_message(message)

    def _terminate(self, code: int) -> None:
        self._exit_code = code

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self) -> None:
        self._client_task = asyncio.create_task(self.client.run())
        ready = asyncio.create_task(self.client.wait_until_ready())

        done, _ = await asyncio.wait(
            {self._client_task, ready},
            return_when=asyncio.FIRST_COMPLETED,
        )
        if ready not in done:
            ready.cancel()
            error = self._client_task.exception()
            raise StartupError(f"Discord login failed: {error}")

        channel = await self.client.resolve_channel()
        self.messenger.attach(channel)

        await self.messenger.send_embed(
            "**Logger online**, launching Minecraft...",
            COLORS["blue"],
        )

        await self.supervisor.start()
        await self.console.start()

    async def shutdown(self) -> int:
        await self.coordinator.shutdown()
        await self.console.stop()
        return 0 if self._exit_code is None else self._exit_code

    async def abort(self) -> None:
        """
        Tear down after a failed start (no stop protocol, no flag file).
        """
        await self.console.stop()
        await self.rcon.close()
        await self.client.shutdown()


def _log_unhandled(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    error = context.get("exception")
    message = context.get("message", "unhandled failure")
    log.error(f"[SYS] Unhandled async failure: {message} {error!r}")


async def main(stop_event: asyncio.Event) -> int:
    asyncio.get_running_loop().set_exception_handler(_log_unhandled)

    log.info(f"{version.as_string()} booting")

    # --------------------------------------------------
    # CONFIG
    # --------------------------------------------------
    try:
        config = load_bridge_config()
    except ConfigError as e:
        log.error(f"[FATAL] {e}")
        return 1

    runtime = BridgeRuntime(config)

    # --------------------------------------------------
    # START (all-or-nothing)
    # --------------------------------------------------
    try:
        await runtime.start()
    except (StartupError, ChannelResolutionError, ProcessStartError) as e:
        log.error(f"[FATAL] {e}")
        await runtime.abort()
        return 1

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")
    return await runtime.shutdown()


# ----------------------------------------------------------------------
# SIGNAL HANDLING
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    SIGINT / SIGTERM both trigger the shutdown sequence.
    Repeated signals only re-set an already-set event.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    exit_code = 0
    try:
        exit_code = loop.run_until_complete(main(stop_event))

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    run()
