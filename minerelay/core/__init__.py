"""
Bridge Core

Outbound batching, process supervision and shutdown coordination.

IMPORTANT:
- Importing this package MUST NOT spawn processes or create asyncio tasks
- All runtime execution is owned by BridgeRuntime (core.app)
"""

from minerelay.core.batch_queue import BatchQueue
from minerelay.core.process import ProcessExit, ProcessStartError, ProcessState, ProcessSupervisor
from minerelay.core.shutdown import ShutdownCoordinator

__all__ = [
    "BatchQueue",
    "ProcessExit",
    "ProcessStartError",
    "ProcessState",
    "ProcessSupervisor",
    "ShutdownCoordinator",
]
