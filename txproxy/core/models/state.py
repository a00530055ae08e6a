import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from txproxy.core.transport.protocol import Protocol


@dataclass
class ServerState:
    """
    Shared runtime state for a MessageServer.

    This object is mutated by:
    - Protocol: adds/removes active connections
    - Protocol: registers the Streamer task running the application
    - MessageServer.shutdown(): closes the connections, then waits for the tasks
    """
    connections: set["Protocol"] = field(default_factory=set)
    """
    Set of active Protocol instances. Each TCP connection corresponds
    to one Protocol.
    """

    tasks: set[asyncio.Task[None]] = field(default_factory=set)
    """
    Set of per-connection application tasks. Each task removes itself
    through task.add_done_callback(tasks.discard) to enable clean shutdown.
    """
