import asyncio
import logging

from txproxy.core.models.config import ServerConfig
from txproxy.core.models.state import ServerState
from txproxy.core.ports.serializer import Serializer
from txproxy.core.transport.protocol import Protocol


class MessageServer:
    """
    TCP listener of the transaction proxy. Each accepted connection gets a
    Protocol, which runs the configured application for it.

    On shutdown, it stops listening, closes every client connection and
    gives the per-connection application tasks `timeout_graceful_shutdown`
    seconds to wind down. Tasks still running after that are cancelled.
    """
    def __init__(
        self,
        config: ServerConfig,
        serializer: Serializer,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._config = config
        self._serializer = serializer
        self._loop = loop
        self.state = ServerState()
        self._logger = logging.getLogger("core.transport.server")

        self._server: asyncio.AbstractServer | None = None

    @property
    def port(self) -> int | None:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    def create_protocol(self) -> Protocol:
        return Protocol(self._config, self.state, self._serializer, self._loop)

    async def start(self) -> None:
        config = self._config
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        self._server = await self._loop.create_server(
            self.create_protocol,
            host=config.host,
            port=config.port,
            backlog=config.backlog,
            ssl=config.ssl_ctx
        )
        self._logger.info(f"Transaction proxy listening on {config.host}:{self.port}")

    async def shutdown(self) -> None:
        if self._server:
            self._server.close()

        for connection in list(self.state.connections):
            connection.shutdown()

        tasks = set(self.state.tasks)
        if tasks:
            self._logger.info(f"Waiting for {len(tasks)} connection(s) to finish.")
            _, pending = await asyncio.wait(
                tasks, timeout=self._config.timeout_graceful_shutdown
            )
            if pending:
                self._logger.error(
                    f"Cancel {len(pending)} connection task(s), "
                    f"timeout graceful shutdown exceeded"
                )
                for task in pending:
                    task.cancel()

        if self._server:
            await self._server.wait_closed()
