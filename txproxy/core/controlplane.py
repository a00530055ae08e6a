import asyncio
import logging
from typing import Any, Mapping

from txproxy.core.helpers.spawn import TaskSpawner
from txproxy.core.models.config import ServerConfig
from txproxy.core.ports.engine import DataAccessEngine
from txproxy.core.ports.serializer import Serializer
from txproxy.core.server.endpoint import ProxyEndpoint
from txproxy.core.server.executor import ExecutionEngine, OperationTable
from txproxy.core.server.multiplexer import TransactionMultiplexer
from txproxy.core.server.registry import TransactionRegistry
from txproxy.core.transport.application import Application
from txproxy.core.transport.server import MessageServer


class ControlPlane:
    """
    Assembles the proxy: engine, operation table, transaction multiplexer,
    endpoint and TCP listener, and runs them until the stop event fires.
    """
    def __init__(
        self,
        server_config: ServerConfig,
        engine: DataAccessEngine,
        serializer: Serializer,
        default_options: Mapping[str, Any] | None = None,
        expected_error_codes: frozenset[str] | None = None,
        expected_error_names: frozenset[str] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._loop = loop or self._create_event_loop()
        self._server_config = server_config
        self._engine = engine
        self._serializer = serializer

        self._logger = logging.getLogger("core.controlplane")

        self._spawner = TaskSpawner(loop=self._loop)
        self._executor = ExecutionEngine(OperationTable.from_engine(engine))
        self._registry = TransactionRegistry()
        self._multiplexer = TransactionMultiplexer(
            engine=engine,
            executor=self._executor,
            registry=self._registry,
            spawner=self._spawner,
            default_options=default_options,
        )

        endpoint_kwargs = {}
        if expected_error_codes is not None:
            endpoint_kwargs["expected_error_codes"] = expected_error_codes
        if expected_error_names is not None:
            endpoint_kwargs["expected_error_names"] = expected_error_names
        self._endpoint = ProxyEndpoint(self._multiplexer, **endpoint_kwargs)

        self._server = MessageServer(
            config=server_config,
            serializer=serializer,
            loop=self._loop,
        )

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def app(self) -> Application:
        return self._server_config.app

    @property
    def endpoint(self) -> ProxyEndpoint:
        return self._endpoint

    @property
    def multiplexer(self) -> TransactionMultiplexer:
        return self._multiplexer

    @property
    def server(self) -> MessageServer:
        return self._server

    async def start(self, stop_event: asyncio.Event) -> None:
        await self._server.start()
        await stop_event.wait()
        await self.stop()

    async def stop(self) -> None:
        self._logger.info("Shutting down the transaction proxy")
        await self._server.shutdown()
        await self._multiplexer.close()
        await self._spawner.cancel_all()

    @staticmethod
    def _create_event_loop() -> asyncio.AbstractEventLoop:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        return loop
