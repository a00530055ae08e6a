import logging
from typing import Any, Mapping

from txproxy.core.errors import (
    DuplicateTransaction,
    ParentTransactionNotFound,
    UnknownTransaction,
)
from txproxy.core.helpers.spawn import TaskSpawner
from txproxy.core.helpers.utils import TransactionLogAdapter
from txproxy.core.models.envelope import ControlOperation, OperationEnvelope
from txproxy.core.ports.engine import DataAccessEngine
from txproxy.core.server.executor import ExecutionEngine
from txproxy.core.server.handler import TopLevelTransactionHandler, TransactionHandler
from txproxy.core.server.registry import TransactionRegistry


class TransactionMultiplexer:
    """
    Turns a stream of independent envelopes back into interactive
    transactions.

    - Envelopes without a transaction id run directly on the engine.
    - `$start` registers a handler: a top-level one opening a native
      transaction, or a nested one sharing its parent's scoped client.
    - Other envelopes are routed to the handler of their transaction id.
      An unknown id is only accepted when a registered parent is given,
      in which case a nested handler is created on the fly.
    - `$commit` commits and unregisters the handler, `$cleanup` rolls it
      back and unregisters it. Nested handlers are unregistered together
      with their parent.
    """

    def __init__(
        self,
        engine: DataAccessEngine,
        executor: ExecutionEngine,
        registry: TransactionRegistry,
        spawner: TaskSpawner,
        default_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._engine = engine
        self._executor = executor
        self._registry = registry
        self._spawner = spawner
        self._default_options = dict(default_options or {})
        self._logger = logging.getLogger("core.server.multiplexer")

    @property
    def registry(self) -> TransactionRegistry:
        return self._registry

    async def dispatch(self, envelope: OperationEnvelope) -> Any:
        log = TransactionLogAdapter(
            self._logger, envelope.transaction_id, envelope.parent_transaction_id
        )
        log.debug(f"{envelope.target}, handler count: {len(self._registry)}")

        if envelope.transaction_id is None:
            return await self._executor.execute(self._engine, envelope)

        handler = await self._resolve(envelope)

        match envelope.operation:
            case ControlOperation.START:
                return {"started": True}

            case ControlOperation.COMMIT:
                try:
                    await handler.commit()
                finally:
                    self._registry.remove(handler.transaction_id)
                return {"committed": True}

            case ControlOperation.CLEANUP:
                self._registry.remove(handler.transaction_id)
                await handler.abort()
                return {"cleanup": True}

            case _:
                return await handler.exec(envelope)

    async def close(self) -> None:
        """Roll back every transaction still open, e.g. on server shutdown."""
        for handler in self._registry.top_level():
            self._logger.warning(
                f"Rolling back abandoned transaction {handler.transaction_id}"
            )
            self._registry.remove(handler.transaction_id)
            await handler.abort()

    async def _resolve(self, envelope: OperationEnvelope) -> TransactionHandler:
        transaction_id = envelope.transaction_id
        handler = self._registry.get(transaction_id)
        starting = envelope.operation == ControlOperation.START

        if handler is not None:
            if starting:
                raise DuplicateTransaction(transaction_id)
            return handler

        if envelope.parent_transaction_id is not None:
            parent = self._registry.get(envelope.parent_transaction_id)
            if parent is None:
                raise ParentTransactionNotFound(envelope.parent_transaction_id)

            nested = await parent.nested_transaction(transaction_id)
            # another request may have registered it while we were waiting
            existing = self._registry.get(transaction_id)
            if existing is not None:
                if starting:
                    raise DuplicateTransaction(transaction_id)
                return existing

            self._registry.register(nested)
            return nested

        if not starting:
            raise UnknownTransaction(transaction_id)

        handler = TopLevelTransactionHandler(
            engine=self._engine,
            executor=self._executor,
            spawner=self._spawner,
            transaction_id=transaction_id,
            options={**self._default_options, **(envelope.transaction_options or {})},
        )
        self._registry.register(handler)
        return handler
