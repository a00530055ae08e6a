import asyncio
import logging
from contextlib import asynccontextmanager
from enum import StrEnum
from typing import Any, AsyncIterator, Mapping

from txproxy.core.errors import ProtocolError, TransactionAborted
from txproxy.core.helpers.spawn import TaskSpawner
from txproxy.core.helpers.utils import TransactionLogAdapter
from txproxy.core.models.envelope import OperationEnvelope
from txproxy.core.ports.engine import DataAccessEngine
from txproxy.core.server.executor import ExecutionEngine


class TransactionState(StrEnum):
    STARTING = "starting"
    ACTIVE = "active"
    COMMITTING = "committing"
    ABORTED = "aborted"
    FAILED = "failed"
    CLOSED = "closed"


_FINISHED = (TransactionState.COMMITTING, TransactionState.ABORTED, TransactionState.CLOSED)


class TransactionHandler:
    """
    Server-side half of one client transaction.

    A handler lives in the TransactionRegistry from the first envelope
    referencing its transaction id until `$commit` or `$cleanup`.
    """
    transaction_id: str
    parent_transaction_id: str | None = None
    state: TransactionState

    @property
    def root(self) -> "TopLevelTransactionHandler":
        raise NotImplementedError

    async def exec(self, envelope: OperationEnvelope) -> Any:
        raise NotImplementedError

    async def commit(self) -> None:
        raise NotImplementedError

    async def abort(self) -> None:
        raise NotImplementedError

    async def nested_transaction(self, transaction_id: str) -> "NestedTransactionHandler":
        raise NotImplementedError


class TopLevelTransactionHandler(TransactionHandler):
    """
    Keeps one native interactive transaction open across independent
    requests.

    On creation, a background task enters `engine.transaction()`. The body
    handed to the engine publishes the transaction-scoped client, then
    blocks on a one-shot release signal:

    - `commit()` fires the signal; the body returns and the engine commits.
    - `abort()` fires it in abort mode; the body raises TransactionAborted
      and the engine rolls back.

    Requests arriving before the scoped client is available wait for it.
    If the engine fails to start (or fails later), the failure is kept and
    re-raised by every subsequent `exec()` and `commit()`.

    `commit()` waits for in-flight `exec()` calls of this transaction and of
    its nested transactions before firing the signal, so a commit never
    overtakes a running statement.
    `abort()` waits for them too; requests still waiting for the scoped
    client when the abort arrives are rejected instead of run.
    """

    def __init__(
        self,
        engine: DataAccessEngine,
        executor: ExecutionEngine,
        spawner: TaskSpawner,
        transaction_id: str,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        self.transaction_id = transaction_id
        self.state = TransactionState.STARTING

        self._engine = engine
        self._executor = executor
        self._options = dict(options or {})

        self._scoped: DataAccessEngine | None = None
        self._ready = asyncio.Event()
        self._released = asyncio.Event()
        self._aborted = False
        self._failure: BaseException | None = None

        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()

        self._log = TransactionLogAdapter(
            logging.getLogger("core.server.handler"), transaction_id
        )
        self._task = spawner.spawn(self._run(), name=f"transaction-{transaction_id}")

    @property
    def root(self) -> "TopLevelTransactionHandler":
        return self

    async def exec(self, envelope: OperationEnvelope) -> Any:
        self._log.debug(f"exec {envelope.target}")
        async with self.tracking("exec"):
            client = await self.scoped_client()
            return await self._executor.execute(client, envelope)

    async def commit(self) -> None:
        self._log.debug("commit")
        self._ensure_no_failure("commit")
        self._ensure_open("commit")

        await self._idle.wait()
        self.state = TransactionState.COMMITTING
        self._released.set()

        await self._task
        self._ensure_no_failure("commit")
        self.state = TransactionState.CLOSED
        self._log.debug("transaction closed")

    async def abort(self) -> None:
        if self.state in (TransactionState.ABORTED, TransactionState.CLOSED):
            return

        self._log.debug("abort, rolling back")
        if self.state is not TransactionState.FAILED:
            self.state = TransactionState.ABORTED
            self._aborted = True
            # statements already admitted finish before the rollback
            await self._idle.wait()
            self._released.set()

        await self._task
        self.state = TransactionState.CLOSED

    async def nested_transaction(self, transaction_id: str) -> "NestedTransactionHandler":
        client = await self.scoped_client()
        return NestedTransactionHandler(
            transaction_id=transaction_id,
            parent=self,
            client=client,
            executor=self._executor,
        )

    async def scoped_client(self) -> DataAccessEngine:
        self._ensure_no_failure("exec")
        await self._ready.wait()
        self._ensure_no_failure("exec")
        if self._aborted:
            raise ProtocolError(f"transaction {self.transaction_id} was rolled back")
        if self._scoped is None:
            raise ProtocolError(f"transaction {self.transaction_id} is {self.state}")
        return self._scoped

    @asynccontextmanager
    async def tracking(self, action: str) -> AsyncIterator[None]:
        self._ensure_no_failure(action)
        self._ensure_open(action)

        self._inflight += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._inflight -= 1
            if self._inflight == 0:
                self._idle.set()

    async def _run(self) -> None:
        self._log.debug(f"starting native transaction with options {self._options}")
        try:
            await self._engine.transaction(self._body, self._options)
        except TransactionAborted:
            self._log.debug("native transaction rolled back")
        except Exception as exc:
            self._log.debug(f"native transaction failed: {exc!r}")
            self._failure = exc
            self.state = TransactionState.FAILED
        finally:
            # wake up requests still waiting for the scoped client
            self._ready.set()

    async def _body(self, client: DataAccessEngine) -> None:
        self._scoped = client
        if self.state is TransactionState.STARTING:
            self.state = TransactionState.ACTIVE
        self._ready.set()
        self._log.debug("native transaction active")

        await self._released.wait()
        if self._aborted:
            raise TransactionAborted(self.transaction_id)

    def _ensure_no_failure(self, action: str) -> None:
        if self._failure is not None:
            self._log.debug(f"{action}: re-raising native transaction failure {self._failure!r}")
            raise self._failure

    def _ensure_open(self, action: str) -> None:
        if self.state in _FINISHED:
            raise ProtocolError(
                f"cannot {action}: transaction {self.transaction_id} is {self.state}"
            )


class NestedTransactionHandler(TransactionHandler):
    """
    Transaction opened inside another one. It has no native transaction of
    its own: statements run on the scoped client of the enclosing top-level
    transaction, and its commit and abort only close the handler. The
    top-level commit or rollback is authoritative.
    """

    def __init__(
        self,
        transaction_id: str,
        parent: TransactionHandler,
        client: DataAccessEngine,
        executor: ExecutionEngine,
    ) -> None:
        self.transaction_id = transaction_id
        self.parent_transaction_id = parent.transaction_id
        self.state = TransactionState.ACTIVE

        self._root = parent.root
        self._client = client
        self._executor = executor
        self._log = TransactionLogAdapter(
            logging.getLogger("core.server.handler"),
            transaction_id,
            parent.transaction_id,
        )

    @property
    def root(self) -> TopLevelTransactionHandler:
        return self._root

    async def exec(self, envelope: OperationEnvelope) -> Any:
        self._log.debug(f"nested exec {envelope.target}")
        if self.state is not TransactionState.ACTIVE:
            raise ProtocolError(f"transaction {self.transaction_id} is {self.state}")

        async with self._root.tracking("exec"):
            return await self._executor.execute(self._client, envelope)

    async def commit(self) -> None:
        self._log.debug("nested commit, no action taken")
        self.state = TransactionState.CLOSED

    async def abort(self) -> None:
        self._log.debug("nested cleanup, left to the enclosing transaction")
        self.state = TransactionState.CLOSED

    async def nested_transaction(self, transaction_id: str) -> "NestedTransactionHandler":
        return NestedTransactionHandler(
            transaction_id=transaction_id,
            parent=self,
            client=self._client,
            executor=self._executor,
        )
