import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from txproxy.core.errors import DecodeError, OperationNotFound
from txproxy.core.helpers.utils import TransactionLogAdapter
from txproxy.core.models.envelope import OperationEnvelope, RAW_OPERATIONS, SqlTemplate
from txproxy.core.ports.engine import DataAccessEngine


Invoker = Callable[[DataAccessEngine, Any], Awaitable[Any]]


def model_key(model: str) -> str:
    """Normalize a model name to its accessor key: "BlogPost" -> "blogPost"."""
    return model[:1].lower() + model[1:]


def _model_invoker(key: str, operation: str) -> Invoker:
    async def invoke(client: DataAccessEngine, args: Any) -> Any:
        accessor = client.model(key)
        return await getattr(accessor, operation)(args)

    return invoke


def _raw_invoker(operation: str) -> Invoker:
    async def invoke(client: DataAccessEngine, args: Any) -> Any:
        template = SqlTemplate.from_args(args)
        return await getattr(client, operation)(template, *template.values)

    return invoke


def _function_invoker(operation: str) -> Invoker:
    async def invoke(client: DataAccessEngine, args: Any) -> Any:
        if args is None:
            args = []
        if not isinstance(args, list):
            raise DecodeError(f"arguments of {operation} must be a list")
        return await getattr(client, operation)(*args)

    return invoke


@dataclass(frozen=True)
class OperationTable:
    """
    Lookup table from `(model key, operation)` (or `(None, function)` for
    top-level functions) to the coroutine performing it against a given
    client. Built once from the engine schema so that no name coming from
    the wire is ever resolved against an arbitrary attribute.
    """
    invokers: dict[tuple[str | None, str], Invoker]

    @classmethod
    def from_engine(cls, engine: DataAccessEngine) -> "OperationTable":
        schema = engine.schema()
        invokers: dict[tuple[str | None, str], Invoker] = {}

        for key, operations in schema.models.items():
            for operation in operations:
                invokers[(key, operation)] = _model_invoker(key, operation)

        for operation in schema.operations:
            if operation in RAW_OPERATIONS:
                invokers[(None, operation)] = _raw_invoker(operation)
            else:
                invokers[(None, operation)] = _function_invoker(operation)

        return cls(invokers=invokers)

    def resolve(self, model: str | None, operation: str) -> Invoker:
        key = model_key(model) if model else None
        invoker = self.invokers.get((key, operation))
        if invoker is None:
            raise OperationNotFound(key, operation)
        return invoker

    def __contains__(self, item: tuple[str | None, str]) -> bool:
        return item in self.invokers


def redact(result: Any) -> Any:
    """Compact, non-sensitive view of a result for logging."""
    if result is None or isinstance(result, (bool, int, float, str)):
        return result
    try:
        return "<object>" if len(result) > 0 else "<empty>"
    except TypeError:
        return "<object>"


class ExecutionEngine:
    """
    Runs one decoded envelope against a client: the engine itself for
    standalone operations, or the transaction-scoped client of an open
    transaction.

    Failures of the underlying call propagate unchanged.
    """

    def __init__(self, table: OperationTable) -> None:
        self._table = table
        self._logger = logging.getLogger("core.server.executor")

    async def execute(self, client: DataAccessEngine, envelope: OperationEnvelope) -> Any:
        log = TransactionLogAdapter(
            self._logger, envelope.transaction_id, envelope.parent_transaction_id
        )
        invoker = self._table.resolve(envelope.model, envelope.operation)

        try:
            result = await invoker(client, envelope.args)
        except Exception as exc:
            log.debug(f"{envelope.target} failed: {exc!r}")
            raise

        if log.isEnabledFor(logging.DEBUG):
            log.debug({
                "model": envelope.model,
                "operation": envelope.operation,
                "transaction_id": envelope.transaction_id,
                "result": redact(result),
            })

        return result
