from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from txproxy.core.models.envelope import TransactionContext


# Transaction of the current task. asyncio copies the context into every
# task it creates, so tasks started inside a transaction body see it too.
_CURRENT_TRANSACTION: ContextVar[TransactionContext | None] = ContextVar(
    "txproxy_current_transaction", default=None
)


def current_transaction() -> TransactionContext | None:
    return _CURRENT_TRANSACTION.get()


@contextmanager
def transaction_scope(context: TransactionContext) -> Iterator[TransactionContext]:
    """Make `context` the ambient transaction, restoring the previous one on exit."""
    token = _CURRENT_TRANSACTION.set(context)
    try:
        yield context
    finally:
        _CURRENT_TRANSACTION.reset(token)
