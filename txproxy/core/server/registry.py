from collections import defaultdict

from txproxy.core.errors import DuplicateTransaction
from txproxy.core.server.handler import TopLevelTransactionHandler, TransactionHandler


class TransactionRegistry:
    """
    Live transaction handlers of one proxy instance, keyed by transaction
    id, with the parent -> children links of nested transactions.

    At most one handler exists per transaction id. Removing a handler also
    removes every handler nested under it.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, TransactionHandler] = {}
        self._children: dict[str, set[str]] = defaultdict(set)

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._handlers

    def get(self, transaction_id: str) -> TransactionHandler | None:
        return self._handlers.get(transaction_id)

    def register(self, handler: TransactionHandler) -> None:
        transaction_id = handler.transaction_id
        if transaction_id in self._handlers:
            raise DuplicateTransaction(transaction_id)

        self._handlers[transaction_id] = handler
        if handler.parent_transaction_id is not None:
            self._children[handler.parent_transaction_id].add(transaction_id)

    def remove(self, transaction_id: str) -> list[TransactionHandler]:
        """Unregister a handler and its descendants; return what was removed."""
        handler = self._handlers.pop(transaction_id, None)
        if handler is None:
            return []

        if handler.parent_transaction_id is not None:
            siblings = self._children.get(handler.parent_transaction_id)
            if siblings is not None:
                siblings.discard(transaction_id)
                if not siblings:
                    del self._children[handler.parent_transaction_id]

        removed = [handler]
        for child_id in self._children.pop(transaction_id, set()):
            removed.extend(self.remove(child_id))
        return removed

    def top_level(self) -> list[TopLevelTransactionHandler]:
        return [
            handler
            for handler in self._handlers.values()
            if isinstance(handler, TopLevelTransactionHandler)
        ]

    def ids(self) -> list[str]:
        return list(self._handlers)
