from typing import Any


class TxProxyError(Exception):
    """Base class of every error raised by txproxy itself."""


class ConfigurationError(TxProxyError):
    """A required setting (e.g. the proxy endpoint) is missing or invalid."""


class TransportError(TxProxyError):
    """
    The request could not reach the proxy, or the connection dropped
    before a reply arrived.
    """

    def __init__(self, message: str, endpoint: str | None = None) -> None:
        hint = (
            "failed to get a reply from the transaction proxy, "
            "is the proxy server running?"
        )
        where = f" ({endpoint})" if endpoint else ""
        super().__init__(f"{hint}{where}\n{message}")
        self.endpoint = endpoint


class CodecError(TxProxyError):
    pass


class EncodeError(CodecError):
    """The value contains something the structured codec cannot carry."""


class DecodeError(CodecError):
    """The payload is not a valid structured record list or envelope."""


class ProtocolError(TxProxyError):
    """The transaction lifecycle messages arrived in an invalid order."""


class UnknownTransaction(ProtocolError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class ParentTransactionNotFound(ProtocolError):
    def __init__(self, parent_transaction_id: str) -> None:
        super().__init__(f"parent transaction {parent_transaction_id} not found")
        self.parent_transaction_id = parent_transaction_id


class DuplicateTransaction(ProtocolError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"transaction {transaction_id} already started")
        self.transaction_id = transaction_id


class OperationNotFound(TxProxyError):
    def __init__(self, model: str | None, operation: str) -> None:
        target = f"{model}.{operation}" if model else operation
        super().__init__(f"operation {target} not found")
        self.model = model
        self.operation = operation


class TransactionAborted(TxProxyError):
    """
    Raised inside the native transaction body when the client sent
    `$cleanup`, so that the engine rolls the transaction back.
    """

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"transaction {transaction_id} aborted by client")
        self.transaction_id = transaction_id


class RemoteError(TxProxyError):
    """
    An error raised on the other side of the proxy.

    Class identity does not cross the wire: only the original class name,
    the message and the optional engine `code`/`meta` are preserved.
    """

    def __init__(
        self,
        name: str,
        message: str,
        code: str | None = None,
        meta: Any = None,
    ) -> None:
        super().__init__(message)
        self.name = name
        self.message = message
        self.code = code
        self.meta = meta

    def __str__(self) -> str:
        prefix = f"{self.name} [{self.code}]" if self.code else self.name
        return f"{prefix}: {self.message}"

    def __repr__(self) -> str:
        return f"RemoteError(name={self.name!r}, message={self.message!r}, code={self.code!r})"
