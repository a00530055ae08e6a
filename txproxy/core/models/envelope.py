from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping

from txproxy.core.codec import StructuredCodec
from txproxy.core.errors import CodecError, DecodeError


class ControlOperation(StrEnum):
    """Reserved operation names driving the transaction lifecycle."""
    START = "$start"
    COMMIT = "$commit"
    CLEANUP = "$cleanup"


CONTROL_OPERATIONS = frozenset(op.value for op in ControlOperation)

RAW_OPERATIONS = frozenset({"query_raw", "execute_raw"})
"""Top-level operations taking a parameterized SqlTemplate."""


@dataclass(frozen=True)
class TransactionContext:
    """
    Ambient state of an open transaction on the client side.

    A context with a parent belongs to a nested transaction: it points
    back to the enclosing transaction but never drives its lifecycle.
    """
    transaction_id: str

    parent_transaction_id: str | None = None

    options: dict[str, Any] | None = None


@dataclass(frozen=True)
class SqlTemplate:
    """
    A raw query split around its parameters:

        strings = ("SELECT * FROM user WHERE id = ", " AND name = ", "")
        values  = (5, "ada")

    `strings` always holds exactly one more element than `values`.
    """
    strings: tuple[str, ...]

    values: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "strings", tuple(self.strings))
        object.__setattr__(self, "values", tuple(self.values))
        if len(self.strings) != len(self.values) + 1:
            raise ValueError(
                f"SqlTemplate needs {len(self.values) + 1} string parts "
                f"for {len(self.values)} values, got {len(self.strings)}"
            )

    @classmethod
    def of(cls, text: str) -> "SqlTemplate":
        return cls(strings=(text,), values=())

    @classmethod
    def from_args(cls, args: Any) -> "SqlTemplate":
        if not isinstance(args, Mapping):
            raise DecodeError("raw query arguments must be a {strings, values} mapping")

        strings = args.get("strings")
        values = args.get("values", [])
        if not isinstance(strings, (list, tuple)) or not isinstance(values, (list, tuple)):
            raise DecodeError("raw query strings and values must be lists")

        try:
            return cls(strings=tuple(strings), values=tuple(values))
        except ValueError as ex:
            raise DecodeError(str(ex)) from ex

    def to_args(self) -> dict[str, list[Any]]:
        return {"strings": list(self.strings), "values": list(self.values)}

    def text(self, placeholder: str = "?") -> str:
        return placeholder.join(self.strings)


@dataclass
class OperationEnvelope:
    """
    One remote call: its target, its arguments and the transaction it
    belongs to.

    The target is either model-scoped (`model` + operation name) or a
    top-level function (`operation` only). Control operations
    ($start, $commit, $cleanup) are top-level and always carry a
    transaction id.
    """
    operation: str

    args: Any = None

    model: str | None = None

    transaction_id: str | None = None

    parent_transaction_id: str | None = None

    transaction_options: dict[str, Any] | None = field(default=None)

    @classmethod
    def control(
        cls,
        operation: ControlOperation,
        context: TransactionContext,
        with_options: bool = False,
    ) -> "OperationEnvelope":
        return cls(
            operation=operation.value,
            transaction_id=context.transaction_id,
            parent_transaction_id=context.parent_transaction_id,
            transaction_options=context.options if with_options else None,
        )

    @property
    def is_control(self) -> bool:
        return self.operation in CONTROL_OPERATIONS

    @property
    def target(self) -> str:
        return f"{self.model}.{self.operation}" if self.model else self.operation

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "args": StructuredCodec.encode(self.args),
            "model": self.model,
            "transaction_id": self.transaction_id,
            "parent_transaction_id": self.parent_transaction_id,
            "transaction_options": (
                StructuredCodec.encode(self.transaction_options)
                if self.transaction_options is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OperationEnvelope":
        if not isinstance(data, Mapping):
            raise DecodeError("envelope must be a mapping")

        operation = data.get("operation")
        if not isinstance(operation, str) or not operation:
            raise DecodeError("envelope operation must be a non-empty string")

        model = data.get("model")
        if model is not None and (not isinstance(model, str) or not model):
            raise DecodeError("envelope model must be a non-empty string")

        transaction_id = _optional_str(data, "transaction_id")
        parent_transaction_id = _optional_str(data, "parent_transaction_id")

        if operation in CONTROL_OPERATIONS:
            if model is not None:
                raise DecodeError(f"control operation {operation} cannot target a model")
            if transaction_id is None:
                raise DecodeError(f"control operation {operation} requires a transaction id")

        try:
            args = StructuredCodec.decode(data["args"]) if data.get("args") is not None else None
            raw_options = data.get("transaction_options")
            options = StructuredCodec.decode(raw_options) if raw_options is not None else None
        except CodecError as ex:
            raise DecodeError(f"invalid envelope for {operation}: {ex}") from ex

        if options is not None and not isinstance(options, dict):
            raise DecodeError("transaction options must be a mapping")

        return cls(
            operation=operation,
            args=args,
            model=model,
            transaction_id=transaction_id,
            parent_transaction_id=parent_transaction_id,
            transaction_options=options,
        )


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and (not isinstance(value, str) or not value):
        raise DecodeError(f"envelope {key} must be a non-empty string")
    return value
