from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class EngineSchema:
    """
    Static description of what an engine can execute: the operations of
    each model (keyed by their lower-camel model key, e.g. "user",
    "blogPost") and the names of the top-level functions.
    """
    models: Mapping[str, frozenset[str]] = field(default_factory=dict)

    operations: frozenset[str] = frozenset()


class ModelAccessor(Protocol):
    """
    Per-model entry point of an engine. Each operation is an async method
    taking the operation arguments as a single object, e.g.
    `await accessor.find_many({"where": {...}})`.
    """


class DataAccessEngine(Protocol):
    """
    The data-access engine wrapped by the proxy.

    The same interface is exposed by the engine itself and by the
    transaction-scoped client handed to an interactive transaction body;
    every operation resolved through a scoped client runs inside that
    transaction.

    Top-level functions are plain async methods on the engine. The raw
    query functions (`query_raw`, `execute_raw`) are called as
    `fn(template, *template.values)`.
    """

    def schema(self) -> EngineSchema:
        """Describe the models, model operations and top-level functions."""

    def model(self, key: str) -> ModelAccessor:
        """Return the accessor of a model, raising KeyError if unknown."""

    async def transaction(
        self,
        body: Callable[["DataAccessEngine"], Awaitable[T]],
        options: Mapping[str, Any] | None = None,
    ) -> T:
        """
        Run `body` inside one interactive transaction.

        The transaction commits when `body` returns and rolls back when it
        raises; the exception is then propagated to the caller.
        """
