import asyncio
import dataclasses
import functools
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generator, Iterable, Protocol, Sequence

from txproxy.core.client.context import current_transaction, transaction_scope
from txproxy.core.codec import StructuredCodec
from txproxy.core.errors import DecodeError, RemoteError, TransportError
from txproxy.core.helpers.utils import TransactionLogAdapter
from txproxy.core.models.envelope import (
    ControlOperation,
    OperationEnvelope,
    SqlTemplate,
    TransactionContext,
)
from txproxy.core.models.message import Message
from txproxy.core.ports.channel import Channel


@dataclass(frozen=True)
class OperationCall:
    """A data-access call as seen by extensions, before it is sent."""
    operation: str

    args: Any = None

    model: str | None = None

    def replace(self, **changes: Any) -> "OperationCall":
        return dataclasses.replace(self, **changes)

    @property
    def target(self) -> str:
        return f"{self.model}.{self.operation}" if self.model else self.operation


Proceed = Callable[[OperationCall], Awaitable[Any]]


class Extension(Protocol):
    """
    Call-modifying layer installed by the host application (auditing,
    row-level security, argument rewriting...).

    An extension receives the call and `proceed`, the rest of the chain.
    It may alter the call, call `proceed` any number of times, or open a
    transaction through the client. The remote send is always the last
    link of the chain, after every extension.
    """

    async def __call__(self, call: OperationCall, proceed: Proceed) -> Any:
        ...


class RemoteOperation:
    """
    Awaitable handle on one data-access call.

    Nothing is sent when the handle is created. Every `await` (and every
    `request()`) runs the extension chain and issues a new remote call, so
    a handle awaited twice performs the call twice. Each logical operation
    is expected to be consumed through a single path: awaited directly,
    awaited by a batch transaction, or scheduled with `request()`.
    """

    def __init__(self, client: "RemoteClient", call: OperationCall) -> None:
        self._client = client
        self.call = call

    def __await__(self) -> Generator[Any, None, Any]:
        return self._client.perform(self.call).__await__()

    def request(self) -> asyncio.Task:
        """Send the call right away and return the task waiting for its result."""
        return asyncio.ensure_future(self._client.perform(self.call))

    def __repr__(self) -> str:
        return f"RemoteOperation({self.call.target})"


class ModelProxy:
    """`client.user.find_many({...})` -> RemoteOperation targeting user.find_many."""

    def __init__(self, client: "RemoteClient", name: str) -> None:
        self._client = client
        self.name = name

    def __getattr__(self, operation: str) -> Callable[..., RemoteOperation]:
        if operation.startswith("_"):
            raise AttributeError(operation)
        return functools.partial(self.call, operation)

    def call(self, operation: str, args: Any = None) -> RemoteOperation:
        return RemoteOperation(
            self._client, OperationCall(operation=operation, args=args, model=self.name)
        )

    def __repr__(self) -> str:
        return f"ModelProxy({self.name})"


class RemoteClient:
    """
    Data-access client whose calls all run in the transaction proxy.

    Model operations are reached by attribute (`client.user.create(...)`)
    or through `client.model("user")` when the model name collides with a
    client method. Raw queries and other top-level functions go through
    `query_raw`, `execute_raw` and `call`.

    `transaction(body)` opens an interactive transaction: the proxy keeps
    a native transaction open while `body` runs, and every call made
    during `body` (in any task it starts) is routed into it without
    passing anything around. Transactions opened inside `body` are
    nested in it. `transaction([op, ...])` runs a batch: the operations
    are awaited in order and their results returned as a list.
    """

    def __init__(
        self,
        channel: Channel | None = None,
        channel_factory: Callable[[], Channel] | None = None,
        extensions: Sequence[Extension] = (),
    ) -> None:
        if channel is None and channel_factory is None:
            raise ValueError("RemoteClient needs a channel or a channel factory")

        self._channel = channel
        self._channel_factory = channel_factory
        self._extensions = tuple(extensions)
        self._logger = logging.getLogger("core.client.interceptor")

        chain: Proceed = self._send_operation
        for extension in reversed(self._extensions):
            chain = functools.partial(extension, proceed=chain)
        self._chain = chain

    def __getattr__(self, name: str) -> ModelProxy:
        if name.startswith("_"):
            raise AttributeError(name)
        return ModelProxy(self, name)

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def model(self, name: str) -> ModelProxy:
        return ModelProxy(self, name)

    def query_raw(self, template: SqlTemplate | str) -> RemoteOperation:
        return self._raw("query_raw", template)

    def execute_raw(self, template: SqlTemplate | str) -> RemoteOperation:
        return self._raw("execute_raw", template)

    def call(self, operation: str, *args: Any) -> RemoteOperation:
        return RemoteOperation(self, OperationCall(operation=operation, args=list(args)))

    async def transaction(
        self,
        body: Callable[["RemoteClient"], Awaitable[Any]] | Iterable[Awaitable[Any]],
        **options: Any,
    ) -> Any:
        if callable(body):
            return await self._interactive(body, options)

        results = []
        for operation in body:
            results.append(await operation)
        return results

    async def perform(self, call: OperationCall) -> Any:
        """Run a call through the extensions, then send it."""
        return await self._chain(call)

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.close()

    async def _interactive(
        self, body: Callable[["RemoteClient"], Awaitable[Any]], options: dict[str, Any]
    ) -> Any:
        parent = current_transaction()
        context = TransactionContext(
            transaction_id=str(uuid.uuid4()),
            parent_transaction_id=parent.transaction_id if parent else None,
            options=options or None,
        )
        log = TransactionLogAdapter(
            self._logger, context.transaction_id, context.parent_transaction_id
        )
        log.debug("interactive transaction")

        with transaction_scope(context):
            try:
                await self._send(
                    OperationEnvelope.control(ControlOperation.START, context, with_options=True)
                )
                result = await body(self)
            except BaseException as exc:
                log.debug(f"transaction failed: {exc!r}, sending $cleanup")
                await self._cleanup(context, log)
                raise

            await self._send(OperationEnvelope.control(ControlOperation.COMMIT, context))
            return result

    async def _cleanup(self, context: TransactionContext, log: logging.LoggerAdapter) -> None:
        try:
            await self._send(OperationEnvelope.control(ControlOperation.CLEANUP, context))
        except Exception as exc:
            log.warning(f"$cleanup failed: {exc}")

    def _raw(self, operation: str, template: SqlTemplate | str) -> RemoteOperation:
        if isinstance(template, str):
            template = SqlTemplate.of(template)
        return RemoteOperation(
            self, OperationCall(operation=operation, args=template.to_args())
        )

    async def _send_operation(self, call: OperationCall) -> Any:
        context = current_transaction()
        envelope = OperationEnvelope(
            operation=call.operation,
            args=call.args,
            model=call.model,
            transaction_id=context.transaction_id if context else None,
            parent_transaction_id=context.parent_transaction_id if context else None,
        )
        return await self._send(envelope)

    async def _send(self, envelope: OperationEnvelope) -> Any:
        log = TransactionLogAdapter(
            self._logger, envelope.transaction_id, envelope.parent_transaction_id
        )
        channel = self._get_channel()

        log.debug(f"-> {envelope.target}")
        message = Message(type="operation", data=envelope.to_dict())
        try:
            reply = await channel.request(message)
        except TransportError:
            raise
        except (ConnectionError, OSError) as ex:
            raise TransportError(f"request() error was: {ex}") from ex

        return self._unwrap(envelope, reply, log)

    def _get_channel(self) -> Channel:
        if self._channel is None:
            self._channel = self._channel_factory()
        return self._channel

    def _unwrap(
        self, envelope: OperationEnvelope, reply: Message, log: logging.LoggerAdapter
    ) -> Any:
        match reply.type:
            case "result":
                try:
                    result = StructuredCodec.decode(reply.data.get("payload"))
                except DecodeError as ex:
                    log.debug(f"undecodable reply {reply.data!r}")
                    raise DecodeError(f"proxy error ({envelope.target}): {ex}") from ex
                log.debug(f"<- {envelope.target}: {type(result).__name__}")
                return result

            case "ko":
                error = self._decode_error(envelope, reply)
                log.debug(f"<- {envelope.target}: {error!r}")
                raise error

            case _:
                raise DecodeError(
                    f"proxy error ({envelope.target}): unexpected reply type '{reply.type}'"
                )

    @staticmethod
    def _decode_error(envelope: OperationEnvelope, reply: Message) -> Exception:
        raw = reply.data.get("error")
        if raw is None:
            return RemoteError("ProxyError", str(reply.data.get("message", "unknown error")))

        try:
            error = StructuredCodec.decode(raw)
        except DecodeError:
            try:
                return StructuredCodec.recover_error(raw)
            except DecodeError as ex:
                return DecodeError(f"proxy error ({envelope.target}): {ex}")

        if isinstance(error, Exception):
            return error
        return RemoteError("ProxyError", str(error))
