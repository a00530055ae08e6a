import logging
from typing import Any, Iterable, Mapping

from txproxy.core.codec import StructuredCodec
from txproxy.core.errors import EncodeError, RemoteError
from txproxy.core.helpers.utils import TransactionLogAdapter
from txproxy.core.models.envelope import OperationEnvelope
from txproxy.core.models.message import Message
from txproxy.core.server.multiplexer import TransactionMultiplexer


DEFAULT_EXPECTED_CODES = frozenset({"P2002", "P2003", "P2004", "P2028"})
"""Unique-constraint violations and transaction start/timeout failures."""

DEFAULT_EXPECTED_NAMES = frozenset({"UnknownRequestError"})


def error_reply(exc: BaseException, request_id: str | None = None) -> Message:
    """Build the `ko` reply carrying an encoded error."""
    try:
        error = StructuredCodec.encode(exc)
    except EncodeError:
        # meta held something the codec cannot carry, keep the shape only
        error = StructuredCodec.encode(RemoteError(type(exc).__name__, str(exc)))

    return Message(
        type="ko",
        data={"request_id": request_id, "error": error, "message": str(exc)},
    )


class ProxyEndpoint:
    """
    Boundary between the wire and the multiplexer.

    Decodes the envelope of an `operation` request, dispatches it and
    encodes the result into a `result` reply.

    Engine errors known to be part of normal operation (unique-constraint
    violations, transaction start timeouts, unknown requests) are logged as
    warnings and answered with a `ko` reply. Any other error is re-raised
    so the routing application logs it with its traceback before answering
    `ko` in turn.
    """

    def __init__(
        self,
        multiplexer: TransactionMultiplexer,
        expected_error_codes: Iterable[str] = DEFAULT_EXPECTED_CODES,
        expected_error_names: Iterable[str] = DEFAULT_EXPECTED_NAMES,
    ) -> None:
        self._multiplexer = multiplexer
        self._expected_codes = frozenset(expected_error_codes)
        self._expected_names = frozenset(expected_error_names)
        self._logger = logging.getLogger("core.server.endpoint")

    async def handle(self, data: Mapping[str, Any]) -> Message:
        request_id = data.get("request_id")
        log = TransactionLogAdapter(
            self._logger,
            data.get("transaction_id"),
            data.get("parent_transaction_id"),
        )

        try:
            envelope = OperationEnvelope.from_dict(data)
            result = await self._multiplexer.dispatch(envelope)
            payload = StructuredCodec.encode(result)
        except Exception as exc:
            if self.is_expected(exc):
                code = getattr(exc, "code", None)
                self._logger.warning(
                    f"Engine error {code or type(exc).__name__}: {exc}"
                )
                return error_reply(exc, request_id)

            log.debug(f"proxy error: {exc!r}")
            raise

        log.debug(f"proxy done: {data.get('model') or ''}.{data.get('operation')}")
        return Message(
            type="result",
            data={"request_id": request_id, "payload": payload},
        )

    def is_expected(self, exc: BaseException) -> bool:
        code = getattr(exc, "code", None)
        if code is not None and str(code) in self._expected_codes:
            return True

        name = exc.name if isinstance(exc, RemoteError) else type(exc).__name__
        return name in self._expected_names
