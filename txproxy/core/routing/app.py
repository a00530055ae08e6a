import asyncio
import logging
import uuid
from typing import Callable

from txproxy.core.models.message import Message, ReceiveMessage, SendMessage
from txproxy.core.routing.router import Router, RouteHandler


ErrorReply = Callable[[BaseException, str | None], Message]


def default_error_reply(exc: BaseException, request_id: str | None) -> Message:
    return Message(type="ko", data={"request_id": request_id, "message": str(exc)})


class RoutedApplication:
    """
    Application implementation that dispatches incoming messages to handlers
    registered in a `Router`.

    - Each incoming message is handled in its own task, so a slow statement
      of one transaction never holds back requests of another transaction
      sharing the connection. Requests of a single transaction are ordered
      by the client, which waits for every reply before sending more.
    - A `request_id` is injected if missing and echoed in the reply so the
      client can correlate replies arriving out of order.
    - If no handler exists, a `ko` Message is returned to the client.
    - Any exception raised by a handler is logged with its traceback and
      turned into a `ko` Message by `error_reply`.

    The application terminates when `receive()` returns None, after every
    pending reply has been sent. The Streamer then closes the connection.
    """

    def __init__(self, error_reply: ErrorReply = default_error_reply) -> None:
        self.router = Router()
        self._error_reply = error_reply
        self._logger = logging.getLogger("core.routing.app")

    async def __call__(self, receive: ReceiveMessage, send: SendMessage) -> None:
        pending: set[asyncio.Task[None]] = set()
        try:
            while True:
                msg = await receive()
                if msg is None:
                    break

                task = asyncio.create_task(self.handle(msg, send))
                pending.add(task)
                task.add_done_callback(pending.discard)
        finally:
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def handle(self, msg: Message, send: SendMessage) -> None:
        data = dict(msg.data)
        request_id = data.setdefault("request_id", str(uuid.uuid4()))

        handler = self.router.resolve(msg.type)
        if handler is None:
            text = f"Unknown message type '{msg.type}'"
            await send(Message(type="ko", data={"request_id": request_id, "message": text}))
            return

        try:
            result = await handler(data)
            if result is None:
                result = Message(type="ko", data={"message": "Empty response"})
        except Exception as exc:
            self._logger.error(f"Error in handler '{msg.type}': {exc}", exc_info=exc)
            result = self._error_reply(exc, request_id)

        result.data.setdefault("request_id", request_id)
        await send(result)
        self._logger.debug(f"Sent message: {result.type} ({request_id})")

    def request(self, event_type: str) -> Callable[[RouteHandler], RouteHandler]:
        return self.router.request(event_type)
