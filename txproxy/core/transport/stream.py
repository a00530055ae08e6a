import asyncio
import logging
import struct

from txproxy.core.models.message import Message
from txproxy.core.ports.serializer import Serializer
from txproxy.core.transport.application import Application


# 4-byte big-endian length prefix in front of every frame
FRAME_HEADER = struct.Struct("!I")


class Streamer:
    """
    Carries the messages of one proxy connection between the Protocol and
    the application.

    The Protocol feeds decoded requests with `feed()` and marks the end of
    the connection with `finish()`. The application pulls them with
    `receive()`, which returns None once the connection is gone, and
    answers through `send()`.

    Replies are written as length-prefixed frames. While the transport
    buffer is above its high-water mark (`pause_writing()`), `send()`
    waits for `resume_writing()`. Replies for a connection that is already
    closing are dropped: the client that asked for them is gone.
    """
    def __init__(self, transport: asyncio.Transport, serializer: Serializer) -> None:
        self._transport = transport
        self._serializer = serializer
        self._inbox: asyncio.Queue[Message | None] = asyncio.Queue()
        self._writable = asyncio.Event()
        self._writable.set()
        self._logger = logging.getLogger("core.transport.stream")

    @property
    def write_paused(self) -> bool:
        return not self._writable.is_set()

    def pause_writing(self) -> None:
        self._writable.clear()

    def resume_writing(self) -> None:
        self._writable.set()

    def feed(self, message: Message) -> None:
        self._inbox.put_nowait(message)

    def finish(self) -> None:
        self._writable.set()
        self._inbox.put_nowait(None)

    async def receive(self) -> Message | None:
        return await self._inbox.get()

    async def send(self, message: Message) -> None:
        await self._writable.wait()

        if self._transport.is_closing():
            self._logger.warning(f"Connection closed, dropping reply {message.request_id}")
            return

        try:
            payload = self._serializer.serialize(message.to_dict())
        except Exception as exc:
            self._logger.error(f"Cannot serialize reply {message.request_id}: {exc}")
            self._transport.close()
            return

        self._transport.write(FRAME_HEADER.pack(len(payload)) + payload)

    async def run_app(self, app: Application) -> None:
        try:
            await app(self.receive, self.send)
        except BaseException as exc:
            self._logger.error("Exception in Application", exc_info=exc)
        finally:
            self._transport.close()
