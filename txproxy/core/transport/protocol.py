import asyncio
import logging

from txproxy.core.models.config import ServerConfig
from txproxy.core.models.message import Message
from txproxy.core.models.state import ServerState
from txproxy.core.ports.serializer import Serializer
from txproxy.core.transport.addr import get_remote_addr
from txproxy.core.transport.stream import FRAME_HEADER, Streamer


class Protocol(asyncio.Protocol):
    """
    One client connection of the proxy.

    Incoming bytes are buffered and cut into frames (see FRAME_HEADER).
    Every complete frame is decoded into a Message and fed to the Streamer
    that runs the application for this connection. A frame that cannot be
    decoded is fed as a `ko` message, so the client gets an answer instead
    of a dropped connection.

    The connection is closed when it would exceed `limit_concurrency`,
    when the buffer grows past `max_buffer_size`, or when a frame header
    announces more than `max_message_size` bytes.
    """
    def __init__(
        self,
        config: ServerConfig,
        server_state: ServerState,
        serializer: Serializer,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._config = config
        self._state = server_state
        self._serializer = serializer
        self._loop = loop

        self._transport: asyncio.Transport | None = None
        self._streamer: Streamer | None = None
        self._buffer = bytearray()
        self._peer = ""
        self._logger = logging.getLogger("core.transport.protocol")

    def connection_made(self, transport: asyncio.Transport) -> None:  # type: ignore[override]
        self._transport = transport
        addr = get_remote_addr(transport)
        self._peer = "%s:%d" % addr if addr else ""

        if len(self._state.connections) >= self._config.limit_concurrency:
            self._logger.warning(f"{self._peer} - Too many connections, rejecting")
            transport.close()
            return

        self._state.connections.add(self)
        self._streamer = Streamer(transport, self._serializer)

        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._streamer.run_app(self._config.app))
        task.add_done_callback(self._state.tasks.discard)
        self._state.tasks.add(task)

        self._logger.debug(f"{self._peer} - Connection made")

    def connection_lost(self, exc: Exception | None) -> None:
        self._state.connections.discard(self)
        self._logger.debug(f"{self._peer} - Connection lost")

        if self._streamer is not None:
            self._streamer.finish()

    def data_received(self, data: bytes) -> None:
        if self._streamer is None:
            return

        self._buffer.extend(data)
        if len(self._buffer) > self._config.max_buffer_size:
            self._close("buffer overflow")
            return

        header = FRAME_HEADER.size
        while len(self._buffer) >= header:
            (length,) = FRAME_HEADER.unpack_from(self._buffer)
            if length > self._config.max_message_size:
                self._close(f"frame of {length} bytes is too large")
                return

            end = header + length
            if len(self._buffer) < end:
                return

            frame = bytes(self._buffer[header:end])
            del self._buffer[:end]
            self._streamer.feed(self._decode_message(frame))

    def pause_writing(self) -> None:
        if self._streamer is not None:
            self._streamer.pause_writing()

    def resume_writing(self) -> None:
        if self._streamer is not None:
            self._streamer.resume_writing()

    def shutdown(self) -> None:
        if self._transport is not None:
            self._transport.close()

    def _close(self, reason: str) -> None:
        self._logger.warning(f"{self._peer} - Closing connection: {reason}")
        self._buffer.clear()
        self._transport.close()

    def _decode_message(self, frame: bytes) -> Message:
        try:
            return Message(**self._serializer.deserialize(frame))
        except Exception as exc:
            self._logger.warning(f"{self._peer} - Invalid frame format: {exc}")
            return Message(type="ko", data={"message": "Invalid frame format"})
