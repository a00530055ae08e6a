import asyncio
import logging
import ssl
import struct
import uuid

from txproxy.core.errors import TransportError
from txproxy.core.helpers.spawn import TaskSpawner
from txproxy.core.models.message import Message
from txproxy.core.ports.channel import Channel
from txproxy.core.ports.serializer import Serializer
from txproxy.core.throttling.backoff import ExponentialBackoff


class ProxyConnection(Channel):
    """
    TCP channel from the client interceptor to the transaction proxy.

    The connection is opened lazily on the first request and reused for
    the following ones; any number of tasks may have a request in flight
    at the same time. Each request gets a fresh `request_id`, and the
    background receive loop hands every reply to the request waiting for
    that id.

    Outgoing messages are framed using a 4-byte big-endian length prefix
    followed by the serialized payload.

    Connecting retries with a bounded exponential backoff. When the proxy
    stays unreachable, or when the connection drops while requests are
    waiting, those requests fail with TransportError. The next request
    reconnects, unless the connection has been closed for good.
    """
    def __init__(
        self,
        address: str,
        serializer: Serializer,
        spawner: TaskSpawner | None = None,
        ssl_context: ssl.SSLContext | None = None,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self._address = address
        self._serializer = serializer
        self._spawner = spawner or TaskSpawner()
        self._ssl_context = ssl_context
        self._backoff = backoff or ExponentialBackoff(initial=0.1, maximum=2.0, jitter=0.1)

        self._reader: asyncio.StreamReader = None  # type: ignore[assignment]
        self._writer: asyncio.StreamWriter = None  # type: ignore[assignment]
        self._receive_task: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future[Message]] = {}
        self._lock = asyncio.Lock()

        self.connected = False
        self._stopped = False

        self._logger = logging.getLogger("core.connections.client")

    @property
    def address(self) -> str:
        return self._address

    async def close(self) -> None:
        """
        Permanently shut down the connection. Requests still waiting for a
        reply fail with TransportError. Safe to call multiple times.
        """
        self._stopped = True

        if self._receive_task:
            self._receive_task.cancel()

        await self._disconnect()
        self._fail_pending("connection closed")
        self._receive_task = None

    async def connect(self) -> None:
        """
        Establish the TCP connection to the proxy, retrying with
        the backoff policy until it runs out of attempts.
        """
        async with self._lock:
            if self.connected or self._stopped:
                return

            host, port = self._address.rsplit(":", 1)
            last_error: Exception | None = None
            delays = self._backoff.delays()
            while not self._stopped:
                try:
                    self._reader, self._writer = await asyncio.open_connection(
                        host=host,
                        port=int(port),
                        ssl=self._ssl_context,
                    )
                    self.connected = True
                    self._receive_task = self._spawner.spawn(self.recv())
                    return
                except (OSError, asyncio.TimeoutError) as ex:
                    last_error = ex
                    delay = next(delays, None)
                    if delay is None:
                        break
                    self._logger.warning(
                        f"Connect failed to {self._address}: {ex}. "
                        f"Retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

            raise TransportError(f"connect() error was: {last_error}", self._address)

    async def recv(self) -> None:
        """
        Read reply frames until the connection is closed and resolve the
        request waiting for each reply.
        """
        try:
            while self.connected and not self._stopped:
                header = await self._reader.readexactly(4)
                length = struct.unpack("!I", header)[0]
                payload = await self._reader.readexactly(length)
                data = self._serializer.deserialize(payload)
                if not data:
                    break

                self._handle_message(Message(**data))
        except asyncio.IncompleteReadError:
            self._logger.info(f"Proxy {self._address} disconnected")
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            self._logger.error(
                f"Error received for {self._address}: {ex}", exc_info=ex
            )
        finally:
            await self._disconnect()
            self._fail_pending("connection lost before the reply arrived")

    async def request(self, message: Message) -> Message:
        if self._stopped:
            raise TransportError("connection already closed", self._address)

        if not self.connected:
            await self.connect()

        request_id = str(uuid.uuid4())
        message = Message(type=message.type, data={**message.data, "request_id": request_id})
        waiter: asyncio.Future[Message] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = waiter

        try:
            payload = self._serializer.serialize(message.to_dict())
            self._writer.write(struct.pack("!I", len(payload)) + payload)
            await self._writer.drain()
            return await waiter
        except (ConnectionError, OSError) as ex:
            self.connected = False
            self._logger.error(f"Connection reset by {self._address}: {ex}")
            raise TransportError(f"send() error was: {ex}", self._address) from ex
        finally:
            self._pending.pop(request_id, None)

    async def _disconnect(self) -> None:
        self.connected = False
        if self._writer:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):  # noqa
                pass
            self._writer = None
            self._reader = None

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for waiter in pending.values():
            if not waiter.done():
                waiter.set_exception(TransportError(reason, self._address))

    def _handle_message(self, message: Message) -> None:
        waiter = self._pending.get(message.request_id)
        if waiter is None or waiter.done():
            self._logger.warning(f"Dropping reply for unknown request {message.request_id}")
            return
        waiter.set_result(message)
