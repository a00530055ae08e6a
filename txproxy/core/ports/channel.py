from typing import Protocol

from txproxy.core.models.message import Message


class Channel(Protocol):
    """
    Stateless request/response path between the client interceptor and
    the proxy.

    Every call is independent: the proxy cannot rely on the connection or
    on any client-side call stack to relate two requests. Implementations
    raise TransportError when no reply can be obtained.
    """

    async def request(self, message: Message) -> Message:
        """Send one request and wait for the reply carrying its request_id."""

    async def close(self) -> None:
        """Release the underlying resources."""
