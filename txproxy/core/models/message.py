from dataclasses import dataclass, asdict, field
from typing import Any, Callable, Awaitable


@dataclass
class Message:
    """
    Internal representation of a frame exchanged with the proxy.
    The transport layer encodes/decodes messages via the Serializer,
    while the client and the proxy manipulate them in this native form.
    """
    type: str
    """
    type of message: "operation" for requests, "result" or "ko" for replies
    """

    data: dict[Any, Any] = field(default_factory=dict)
    """
    A dictionary of serializable data. Replies echo the `request_id`
    of the request they answer.
    """

    @property
    def request_id(self) -> str | None:
        return self.data.get("request_id")

    def to_dict(self) -> dict[str, Any]:
        """Return a plain dictionary representation of the message."""
        return asdict(self)


ReceiveMessage = Callable[[], Awaitable[Message]]
"""
Coroutine provided to the application for receiving a message.
It suspends until a message is available.
"""


SendMessage = Callable[[Message], Awaitable[None]]
"""
Coroutine provided to the application for sending a message to the client.
"""
