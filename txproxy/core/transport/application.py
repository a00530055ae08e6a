from typing import Protocol

from txproxy.core.models.message import ReceiveMessage, SendMessage


class Application(Protocol):
    """
    Per-connection handler executed by the Streamer.

    An Application is an asynchronous callable that receives two functions:
    `receive`, which waits for and returns the next incoming request (or None
    once the peer has gone), and `send`, which transmits a reply to the peer.

    The Application runs until it returns or raises an exception. When it
    exits, the underlying connection is closed by the Streamer. Framing and
    serialization belong to the Protocol and the Streamer.
    """
    async def __call__(self, receive: ReceiveMessage, send: SendMessage) -> None:
        ...
