import ssl
from dataclasses import dataclass

from txproxy.core.transport.application import Application


@dataclass
class ServerConfig:
    """
    Static configuration of the proxy MessageServer: networking, optional
    TLS, resource limits and graceful shutdown behavior.
    """
    app: Application
    """
    The application coroutine with the signature:
        async def app(receive, send)
    It receives decoded requests and sends the replies.
    """

    host: str
    """
    IP address or hostname on which the proxy listens.
    """

    port: int
    """
    TCP port to bind. If set to 0, the OS selects an available port.
    """

    backlog: int = 128
    """
    Maximum number of pending TCP connections waiting for accept().
    """

    ssl_ctx: ssl.SSLContext | None = None
    """
    TLS context used to secure incoming connections, or None for plain TCP
    (the proxy usually listens on localhost next to its clients).
    """

    limit_concurrency: int = 1024
    """
    Maximum number of concurrent active connections allowed.
    """

    max_buffer_size: int = 4 * 1024 * 1024  # 4MB
    """
    Maximum size of the per-connection receive buffer.
    Protects against malformed frames or memory exhaustion attacks.
    """

    max_message_size: int = 1 * 1024 * 1024  # 1MB
    """
    Maximum size of a single frame payload.
    """

    timeout_graceful_shutdown: float = 5.0
    """
    Maximum time (in seconds) allowed for graceful shutdown:
    - active connections must close
    - background tasks registered in ServerState.tasks must complete
    After this timeout, remaining tasks are cancelled.
    """
