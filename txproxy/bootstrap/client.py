from typing import Sequence

from txproxy.bootstrap.config.settings import ClientSettings
from txproxy.core.client.interceptor import Extension, RemoteClient
from txproxy.core.connections.client import ProxyConnection
from txproxy.core.errors import ConfigurationError
from txproxy.core.helpers.utils import set_verbose
from txproxy.core.throttling.backoff import ExponentialBackoff
from txproxy.infra.msgpack_serializer import MsgPackSerializer


def create_client(
    settings: ClientSettings | None = None,
    extensions: Sequence[Extension] = (),
) -> RemoteClient:
    """
    Build a RemoteClient talking to the proxy named in the settings
    (`TXPROXY_ENDPOINT` by default).

    Nothing is opened here: the connection is created by the first remote
    call, which fails with ConfigurationError when no endpoint is set.
    """
    settings = settings or ClientSettings()
    set_verbose(settings.verbose)

    def connect() -> ProxyConnection:
        if settings.endpoint is None:
            raise ConfigurationError(
                "No transaction proxy endpoint configured, set TXPROXY_ENDPOINT "
                "to the host:port of the proxy."
            )
        return ProxyConnection(
            address=settings.endpoint,
            serializer=MsgPackSerializer(),
            ssl_context=settings.tls.client_context() if settings.tls else None,
            backoff=ExponentialBackoff(
                initial=0.1, maximum=2.0, jitter=0.1, attempts=settings.max_retries
            ),
        )

    return RemoteClient(channel_factory=connect, extensions=extensions)
