import asyncio
import os

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, YamlConfigSettingsSource

from txproxy.bootstrap.config.settings import ProxyConfig
from txproxy.core.client.interceptor import RemoteClient
from txproxy.core.controlplane import ControlPlane
from txproxy.core.models.config import ServerConfig
from txproxy.core.routing.app import RoutedApplication
from txproxy.core.server.endpoint import error_reply
from txproxy.infra.msgpack_serializer import MsgPackSerializer
from tests.fake.fake_channel import LoopbackChannel


class FakeProxyConfig(ProxyConfig):
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=os.environ["TEST_TXPROXYCONFIG"]),
        )


def build_controlplane(engine, ssl_ctx=None, **kwargs) -> ControlPlane:
    """Wire a proxy around `engine` the way the bootstrap does, on the running loop."""
    app = RoutedApplication(error_reply=error_reply)
    config = ServerConfig(
        app=app,
        host="127.0.0.1",
        port=0,
        ssl_ctx=ssl_ctx,
        timeout_graceful_shutdown=1.0,
    )
    cp = ControlPlane(
        server_config=config,
        engine=engine,
        serializer=MsgPackSerializer(),
        loop=asyncio.get_running_loop(),
        **kwargs,
    )
    app.request("operation")(cp.endpoint.handle)
    return cp


def loopback_client(engine, extensions=(), **kwargs) -> tuple[RemoteClient, LoopbackChannel, ControlPlane]:
    cp = build_controlplane(engine, **kwargs)
    channel = LoopbackChannel(cp.app)
    return RemoteClient(channel=channel, extensions=extensions), channel, cp
