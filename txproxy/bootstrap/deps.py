import importlib
import inspect
import json
from functools import lru_cache

from pydantic import ValidationError

from txproxy.bootstrap.config.settings import ProxyConfig
from txproxy.core.controlplane import ControlPlane
from txproxy.core.models.config import ServerConfig
from txproxy.core.ports.engine import DataAccessEngine
from txproxy.core.routing.app import RoutedApplication
from txproxy.core.server.endpoint import ProxyEndpoint, error_reply
from txproxy.infra.msgpack_serializer import MsgPackSerializer


@lru_cache
def get_cp() -> ControlPlane:
    config = get_config()
    server = config.server

    server_config = ServerConfig(
        app=get_api_app(),
        host=server.host,
        port=server.port,
        backlog=server.backlog,
        ssl_ctx=config.get_server_ssl_ctx(),
        limit_concurrency=server.limit_concurrency,
        max_buffer_size=server.max_buffer_size,
        max_message_size=server.max_message_size,
        timeout_graceful_shutdown=server.timeout_graceful_shutdown,
    )

    return ControlPlane(
        server_config=server_config,
        engine=load_engine(config.engine),
        serializer=MsgPackSerializer(),
        default_options=config.transaction.to_options(),
        expected_error_codes=frozenset(config.errors.expected_codes),
        expected_error_names=frozenset(config.errors.expected_names),
    )


@lru_cache
def get_endpoint() -> ProxyEndpoint:
    return get_cp().endpoint


@lru_cache
def get_api_app() -> RoutedApplication:
    app = RoutedApplication(error_reply=error_reply)
    return app


@lru_cache
def get_config() -> ProxyConfig:
    try:
        return ProxyConfig()  # type: ignore[call-arg]
    except FileNotFoundError as ex:
        raise SystemExit(f"Provide a correct configuration file path: {ex}")
    except ValidationError as ex:
        msg = ["Configuration validation failed:"]
        errs = json.loads(ex.json())
        for err in errs:
            msg.append(f"  {'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}")
        raise SystemExit("\n".join(msg))


def load_engine(path: str) -> DataAccessEngine:
    """
    Import the engine named by 'package.module:attribute'. A callable
    attribute is treated as a factory and called without arguments.
    """
    module_name, _, attribute = path.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as ex:
        raise SystemExit(f"Cannot import engine module '{module_name}': {ex}")

    target = module
    for name in attribute.split("."):
        try:
            target = getattr(target, name)
        except AttributeError:
            raise SystemExit(f"Engine '{path}' not found in module '{module_name}'")

    if inspect.isclass(target) or inspect.isfunction(target):
        target = target()
    return target
