import os
from typing import Generator

import pytest
import yaml

from tests.fake.fake_engine import FakeEngine
from tests.fake.fake_transport import FakeTransport, FakeSerializer
from tests.helpers import FakeProxyConfig
from tests.utils import generate_cert_pair, write_pem

from txproxy.bootstrap.config.settings import TLSSettings


@pytest.fixture
def serializer():
    return FakeSerializer()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("TXPROXY"):
            monkeypatch.delenv(key)


@pytest.fixture(scope="session")
def tls_settings(tmp_path_factory) -> tuple[TLSSettings, TLSSettings]:
    ca_cert, server_key, server_cert, client_key, client_cert = generate_cert_pair()
    base = tmp_path_factory.mktemp("tls")

    write_pem(ca_cert, base / "ca.pem")
    write_pem(server_cert, base / "server.pem")
    write_pem(server_key, base / "server.key")
    write_pem(client_cert, base / "client.pem")
    write_pem(client_key, base / "client.key")

    server_tls = TLSSettings(
        certfile=base / "server.pem",
        keyfile=base / "server.key",
        cafile=base / "ca.pem"
    )
    client_tls = TLSSettings(
        certfile=base / "client.pem",
        keyfile=base / "client.key",
        cafile=base / "ca.pem"
    )

    return server_tls, client_tls


@pytest.fixture
def config_file(tmp_path, tls_settings):
    server_tls, _ = tls_settings
    file = tmp_path / "txproxy.yaml"

    data = {
        "engine": "tests.fake.fake_engine:make_engine",
        "server": {
            "host": "127.0.0.1",
            "port": 0,
            "tls": {
                "certfile": str(server_tls.certfile),
                "keyfile": str(server_tls.keyfile),
                "cafile": str(server_tls.cafile),
            },
            "backlog": 10,
            "timeout_graceful_shutdown": 1,
            "limit_concurrency": 10,
        },
        "transaction": {
            "max_wait": 2.0,
            "timeout": 5.0,
        },
        "errors": {
            "expected_codes": ["P2002"],
        },
    }

    file.write_text(yaml.dump(data))
    return file


@pytest.fixture
def proxy_config(config_file, monkeypatch) -> Generator[FakeProxyConfig, None, None]:
    monkeypatch.setenv("TEST_TXPROXYCONFIG", str(config_file))
    yield FakeProxyConfig()
