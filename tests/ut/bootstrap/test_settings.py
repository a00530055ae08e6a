import pytest
from pydantic import ValidationError

from txproxy.bootstrap.config.settings import ClientSettings, TLSSettings
from txproxy.bootstrap.deps import load_engine
from tests.fake.fake_engine import FakeEngine
from tests.helpers import FakeProxyConfig


@pytest.mark.ut
def test_client_settings_from_environment(monkeypatch):
    monkeypatch.setenv("TXPROXY_ENDPOINT", "tcp://localhost:7411")
    monkeypatch.setenv("TXPROXY_VERBOSE", "true")
    monkeypatch.setenv("TXPROXY_MAX_RETRIES", "5")

    settings = ClientSettings()

    assert settings.endpoint == "localhost:7411"
    assert settings.verbose is True
    assert settings.max_retries == 5
    assert settings.tls is None


@pytest.mark.ut
def test_client_settings_without_endpoint():
    assert ClientSettings().endpoint is None


@pytest.mark.ut
@pytest.mark.parametrize("endpoint", ["localhost", ":7411", "localhost:port"])
def test_client_settings_rejects_bad_endpoint(endpoint):
    with pytest.raises(ValidationError):
        ClientSettings(endpoint=endpoint)


@pytest.mark.ut
def test_tls_paths_must_exist(tmp_path):
    with pytest.raises(ValidationError):
        TLSSettings(cafile=tmp_path / "missing.pem")


@pytest.mark.ut
def test_tls_contexts(tls_settings):
    server_tls, client_tls = tls_settings

    assert server_tls.server_context() is not None
    assert client_tls.client_context() is not None
    with pytest.raises(ValueError):
        TLSSettings(cafile=server_tls.cafile).server_context()


@pytest.mark.ut
def test_proxy_config_from_yaml(proxy_config):
    assert proxy_config.engine == "tests.fake.fake_engine:make_engine"
    assert proxy_config.server.port == 0
    assert proxy_config.server.limit_concurrency == 10
    assert proxy_config.server.max_message_size == 1024 * 1024
    assert proxy_config.transaction.to_options() == {"max_wait": 2.0, "timeout": 5.0}
    assert proxy_config.errors.expected_codes == ["P2002"]
    assert proxy_config.errors.expected_names == ["UnknownRequestError"]
    assert proxy_config.get_server_ssl_ctx() is not None


@pytest.mark.ut
def test_environment_overrides_yaml(proxy_config, monkeypatch):
    monkeypatch.setenv("TXPROXY_SERVER__PORT", "9000")

    assert FakeProxyConfig().server.port == 9000


@pytest.mark.ut
def test_proxy_config_rejects_bad_engine_path(config_file, monkeypatch):
    monkeypatch.setenv("TEST_TXPROXYCONFIG", str(config_file))
    monkeypatch.setenv("TXPROXY_ENGINE", "tests.fake.fake_engine")

    with pytest.raises(ValidationError):
        FakeProxyConfig()


@pytest.mark.ut
@pytest.mark.parametrize("path", [
    "tests.fake.fake_engine:make_engine",
    "tests.fake.fake_engine:FakeEngine",
    "tests.fake.fake_engine:engine",
])
def test_load_engine(path):
    assert isinstance(load_engine(path), FakeEngine)


@pytest.mark.ut
@pytest.mark.parametrize("path", [
    "tests.fake.missing_module:engine",
    "tests.fake.fake_engine:missing",
])
def test_load_engine_errors(path):
    with pytest.raises(SystemExit):
        load_engine(path)
