import ssl
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from txproxy.bootstrap.config.loader import get_configfile
from txproxy.core.server.endpoint import DEFAULT_EXPECTED_CODES, DEFAULT_EXPECTED_NAMES


class TLSSettings(BaseModel):
    cafile: Annotated[
        Path,
        Field(
            description=(
                "Path to the CA certificate (PEM).\n"
                "Clients use it to verify the proxy certificate; the proxy uses it "
                "to verify client certificates when they are required."
            )
        )
    ]

    certfile: Annotated[
        Path | None,
        Field(
            description="Path to the local TLS certificate (PEM).",
            default=None
        )
    ]

    keyfile: Annotated[
        Path | None,
        Field(
            description="Path to the local TLS private key (PEM).",
            default=None
        )
    ]

    @field_validator("certfile", "keyfile", "cafile")
    @classmethod
    def validate_path(cls, v: Path | None) -> Path | None:
        if v is not None and not v.exists():
            raise ValueError(f"Path {v} does not exist.")
        return v

    def server_context(self) -> ssl.SSLContext:
        if self.certfile is None or self.keyfile is None:
            raise ValueError("The proxy needs both certfile and keyfile to serve TLS.")

        ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        ctx.load_cert_chain(certfile=self.certfile, keyfile=self.keyfile)
        ctx.verify_mode = ssl.CERT_REQUIRED
        ctx.load_verify_locations(cafile=self.cafile)
        return ctx

    def client_context(self) -> ssl.SSLContext:
        ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=self.cafile)
        if self.certfile is not None and self.keyfile is not None:
            ctx.load_cert_chain(certfile=self.certfile, keyfile=self.keyfile)
        return ctx


class ClientSettings(BaseSettings):
    """
    Settings of the client interceptor, read from `TXPROXY_*` environment
    variables (nested fields use `__`, e.g. `TXPROXY_TLS__CAFILE`).
    """
    model_config = SettingsConfigDict(
        env_prefix="TXPROXY_",
        env_nested_delimiter="__",
        extra="ignore"
    )

    endpoint: Annotated[
        str | None,
        Field(
            description=(
                "Address of the transaction proxy, as host:port.\n"
                "Required: the first remote call fails without it."
            ),
            default=None
        )
    ]

    verbose: Annotated[
        bool,
        Field(
            description="Trace every envelope sent and every reply received.",
            default=False
        )
    ]

    max_retries: Annotated[
        int,
        Field(
            description="Connection attempts before a call fails with a transport error.",
            default=3,
            ge=1
        )
    ]

    tls: Annotated[
        TLSSettings | None,
        Field(
            description="TLS settings, when the proxy listens with TLS.",
            default=None
        )
    ]

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.removeprefix("tcp://")
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"Endpoint '{v}' must be of the form host:port.")
        return v


class ServerSettings(BaseModel):
    host: Annotated[
        str,
        Field(
            description="Bind address of the proxy.",
            default="127.0.0.1"
        )
    ]

    port: Annotated[
        int,
        Field(
            description="TCP port of the proxy.",
            default=7411
        )
    ]

    tls: Annotated[
        TLSSettings | None,
        Field(
            description="TLS configuration. Plain TCP when omitted.",
            default=None
        )
    ]

    backlog: Annotated[
        int,
        Field(
            description="Maximum number of pending TCP connections.",
            default=128
        )
    ]

    timeout_graceful_shutdown: Annotated[
        float,
        Field(
            description="Maximum time allowed for graceful shutdown.",
            default=5.0
        )
    ]

    limit_concurrency: Annotated[
        int,
        Field(
            description="Maximum number of concurrent client connections.",
            default=1024
        )
    ]

    max_buffer_size: Annotated[
        int,
        Field(
            description="Maximum allowed buffer size for incoming data.",
            default=4 * 1024 * 1024
        )
    ]

    max_message_size: Annotated[
        int,
        Field(
            description="Maximum allowed size for a single frame.",
            default=1 * 1024 * 1024
        )
    ]


class TransactionSettings(BaseModel):
    max_wait: Annotated[
        float | None,
        Field(
            description=(
                "Default maximum time (seconds) the engine may wait to start a "
                "transaction. Forwarded to the engine as is."
            ),
            default=None
        )
    ]

    timeout: Annotated[
        float | None,
        Field(
            description=(
                "Default maximum lifetime (seconds) of an interactive transaction. "
                "Forwarded to the engine as is; it also bounds how long a transaction "
                "abandoned by a crashed client stays open."
            ),
            default=None
        )
    ]

    isolation_level: Annotated[
        str | None,
        Field(
            description="Default isolation level, forwarded to the engine as is.",
            default=None
        )
    ]

    def to_options(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ErrorPolicySettings(BaseModel):
    expected_codes: Annotated[
        list[str],
        Field(
            description=(
                "Engine error codes that are part of normal operation "
                "(unique constraints, transaction start timeouts). They are "
                "logged as warnings instead of errors, and still returned."
            ),
            default_factory=lambda: sorted(DEFAULT_EXPECTED_CODES)
        )
    ]

    expected_names: Annotated[
        list[str],
        Field(
            description="Engine error class names handled like expected codes.",
            default_factory=lambda: sorted(DEFAULT_EXPECTED_NAMES)
        )
    ]


class ProxyConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TXPROXY_",
        env_nested_delimiter="__",
        extra="allow"
    )

    engine: Annotated[
        str,
        Field(
            description=(
                "Import path of the data-access engine, as 'package.module:attribute'.\n"
                "The attribute is either the engine itself or a zero-argument "
                "callable returning it."
            )
        )
    ]

    server: Annotated[
        ServerSettings,
        Field(
            description="Listener configuration of the proxy.",
            default_factory=ServerSettings
        )
    ]

    transaction: Annotated[
        TransactionSettings,
        Field(
            description="Default options of the interactive transactions opened by the proxy.",
            default_factory=TransactionSettings
        )
    ]

    errors: Annotated[
        ErrorPolicySettings,
        Field(
            description="Logging policy of the errors raised by the engine.",
            default_factory=ErrorPolicySettings
        )
    ]

    verbose: Annotated[
        bool,
        Field(
            description="Trace every envelope and transaction state change.",
            default=False
        )
    ]

    @field_validator("engine")
    @classmethod
    def validate_engine(cls, v: str) -> str:
        module, sep, attribute = v.partition(":")
        if not sep or not module or not attribute:
            raise ValueError(f"Engine '{v}' must be of the form 'package.module:attribute'.")
        return v

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
            YamlConfigSettingsSource(settings_cls, yaml_file=get_configfile()),
        )

    def get_server_ssl_ctx(self) -> ssl.SSLContext | None:
        if self.server.tls is None:
            return None
        return self.server.tls.server_context()
