# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the document service.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/tempdrive/tempdrive.yaml``
    (typically ``~/.config/tempdrive/tempdrive.yaml``)

``!env`` tags resolve values from environment variables, so credentials
can live in the environment (or a ``.env`` file) instead of the YAML::

    storage:
      endpoint: minio.internal
      port: 9000
      use_ssl: false
      access_key: !env MINIO_ACCESS_KEY
      secret_key: !env MINIO_SECRET_KEY
      bucket: drive-documents
      region: us-east-1
    server:
      host: 0.0.0.0
      port: 5000
      upload_auth_token: !env UPLOAD_AUTH_TOKEN
    lifecycle:
      temporary_lifetime_seconds: 3600
      cleanup_interval_seconds: 60

Every section and key is optional; defaults match a local MinIO.  The
storage credentials are deliberately *not* required here: the signed
client refuses to issue a request without them, which makes the service
fail at startup before any network I/O.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path

from tempdrive.dotenv_loader import load_dotenv_once
from tempdrive.logging import SecretFilter


logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Application name for XDG path resolution.
_APP_NAME = "tempdrive"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

#: Default upload size limit (20 MiB).
DEFAULT_MAX_UPLOAD_BYTES = 20 * 1024 * 1024


def get_config_path() -> Path:
    """Return the default config file path.

    Returns:
        ``$XDG_CONFIG_HOME/tempdrive/tempdrive.yaml``.
    """
    return user_config_path(_APP_NAME) / "tempdrive.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` file path inside the XDG config directory.

    Returns:
        ``$XDG_CONFIG_HOME/tempdrive/.env``.
    """
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    Returns empty string if the env var is set to empty string.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()


@overload
def _resolve(value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve(value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``bool``).
        default: Default when value is absent.

    Returns:
        The resolved, coerced value, or None when absent without default.

    Raises:
        ConfigError: If the value cannot be coerced to the target type.
    """
    # PyYAML already parsed literals such as 9000 or false.
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _section(raw: dict, name: str) -> dict:
    """Return a top-level YAML section, defaulting to an empty mapping."""
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return section


def _check_port(name: str, port: int) -> None:
    if not 1 <= port <= 65535:
        raise ConfigError(f"{name} must be between 1 and 65535: {port}")


# ---------------------------------------------------------------------------
# Configuration sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageConfig:
    """Connection settings for the S3-compatible object store.

    Attributes:
        endpoint: Hostname of the storage endpoint (no scheme).
        port: TCP port of the storage endpoint.
        use_ssl: Use ``https`` instead of ``http``.
        access_key: Access key ID used in the credential scope.
        secret_key: Secret access key used to derive signing keys.
        bucket: Bucket holding every document.
        region: Region name bound into the signature.
    """

    endpoint: str = "localhost"
    port: int = 9000
    use_ssl: bool = False
    access_key: str = field(default="", repr=False)
    secret_key: str = field(default="", repr=False)
    bucket: str = "drive-documents"
    region: str = "us-east-1"

    def __post_init__(self) -> None:
        """Validate settings and register credentials for log redaction.

        Raises:
            ConfigError: If a setting is invalid.
        """
        if not self.endpoint:
            raise ConfigError("storage.endpoint cannot be empty")
        if "://" in self.endpoint:
            raise ConfigError(
                f"storage.endpoint must be a hostname without scheme "
                f"(use storage.use_ssl instead): {self.endpoint}"
            )
        _check_port("storage.port", self.port)
        if not self.bucket:
            raise ConfigError("storage.bucket cannot be empty")
        if not self.region:
            raise ConfigError("storage.region cannot be empty")

        SecretFilter.register_secret(self.secret_key)
        SecretFilter.register_secret(self.access_key)

    @property
    def protocol(self) -> str:
        """URL scheme for storage requests."""
        return "https" if self.use_ssl else "http"

    @property
    def host_header(self) -> str:
        """Value of the ``host`` header (port omitted when default)."""
        default_port = 443 if self.use_ssl else 80
        if self.port == default_port:
            return self.endpoint
        return f"{self.endpoint}:{self.port}"

    @property
    def origin(self) -> str:
        """Scheme and authority prefix for storage URLs."""
        return f"{self.protocol}://{self.host_header}"


@dataclass(frozen=True)
class ServerConfig:
    """HTTP front end settings.

    Attributes:
        host: Bind address.
        port: Bind port.
        upload_auth_token: Bearer token required for permanent uploads.
            ``None`` disables permanent uploads.
        max_upload_bytes: Largest accepted upload body.
        cors_origin: Value of ``Access-Control-Allow-Origin``.
    """

    host: str = "127.0.0.1"
    port: int = 5000
    upload_auth_token: str | None = field(default=None, repr=False)
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    cors_origin: str = "*"

    def __post_init__(self) -> None:
        """Validate settings.

        Raises:
            ConfigError: If a setting is invalid.
        """
        _check_port("server.port", self.port)
        if self.max_upload_bytes < 1:
            raise ConfigError(
                f"server.max_upload_bytes must be >= 1: {self.max_upload_bytes}"
            )
        if self.upload_auth_token:
            SecretFilter.register_secret(self.upload_auth_token)


@dataclass(frozen=True)
class LifecycleConfig:
    """Document expiry policy.

    Attributes:
        temporary_lifetime_seconds: Lifetime of a fresh temporary upload.
        max_extension_minutes: Largest accepted ``extend`` request.
        cleanup_interval_seconds: Period of the background sweep.
    """

    temporary_lifetime_seconds: int = 60 * 60
    max_extension_minutes: int = 12 * 60
    cleanup_interval_seconds: int = 60

    def __post_init__(self) -> None:
        """Validate settings.

        Raises:
            ConfigError: If a setting is invalid.
        """
        if self.temporary_lifetime_seconds < 1:
            raise ConfigError(
                f"lifecycle.temporary_lifetime_seconds must be >= 1: "
                f"{self.temporary_lifetime_seconds}"
            )
        if self.max_extension_minutes < 1:
            raise ConfigError(
                f"lifecycle.max_extension_minutes must be >= 1: "
                f"{self.max_extension_minutes}"
            )
        if self.cleanup_interval_seconds < 1:
            raise ConfigError(
                f"lifecycle.cleanup_interval_seconds must be >= 1: "
                f"{self.cleanup_interval_seconds}"
            )


@dataclass(frozen=True)
class AppConfig:
    """Complete service configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "AppConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  ``.env`` files are loaded first.

        Args:
            config_path: Path to the YAML file.  Defaults to
                ``~/.config/tempdrive/tempdrive.yaml`` (XDG).

        Returns:
            AppConfig instance.

        Raises:
            ConfigError: If the file is missing or a value is invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            raw = yaml.load(f, Loader=_make_loader())

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.info(
            "Config loaded: storage=%s bucket=%s, server=%s:%d",
            config.storage.origin,
            config.storage.bucket,
            config.server.host,
            config.server.port,
        )
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> "AppConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        storage = _section(raw, "storage")
        server = _section(raw, "server")
        lifecycle = _section(raw, "lifecycle")

        return cls(
            storage=StorageConfig(
                endpoint=_resolve(
                    storage.get("endpoint"), str, default="localhost"
                ),
                port=_resolve(storage.get("port"), int, default=9000),
                use_ssl=_resolve(storage.get("use_ssl"), bool, default=False),
                access_key=_resolve(storage.get("access_key"), str, default=""),
                secret_key=_resolve(storage.get("secret_key"), str, default=""),
                bucket=_resolve(
                    storage.get("bucket"), str, default="drive-documents"
                ),
                region=_resolve(
                    storage.get("region"), str, default="us-east-1"
                ),
            ),
            server=ServerConfig(
                host=_resolve(server.get("host"), str, default="127.0.0.1"),
                port=_resolve(server.get("port"), int, default=5000),
                upload_auth_token=_resolve(
                    server.get("upload_auth_token"), str
                )
                or None,
                max_upload_bytes=_resolve(
                    server.get("max_upload_bytes"),
                    int,
                    default=DEFAULT_MAX_UPLOAD_BYTES,
                ),
                cors_origin=_resolve(
                    server.get("cors_origin"), str, default="*"
                ),
            ),
            lifecycle=LifecycleConfig(
                temporary_lifetime_seconds=_resolve(
                    lifecycle.get("temporary_lifetime_seconds"),
                    int,
                    default=60 * 60,
                ),
                max_extension_minutes=_resolve(
                    lifecycle.get("max_extension_minutes"), int, default=12 * 60
                ),
                cleanup_interval_seconds=_resolve(
                    lifecycle.get("cleanup_interval_seconds"), int, default=60
                ),
            ),
        )
