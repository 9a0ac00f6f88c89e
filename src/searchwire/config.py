"""
searchwire Config — Cluster Configuration Resolution
====================================================

Turns raw configuration into an immutable ``ClusterConfig``.

Sources, lowest precedence first:
    1. Environment variables ``<env_prefix>URL``, ``<env_prefix>USERNAME``,
       ... (only when an env prefix is given)
    2. The static mapping handed to the cluster
    3. Whatever the cluster's ``init`` hook returns

Recognized keys:
    url               Endpoint of the cluster HTTP API (required)
    username          Username for the auth strategy
    password          Password for the auth strategy
    auth              Signing strategy ("basic", "none", class or instance)
    pool_size         Maximum number of pooled connections (default 5)
    pool_timeout      Seconds to wait for a free connection (default 5.0)
    conn_opts         Options passed to the transport node configuration
    telemetry_prefix  Prefix of telemetry event names
                      (default (<cluster name>, "searchwire"))

Any other key is dropped (and logged at DEBUG level).
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .auth import resolve_signer
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 5
DEFAULT_POOL_TIMEOUT = 5.0
DEFAULT_PORTS = {"http": 80, "https": 443}


class ClusterConfig(BaseModel):
    """
    Resolved configuration of one cluster.

    Instances are frozen: they are resolved once at cluster start and then
    shared, without locking, by every request against the cluster.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="ignore")

    name: str = "default"
    url: str
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    auth: Any = Field(default=None, validate_default=True)
    pool_size: int = DEFAULT_POOL_SIZE
    pool_timeout: float = DEFAULT_POOL_TIMEOUT
    conn_opts: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    telemetry_prefix: Tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _derive_telemetry_prefix(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("telemetry_prefix"):
            data = {**data, "telemetry_prefix": (data.get("name") or "default", "searchwire")}
        return data

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        parts = urlsplit(value)
        if parts.scheme not in DEFAULT_PORTS or not parts.hostname:
            raise ValueError(f"expected an http(s) URL with a host, got {value!r}")
        return value.rstrip("/")

    @field_validator("auth", mode="before")
    @classmethod
    def _resolve_auth(cls, value: Any) -> Any:
        return resolve_signer(value)

    @field_validator("pool_size", "pool_timeout", mode="before")
    @classmethod
    def _blank_means_default(cls, value: Any, info) -> Any:
        if value is None or value == "":
            return DEFAULT_POOL_SIZE if info.field_name == "pool_size" else DEFAULT_POOL_TIMEOUT
        return value

    @field_validator("pool_size")
    @classmethod
    def _positive_pool_size(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_POOL_SIZE

    @field_validator("pool_timeout")
    @classmethod
    def _positive_pool_timeout(cls, value: float) -> float:
        return value if value > 0 else DEFAULT_POOL_TIMEOUT

    @field_validator("conn_opts", mode="before")
    @classmethod
    def _default_conn_opts(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("conn_opts")
    @classmethod
    def _freeze_conn_opts(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    @field_validator("telemetry_prefix", mode="before")
    @classmethod
    def _split_telemetry_prefix(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(part for part in value.split(".") if part)
        return value

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme

    @property
    def host(self) -> str:
        return urlsplit(self.url).hostname

    @property
    def port(self) -> int:
        parts = urlsplit(self.url)
        return parts.port or DEFAULT_PORTS[parts.scheme]

    @property
    def path_prefix(self) -> str:
        return urlsplit(self.url).path.rstrip("/")


class EnvClusterSettings(BaseSettings):
    """Cluster settings read from environment variables."""

    model_config = SettingsConfigDict(extra="ignore", case_sensitive=False)

    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    auth: Optional[str] = None
    pool_size: Optional[int] = None
    pool_timeout: Optional[float] = None
    telemetry_prefix: Optional[str] = None


def load_env(env_prefix: str) -> Dict[str, Any]:
    """
    Read cluster settings from the environment.

    Args:
        env_prefix: Variable prefix, e.g. "MYAPP_SEARCH_" reads MYAPP_SEARCH_URL

    Returns:
        Dict with only the variables that are set
    """
    try:
        settings = EnvClusterSettings(_env_prefix=env_prefix)
    except ValidationError as exc:
        raise ConfigError(f"invalid {env_prefix}* environment: {exc}") from exc
    return settings.model_dump(exclude_none=True)


def resolve_config(
    raw: Optional[Mapping[str, Any]] = None,
    *,
    name: str = "default",
    env_prefix: Optional[str] = None
) -> ClusterConfig:
    """
    Resolve and validate a cluster configuration.

    Args:
        raw: Configuration mapping (overrides the environment)
        name: Cluster name, used for the default telemetry prefix
        env_prefix: Read missing settings from variables with this prefix

    Returns:
        Frozen ClusterConfig

    Raises:
        ConfigError: If ``url`` is missing or any value is invalid
    """
    values: Dict[str, Any] = {}
    if env_prefix:
        values.update(load_env(env_prefix))
    values.update(raw or {})
    values.setdefault("name", name)

    ignored = sorted(key for key in values if key not in ClusterConfig.model_fields)
    if ignored:
        logger.debug("Cluster %r: ignoring unknown config key(s): %s", values["name"], ", ".join(ignored))
        values = {key: value for key, value in values.items() if key in ClusterConfig.model_fields}

    if not values.get("url"):
        raise ConfigError(f"cluster {values['name']!r}: 'url' is required")

    try:
        return ClusterConfig(**values)
    except ValidationError as exc:
        raise ConfigError(f"cluster {values['name']!r}: invalid configuration: {exc}") from exc
