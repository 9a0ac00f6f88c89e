"""
searchwire Cluster — Cluster Lifecycle
======================================

A ``Cluster`` is the handle applications use to talk to one remote search
cluster. It owns the resolved configuration, the connection pool and the
telemetry emitter, and has an explicit start/stop lifecycle:

    cluster = Cluster({"url": "http://localhost:9200", "pool_size": 10})
    cluster.start()
    ...
    cluster.stop()

    # or
    with Cluster({"url": "http://localhost:9200"}) as cluster:
        print(cluster.get("/_cluster/health").body["status"])

Configuration can also be supplied dynamically by subclassing:

    class ProductSearch(Cluster):
        name = "products"
        env_prefix = "PRODUCTS_SEARCH_"   # PRODUCTS_SEARCH_URL, ...

        def init(self, config):
            return {**config, "password": vault.read("es-password")}

Connections are never opened before ``start`` and are all closed by
``stop``.
"""

import functools
import logging
import re
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from elastic_transport import NodeConfig, Urllib3HttpNode

from . import request as _request
from .config import ClusterConfig, resolve_config
from .errors import ClusterError, ConfigError
from .pool import ConnectionPool
from .telemetry import TelemetryEmitter, default_emitter

logger = logging.getLogger(__name__)

NodeFactory = Callable[[ClusterConfig], Any]


def node_config(config: ClusterConfig) -> NodeConfig:
    """
    Build the transport node configuration for a cluster.

    Every node carries exactly one HTTP connection; ``conn_opts`` are passed
    through to ``NodeConfig`` (``request_timeout``, ``http_compress``,
    ``verify_certs``, ``ca_certs``, ...).

    Raises:
        ConfigError: If ``conn_opts`` holds options NodeConfig rejects
    """
    opts = {key: value for key, value in config.conn_opts.items() if key != "node_class"}
    try:
        return NodeConfig(
            scheme=config.scheme,
            host=config.host,
            port=config.port,
            path_prefix=config.path_prefix,
            connections_per_node=1,
            **opts
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"cluster {config.name!r}: invalid conn_opts: {exc}") from exc


def build_node(config: ClusterConfig) -> Any:
    """Create one transport node (``conn_opts["node_class"]``, default urllib3)."""
    node_class = config.conn_opts.get("node_class", Urllib3HttpNode)
    return node_class(node_config(config))


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class Cluster:
    """
    Lifecycle object for one remote search cluster.

    Args:
        config: Static configuration mapping (see ``searchwire.config``)
        name: Cluster name (default: class attribute, else the snake-cased
            class name)
        env_prefix: Read missing settings from environment variables
            with this prefix
        emitter: Telemetry emitter (default: the process-wide emitter)
        node_factory: Callable creating a transport node from the
            resolved config (default: ``build_node``)
    """

    name: Optional[str] = None
    env_prefix: Optional[str] = None

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        name: Optional[str] = None,
        env_prefix: Optional[str] = None,
        emitter: Optional[TelemetryEmitter] = None,
        node_factory: Optional[NodeFactory] = None
    ):
        self.name = name or self.name or _snake_case(type(self).__name__)
        self.env_prefix = env_prefix or self.env_prefix
        self.emitter = emitter or default_emitter
        self.node_factory = node_factory or build_node

        self._static_config: Dict[str, Any] = dict(config or {})
        self._config: Optional[ClusterConfig] = None
        self._pool: Optional[ConnectionPool] = None
        self._lock = threading.Lock()

    def init(self, config: Dict[str, Any]) -> Mapping[str, Any]:
        """
        Hook for dynamic configuration.

        Receives the static configuration and returns the mapping to
        resolve. Override in subclasses; the default returns it unchanged.
        Keys ClusterConfig does not know are dropped at resolution.
        """
        return config

    def start(self) -> "Cluster":
        """
        Resolve configuration and create the connection pool.

        Returns:
            self

        Raises:
            ConfigError: If the configuration is invalid
            ClusterError: If the cluster is already running
        """
        with self._lock:
            if self._pool is not None:
                raise ClusterError(f"cluster {self.name!r} is already started")

            raw = self.init(dict(self._static_config))
            config = resolve_config(raw, name=self.name, env_prefix=self.env_prefix)
            if self.node_factory is build_node:
                node_config(config)

            self._config = config
            self._pool = ConnectionPool(
                functools.partial(self.node_factory, config),
                size=config.pool_size,
                timeout=config.pool_timeout
            )

        logger.info(
            "Started cluster %r: %s (pool_size=%d, auth=%r)",
            self.name, config.url, config.pool_size, config.auth
        )
        return self

    def stop(self) -> None:
        """Close every connection and reject further requests. Idempotent."""
        with self._lock:
            pool, self._pool = self._pool, None

        if pool is not None:
            pool.close()
            logger.info("Stopped cluster %r", self.name)

    @property
    def running(self) -> bool:
        return self._pool is not None

    @property
    def config(self) -> ClusterConfig:
        if self._pool is None or self._config is None:
            raise ClusterError(f"cluster {self.name!r} is not started")
        return self._config

    @property
    def pool(self) -> ConnectionPool:
        pool = self._pool
        if pool is None:
            raise ClusterError(f"cluster {self.name!r} is not started")
        return pool

    def request(self, method, path, body=None, params=None, headers=None, opts=None):
        """Perform a request. See ``searchwire.request.request``."""
        return _request.request(self, method, path, body, params, headers, opts)

    def get(self, path, params=None, headers=None, opts=None):
        return _request.get(self, path, params, headers, opts)

    def post(self, path, body=None, params=None, headers=None, opts=None):
        return _request.post(self, path, body, params, headers, opts)

    def put(self, path, body=None, params=None, headers=None, opts=None):
        return _request.put(self, path, body, params, headers, opts)

    def delete(self, path, params=None, headers=None, opts=None):
        return _request.delete(self, path, params, headers, opts)

    def __enter__(self):
        if not self.running:
            self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    def __repr__(self):
        state = "running" if self.running else "stopped"
        return f"<{type(self).__name__} {self.name!r} {state}>"
