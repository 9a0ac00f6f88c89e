"""
searchwire — Instrumented HTTP Client for Search Clusters
=========================================================

searchwire gives applications typed, authenticated and instrumented HTTP
access to an Elasticsearch/OpenSearch compatible cluster, without hand
rolling connection management, authentication or observability for every
call.

Key Features:
- Bounded, thread-safe connection pool per cluster
- Pluggable request signing (HTTP Basic Auth by default)
- One telemetry event per request with response/decode/total timings
- Typed errors for configuration, pool, transport, decoding and HTTP failures
- Bulk streaming and index hotswap helpers

Components:
    Cluster    →  lifecycle: config + pool + telemetry
    request    →  sign → acquire → send → decode → release → emit
    auth       →  BasicAuth, NoAuth, custom signers
    telemetry  →  attach handlers to request events
    bulk       →  stream actions to _bulk in pages
    indexes    →  create/delete/alias/hotswap

Usage:
    import searchwire
    from searchwire import Cluster

    with Cluster({"url": "http://localhost:9200", "username": "u", "password": "p"}) as cluster:
        searchwire.put(cluster, "/books/_doc/1", {"title": "Dune"})
        hits = searchwire.post(cluster, "/books/_search", {"query": {"match_all": {}}}).body

License: MIT
"""

import logging

__version__ = "0.1.0"

from .auth import BasicAuth, NoAuth, Signer
from .cluster import Cluster
from .config import ClusterConfig, resolve_config
from .errors import (
    AuthError,
    BulkError,
    ClusterError,
    ConfigError,
    DecodeError,
    EncodeError,
    HTTPError,
    NotFoundError,
    PoolClosedError,
    PoolError,
    PoolTimeoutError,
    SearchwireError,
    TransportError,
)
from .pool import Connection, ConnectionPool
from .request import Response, delete, get, post, put, request
from .telemetry import TelemetryEmitter, TelemetryEvent

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AuthError",
    "BasicAuth",
    "BulkError",
    "Cluster",
    "ClusterConfig",
    "ClusterError",
    "ConfigError",
    "Connection",
    "ConnectionPool",
    "DecodeError",
    "EncodeError",
    "HTTPError",
    "NoAuth",
    "NotFoundError",
    "PoolClosedError",
    "PoolError",
    "PoolTimeoutError",
    "Response",
    "SearchwireError",
    "Signer",
    "TelemetryEmitter",
    "TelemetryEvent",
    "TransportError",
    "delete",
    "get",
    "post",
    "put",
    "request",
    "resolve_config",
]
