"""
searchwire Request — Request Dispatch and Response Decoding
===========================================================

``request`` runs one call against a started cluster, strictly in order:

    1. append query parameters to the path, encode the body
    2. sign (AuthError propagates before any connection is used)
    3. acquire a pooled connection (may wait, may raise PoolTimeoutError)
    4. send, measuring response_time (a transport fault invalidates the
       connection and raises TransportError)
    5. decode the body, measuring decode_time (DecodeError on garbage)
    6. map the status: 2xx -> Response, anything else -> HTTPError
    7. release the connection
    8. emit one telemetry event with the result or the exception
    9. return or raise

There is no retry: callers that want one wrap these functions.

Usage:
    with Cluster({"url": "http://localhost:9200"}) as cluster:
        health = searchwire.get(cluster, "/_cluster/health").body
        searchwire.put(cluster, "/books/_doc/1", {"title": "Dune"}, params={"refresh": True})
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlencode

import elastic_transport
from elastic_transport import (
    JsonSerializer,
    NdjsonSerializer,
    SerializationError,
    SerializerCollection,
    TextSerializer,
)

from .errors import DecodeError, EncodeError, TransportError, http_error
from .telemetry import TelemetryEvent

logger = logging.getLogger(__name__)

JSON_MIMETYPE = "application/json"

Headers = List[Tuple[str, str]]
Params = Union[Mapping[str, Any], Sequence[Tuple[str, Any]], None]

serializers = SerializerCollection({
    "application/json": JsonSerializer(),
    "application/vnd.elasticsearch+json": JsonSerializer(),
    "application/x-ndjson": NdjsonSerializer(),
    "application/vnd.elasticsearch+x-ndjson": NdjsonSerializer(),
    "text/*": TextSerializer(),
})


@dataclass(frozen=True)
class Response:
    """
    A successful (2xx) response.

    Attributes:
        status: HTTP status code
        headers: Response headers
        body: Decoded body (dict/list for JSON, str for text, None if empty)
    """

    status: int
    headers: Mapping[str, str]
    body: Any


def request(
    cluster,
    method: str,
    path: str,
    body: Any = None,
    params: Params = None,
    headers: Optional[Headers] = None,
    opts: Optional[Mapping[str, Any]] = None
) -> Response:
    """
    Perform one HTTP request against a cluster.

    Args:
        cluster: A started ``searchwire.Cluster``
        method: HTTP method
        path: Request path, e.g. "/books/_search"
        body: dict/list (serialized by content type), str or bytes
        params: Query parameters, as a mapping or ordered pairs
        headers: Ordered (name, value) pairs
        opts: ``timeout`` (transport timeout, seconds) and
            ``pool_timeout`` (connection wait bound, seconds)

    Returns:
        Response

    Raises:
        ClusterError: If the cluster is not started (no telemetry emitted)
        AuthError, EncodeError, PoolTimeoutError, PoolClosedError,
        TransportError, DecodeError, HTTPError
    """
    started = time.monotonic()
    config = cluster.config
    pool = cluster.pool
    opts = opts or {}

    measurements = {"response_time": 0.0, "decode_time": 0.0}
    sent: Dict[str, Any] = {
        "method": method.upper(),
        "path": build_path(path, params),
        "headers": list(headers or []),
        "body": None,
    }
    result: Any = None

    try:
        payload = encode_body(body, sent["headers"])
        if payload is not None and header_value(sent["headers"], "content-type") is None:
            sent["headers"] = [("Content-Type", JSON_MIMETYPE)] + sent["headers"]
        sent["body"] = payload

        signed = config.auth.sign(config, sent["method"], sent["path"], sent["headers"], payload)
        sent["method"], sent["path"], sent["headers"], sent["body"] = signed

        result = _dispatch(pool, sent, opts, measurements)
    except Exception as exc:
        result = exc
        raise
    finally:
        measurements["total_time"] = time.monotonic() - started
        cluster.emitter.emit(
            TelemetryEvent(
                name=tuple(config.telemetry_prefix) + ("request",),
                measurements=measurements,
                metadata={
                    "method": sent["method"],
                    "path": sent["path"],
                    "port": config.port,
                    "host": config.host,
                    "headers": sent["headers"],
                    "body": sent["body"],
                    "result": result,
                },
            )
        )

    return result


def _dispatch(pool, sent: Dict[str, Any], opts: Mapping[str, Any], measurements: Dict[str, float]) -> Response:
    method, target = sent["method"], sent["path"]
    connection = pool.acquire(opts.get("pool_timeout"))

    sent_at = time.monotonic()
    try:
        status, response_headers, raw = connection.perform(
            method,
            target,
            body=sent["body"],
            headers=sent["headers"],
            timeout=opts.get("timeout")
        )
    except BaseException as exc:
        measurements["response_time"] = time.monotonic() - sent_at
        pool.invalidate(connection)
        if isinstance(exc, elastic_transport.TransportError):
            logger.debug("%s %s failed on connection %d: %s", method, target, connection.id, exc)
            raise TransportError(f"{method} {target} failed: {exc}", method, target) from exc
        raise
    measurements["response_time"] = time.monotonic() - sent_at

    decode_at = time.monotonic()
    try:
        return decode_response(status, response_headers, raw)
    finally:
        measurements["decode_time"] = time.monotonic() - decode_at
        pool.release(connection)


def decode_response(status: int, headers: Mapping[str, str], raw: bytes) -> Response:
    """
    Decode a raw response and map it to a Response or an HTTPError.

    Raises:
        DecodeError: If a 2xx body cannot be parsed
        HTTPError: For any non-2xx status
    """
    headers = dict(headers)
    mimetype = header_value(list(headers.items()), "content-type")

    try:
        body = serializers.loads(raw, serializer_key(mimetype)) if raw else None
    except SerializationError as exc:
        if 200 <= status < 300:
            raise DecodeError(f"cannot decode {mimetype or JSON_MIMETYPE} response: {exc}", status, raw) from exc
        raise http_error(status, headers=headers, raw_body=raw.decode("utf-8", "replace")) from exc

    if 200 <= status < 300:
        return Response(status=status, headers=headers, body=body)
    raise http_error(status, body=body, headers=headers)


def build_path(path: str, params: Params = None) -> str:
    """Append query parameters to ``path``."""
    if not path.startswith("/"):
        path = "/" + path
    if not params:
        return path

    items = params.items() if isinstance(params, Mapping) else params
    query = urlencode([(key, _param_value(value)) for key, value in items])
    return f"{path}{'&' if '?' in path else '?'}{query}"


def encode_body(body: Any, headers: Headers) -> Optional[bytes]:
    """
    Encode a request body for the wire.

    Raises:
        EncodeError: If the body cannot be serialized for its content type
    """
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")

    try:
        return serializers.dumps(body, serializer_key(header_value(headers, "content-type")))
    except (SerializationError, TypeError, ValueError) as exc:
        raise EncodeError(f"cannot serialize request body: {exc}") from exc


def header_value(headers: Headers, name: str) -> Optional[str]:
    """First value of a header in an ordered header list (case-insensitive)."""
    name = name.lower()
    for key, value in headers:
        if key.lower() == name:
            return value
    return None


def serializer_key(mimetype: Optional[str]) -> Optional[str]:
    """Map a Content-Type header value to a serializer mimetype."""
    if not mimetype:
        return None
    base = mimetype.partition(";")[0].strip().lower()
    if base.startswith("text/"):
        return "text/*"
    return base or None


def _param_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_param_value(item) for item in value)
    return str(value)


def get(cluster, path: str, params: Params = None, headers: Optional[Headers] = None, opts=None) -> Response:
    return request(cluster, "GET", path, None, params, headers, opts)


def post(cluster, path: str, body: Any = None, params: Params = None, headers: Optional[Headers] = None, opts=None) -> Response:
    return request(cluster, "POST", path, body, params, headers, opts)


def put(cluster, path: str, body: Any = None, params: Params = None, headers: Optional[Headers] = None, opts=None) -> Response:
    return request(cluster, "PUT", path, body, params, headers, opts)


def delete(cluster, path: str, params: Params = None, headers: Optional[Headers] = None, opts=None) -> Response:
    return request(cluster, "DELETE", path, None, params, headers, opts)
