"""
searchwire Errors — Exception Hierarchy
=======================================

Every error raised by searchwire derives from ``SearchwireError``.

    SearchwireError
    ├── ConfigError          invalid cluster configuration (cluster start)
    ├── ClusterError         lifecycle misuse (not started, double start)
    ├── AuthError            a signing strategy rejected the request
    ├── EncodeError          request body could not be serialized
    ├── PoolError            pool misuse
    │   ├── PoolTimeoutError no connection within the wait bound
    │   └── PoolClosedError  pool shut down
    ├── TransportError       send failed, connection invalidated
    ├── DecodeError          response body could not be parsed
    ├── HTTPError            non-2xx status from the cluster
    │   ├── BadRequestError      400
    │   ├── AuthenticationError  401
    │   ├── AuthorizationError   403
    │   ├── NotFoundError        404
    │   └── ConflictError        409
    └── BulkError            one or more bulk items failed
"""

from typing import Any, Dict, List, Mapping, Optional, Type


class SearchwireError(Exception):
    """Base class for all searchwire errors."""


class ConfigError(SearchwireError):
    """Raised when a cluster configuration is missing or invalid."""


class ClusterError(SearchwireError):
    """Raised when a cluster is used outside its start/stop lifecycle."""


class AuthError(SearchwireError):
    """Raised by a signing strategy that refuses to sign a request."""


class EncodeError(SearchwireError):
    """Raised when a request body cannot be serialized."""


class PoolError(SearchwireError):
    """Raised on connection pool misuse."""


class PoolTimeoutError(PoolError):
    """Raised when no connection became available in time."""

    def __init__(self, timeout: float):
        super().__init__(f"no connection available within {timeout:.3f}s")
        self.timeout = timeout


class PoolClosedError(PoolError):
    """Raised when acquiring from a pool that has been closed."""


class TransportError(SearchwireError):
    """
    Raised when sending a request failed at the transport level.

    The underlying ``elastic_transport`` exception is available as
    ``__cause__``. The connection that failed has already been
    invalidated.
    """

    def __init__(self, message: str, method: str = "", path: str = ""):
        super().__init__(message)
        self.method = method
        self.path = path


class DecodeError(SearchwireError):
    """Raised when a successful response carries an unparseable body."""

    def __init__(self, message: str, status: int, raw_body: bytes = b""):
        super().__init__(message)
        self.status = status
        self.raw_body = raw_body


class HTTPError(SearchwireError):
    """
    Raised when the cluster answers with a non-2xx status.

    Attributes:
        status: HTTP status code
        body: Decoded response body (None if empty or undecodable)
        headers: Response headers
        raw_body: Raw response text, kept when the body was undecodable
    """

    def __init__(
        self,
        status: int,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        raw_body: Optional[str] = None
    ):
        self.status = status
        self.body = body
        self.headers = dict(headers or {})
        self.raw_body = raw_body
        super().__init__(self._describe())

    @property
    def error(self) -> Dict[str, Any]:
        """The ``error`` object of an Elasticsearch error document, if any."""
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict):
                return error
            if isinstance(error, str):
                return {"reason": error}
        return {}

    @property
    def error_type(self) -> Optional[str]:
        return self.error.get("type")

    @property
    def reason(self) -> Optional[str]:
        return self.error.get("reason")

    def _describe(self) -> str:
        if self.error_type or self.reason:
            return f"HTTP {self.status}: [{self.error_type}] {self.reason}"
        return f"HTTP {self.status}"


class BadRequestError(HTTPError):
    """HTTP 400."""


class AuthenticationError(HTTPError):
    """HTTP 401."""


class AuthorizationError(HTTPError):
    """HTTP 403."""


class NotFoundError(HTTPError):
    """HTTP 404."""


class ConflictError(HTTPError):
    """HTTP 409."""


HTTP_ERRORS: Dict[int, Type[HTTPError]] = {
    400: BadRequestError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
}


def http_error(
    status: int,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    raw_body: Optional[str] = None
) -> HTTPError:
    """Build the ``HTTPError`` subclass matching a status code."""
    cls = HTTP_ERRORS.get(status, HTTPError)
    return cls(status, body=body, headers=headers, raw_body=raw_body)


class BulkError(SearchwireError):
    """
    Raised by ``searchwire.bulk.perform`` when bulk items failed.

    Attributes:
        errors: The failed item results, as returned by the cluster
        stats: Statistics of the whole bulk run
    """

    def __init__(self, errors: List[Dict[str, Any]], stats: Dict[str, Any]):
        super().__init__(f"{len(errors)} bulk action(s) failed")
        self.errors = errors
        self.stats = stats
