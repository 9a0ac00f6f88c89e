"""
searchwire Pool — Bounded Connection Pool
=========================================

Each cluster owns one ``ConnectionPool``. A pooled ``Connection`` wraps one
``elastic_transport`` node configured for a single persistent HTTP
connection, so the pool size is the number of sockets open to the cluster.

Connection states:
    idle         in the pool, ready to be handed out
    checked_out  owned by exactly one in-flight request
    closed       invalidated or torn down, never handed out again

Ordering policy:
    Waiters are served strictly first-in first-out. A released connection,
    or the slot freed by an invalidated one, goes straight to the oldest
    waiter; a newcomer only takes an idle connection when nobody is queued.
    No caller waits forever while others keep making progress.

Typical usage (the request dispatcher does this for you):
    pool = ConnectionPool(factory, size=5, timeout=5.0)
    conn = pool.acquire()
    try:
        status, headers, raw = conn.perform("GET", "/_cluster/health")
    except elastic_transport.TransportError:
        pool.invalidate(conn)
        raise
    else:
        pool.release(conn)
"""

import itertools
import logging
import threading
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

from elastic_transport import HttpHeaders

from .errors import PoolClosedError, PoolError, PoolTimeoutError

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CHECKED_OUT = "checked_out"
    CLOSED = "closed"


class Connection:
    """
    A pooled transport handle bound to one cluster endpoint.

    Args:
        node: An ``elastic_transport`` node (or anything exposing
            ``perform_request`` and ``close``)
    """

    def __init__(self, node: Any):
        self.id = next(_ids)
        self.node = node
        self.state = ConnectionState.CHECKED_OUT
        self.requests = 0

    def perform(
        self,
        method: str,
        target: str,
        body: Optional[bytes] = None,
        headers: Optional[List[Tuple[str, str]]] = None,
        timeout: Optional[float] = None
    ) -> Tuple[int, HttpHeaders, bytes]:
        """
        Send one request over this connection.

        Args:
            method: HTTP method
            target: Path plus query string
            body: Encoded request body
            headers: Ordered (name, value) pairs
            timeout: Per-request timeout in seconds (node default if None)

        Returns:
            Tuple of (status, response headers, raw body)

        Raises:
            elastic_transport.TransportError: On connection failures and timeouts
        """
        kwargs: Dict[str, Any] = {"body": body, "headers": to_http_headers(headers or [])}
        if timeout is not None:
            kwargs["request_timeout"] = timeout

        self.requests += 1
        meta, raw = self.node.perform_request(method, target, **kwargs)
        return meta.status, meta.headers, raw

    def close(self) -> None:
        self.state = ConnectionState.CLOSED
        try:
            self.node.close()
        except Exception:
            logger.warning("Error closing connection %d", self.id, exc_info=True)

    def __repr__(self):
        return f"<Connection id={self.id} state={self.state.value}>"


def to_http_headers(headers: List[Tuple[str, str]]) -> HttpHeaders:
    """Fold ordered header pairs into ``HttpHeaders``, joining repeated names."""
    result = HttpHeaders()
    for name, value in headers:
        if name in result:
            result[name] = f"{result[name]}, {value}"
        else:
            result[name] = value
    return result


class _Waiter:
    __slots__ = ("event", "connection", "may_create")

    def __init__(self):
        self.event = threading.Event()
        self.connection: Optional[Connection] = None
        self.may_create = False

    @property
    def granted(self) -> bool:
        return self.connection is not None or self.may_create


class ConnectionPool:
    """
    Thread-safe bounded pool of connections to one endpoint.

    Connections are created lazily, up to ``size``, by calling ``factory``
    and reused until invalidated or the pool is closed.

    Args:
        factory: Zero-argument callable returning a new transport node
        size: Maximum number of open connections
        timeout: Default acquisition wait bound in seconds
    """

    def __init__(self, factory: Callable[[], Any], size: int = 5, timeout: float = 5.0):
        if size < 1:
            raise ValueError("pool size must be at least 1")

        self.factory = factory
        self.size = size
        self.timeout = timeout

        self._lock = threading.Lock()
        self._idle: Deque[Connection] = deque()
        self._checked_out: Set[Connection] = set()
        self._waiters: Deque[_Waiter] = deque()
        self._open = 0
        self._opened = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def acquire(self, timeout: Optional[float] = None) -> Connection:
        """
        Check out a connection, waiting for one if the pool is exhausted.

        Args:
            timeout: Wait bound in seconds (pool default if None)

        Returns:
            A checked-out Connection

        Raises:
            PoolTimeoutError: If nothing became available in time
            PoolClosedError: If the pool is or gets closed
        """
        timeout = self.timeout if timeout is None else timeout

        with self._lock:
            if self._closed:
                raise PoolClosedError("connection pool is closed")

            if not self._waiters:
                if self._idle:
                    return self._checkout(self._idle.popleft())
                if self._open < self.size:
                    self._open += 1
                    waiter = None
                else:
                    waiter = self._enqueue()
            else:
                waiter = self._enqueue()

        if waiter is None:
            return self._create()

        waiter.event.wait(timeout)

        with self._lock:
            if not waiter.granted:
                if self._closed:
                    raise PoolClosedError("connection pool is closed")
                self._waiters.remove(waiter)
                raise PoolTimeoutError(timeout)

        if waiter.may_create:
            return self._create()
        return waiter.connection

    def release(self, connection: Connection) -> None:
        """
        Return a checked-out connection to the pool.

        Raises:
            PoolError: If the connection is not checked out from this pool
        """
        with self._lock:
            self._take_back(connection)

            if self._closed:
                self._open -= 1
                doomed = connection
            else:
                doomed = None
                waiter = self._next_waiter()
                if waiter is not None:
                    self._checked_out.add(connection)
                    waiter.connection = connection
                    waiter.event.set()
                else:
                    connection.state = ConnectionState.IDLE
                    self._idle.append(connection)

        if doomed is not None:
            doomed.close()

    def invalidate(self, connection: Connection) -> None:
        """
        Close a checked-out connection and free its slot.

        Used when the transport reported a fault: the connection is never
        handed out again and a fresh one may be created in its place.

        Raises:
            PoolError: If the connection is not checked out from this pool
        """
        with self._lock:
            self._take_back(connection)
            connection.state = ConnectionState.CLOSED
            self._open -= 1
            self._grant_slot()

        logger.debug("Invalidated connection %d after %d request(s)", connection.id, connection.requests)
        connection.close()

    def close(self) -> None:
        """Close every connection and reject further acquisitions."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            doomed = list(self._idle) + list(self._checked_out)
            self._idle.clear()
            self._open -= len(doomed) - len(self._checked_out)
            waiters = list(self._waiters)
            self._waiters.clear()

        for waiter in waiters:
            waiter.event.set()
        for connection in doomed:
            connection.close()

        logger.debug("Closed connection pool (%d connection(s))", len(doomed))

    def stats(self) -> Dict[str, int]:
        """
        Snapshot of the pool bookkeeping.

        Returns:
            Dict with size, open, idle, checked_out, waiting and opened
            (total connections ever created)
        """
        with self._lock:
            return {
                "size": self.size,
                "open": self._open,
                "idle": len(self._idle),
                "checked_out": len(self._checked_out),
                "waiting": len(self._waiters),
                "opened": self._opened,
            }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _create(self) -> Connection:
        # The caller already holds a reserved slot in self._open.
        try:
            node = self.factory()
        except BaseException:
            with self._lock:
                self._open -= 1
                self._grant_slot()
            raise

        connection = Connection(node)
        with self._lock:
            self._opened += 1
            if self._closed:
                self._open -= 1
                closed = True
            else:
                self._checked_out.add(connection)
                closed = False

        if closed:
            connection.close()
            raise PoolClosedError("connection pool is closed")

        logger.debug("Opened connection %d (%d/%d)", connection.id, self._open, self.size)
        return connection

    def _checkout(self, connection: Connection) -> Connection:
        connection.state = ConnectionState.CHECKED_OUT
        self._checked_out.add(connection)
        return connection

    def _take_back(self, connection: Connection) -> None:
        if connection not in self._checked_out:
            raise PoolError(f"{connection!r} is not checked out from this pool")
        self._checked_out.discard(connection)

    def _enqueue(self) -> _Waiter:
        waiter = _Waiter()
        self._waiters.append(waiter)
        return waiter

    def _next_waiter(self) -> Optional[_Waiter]:
        return self._waiters.popleft() if self._waiters else None

    def _grant_slot(self) -> None:
        if self._closed:
            return
        waiter = self._next_waiter()
        if waiter is not None:
            self._open += 1
            waiter.may_create = True
            waiter.event.set()

