"""Requests transport whose in-flight requests can be cut off from another thread."""

import logging
import socket
import weakref
from threading import Lock

from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.poolmanager import PoolManager

logger = logging.getLogger(__name__)


class ConnectionTracker:
    """Remembers every connection a pool opens so they can be shut down."""

    def __init__(self) -> None:
        self._connections: weakref.WeakSet = weakref.WeakSet()
        self._lock = Lock()

    def add(self, connection: object) -> None:
        with self._lock:
            self._connections.add(connection)

    def shutdown_all(self) -> int:
        """Shut down every open socket, waking any thread blocked reading it.

        Returns:
            Number of sockets shut down.
        """
        with self._lock:
            connections = list(self._connections)

        count = 0
        for connection in connections:
            sock = getattr(connection, "sock", None)
            if sock is None:
                continue
            try:
                sock.shutdown(socket.SHUT_RDWR)
                count += 1
            except OSError as e:
                # Already closed by the other side or by urllib3
                logger.debug("Socket shutdown skipped: %s", e)
        return count


class _TrackedHTTPConnectionPool(HTTPConnectionPool):
    tracker: ConnectionTracker | None = None

    def _new_conn(self):
        conn = super()._new_conn()
        if self.tracker is not None:
            self.tracker.add(conn)
        return conn


class _TrackedHTTPSConnectionPool(HTTPSConnectionPool):
    tracker: ConnectionTracker | None = None

    def _new_conn(self):
        conn = super()._new_conn()
        if self.tracker is not None:
            self.tracker.add(conn)
        return conn


class _TrackingPoolManager(PoolManager):
    """PoolManager whose pools register new connections with a tracker."""

    def __init__(self, tracker: ConnectionTracker, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._tracker = tracker
        self.pool_classes_by_scheme = {
            "http": _TrackedHTTPConnectionPool,
            "https": _TrackedHTTPSConnectionPool,
        }

    def _new_pool(self, scheme, host, port, request_context=None):
        pool = super()._new_pool(scheme, host, port, request_context)
        pool.tracker = self._tracker
        return pool


class AbortableAdapter(HTTPAdapter):
    """HTTPAdapter with an ``abort()`` that fails every in-flight request.

    ``abort()`` shuts down the sockets of all connections opened through
    this adapter. A request blocked on one of them raises a connection
    error straight away; idle keep-alive connections are dropped and
    reopened on next use.

    Example:
        adapter = AbortableAdapter()
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        # ... from another thread ...
        adapter.abort()
    """

    def __init__(self, *args, **kwargs) -> None:
        # init_poolmanager() runs inside HTTPAdapter.__init__
        self.tracker = ConnectionTracker()
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs) -> None:
        self._pool_connections = connections
        self._pool_maxsize = maxsize
        self._pool_block = block
        self.poolmanager = _TrackingPoolManager(
            self.tracker,
            num_pools=connections,
            maxsize=maxsize,
            block=block,
            **pool_kwargs,
        )

    def abort(self) -> None:
        count = self.tracker.shutdown_all()
        if count:
            logger.debug("Aborted %d open connection(s)", count)
