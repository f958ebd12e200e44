"""Management Connection Pool - leasing of vCenter sessions.

Philosophy:
- Connections are created lazily, up to the pool size
- Each lease grants exclusive use of one connection
- Liveness check before every lease, reload on transport failures
- Callers beyond capacity block until a connection is returned or the
  lease timeout elapses

Public API:
    ManagementConnectionPool: Pool of management sessions
    get_connection_pool: Process-wide pool (created on first use)
    set_connection_pool: Install a pool (tests, embedding services)
    reset_connection_pool: Shut down and forget the process-wide pool
"""

import logging
import queue
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

from labvsphere.config_manager import VSphereConfig, get_config
from labvsphere.errors import PoolTimeoutError, RemoteFaultError
from labvsphere.vsphere.client import ManagementClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures of the liveness check that mean the session must be re-established
RECONNECT_ERRORS: tuple[type[Exception], ...] = (
    RemoteFaultError,
    BrokenPipeError,
    ConnectionResetError,
    EOFError,
)


class ManagementConnectionPool:
    """Bounded pool of management client sessions.

    Example:
        >>> pool = ManagementConnectionPool(factory, size=5, timeout=30)
        >>> with pool.connection() as conn:
        ...     conn.power_on_vm(uuid)
        >>> pool.with_connection(lambda conn: conn.find_vm(uuid))
    """

    def __init__(
        self,
        factory: Callable[[], ManagementClient],
        size: int = 5,
        timeout: float = 30.0,
        reconnect_on: tuple[type[Exception], ...] = RECONNECT_ERRORS,
    ):
        """Initialize connection pool.

        Args:
            factory: Creates and connects a new client
            size: Maximum number of connections
            timeout: Seconds to wait for a free connection
            reconnect_on: Liveness-check failures that trigger ``reload()``
        """
        if size <= 0:
            raise ValueError("size must be positive")

        self.factory = factory
        self.size = size
        self.timeout = timeout
        self.reconnect_on = reconnect_on

        self._available: queue.LifoQueue[ManagementClient] = queue.LifoQueue()
        self._created = 0
        self._lock = threading.Lock()
        self._stats = {
            "connections_created": 0,
            "connections_reused": 0,
            "reconnects": 0,
            "lease_timeouts": 0,
        }

    def acquire(self) -> ManagementClient:
        """Lease a connection, creating one if the pool is not full.

        Raises:
            PoolTimeoutError: If no connection is free within the timeout
        """
        try:
            conn = self._available.get_nowait()
        except queue.Empty:
            conn = self._create_or_wait()
        else:
            with self._lock:
                self._stats["connections_reused"] += 1

        self._ensure_alive(conn)
        return conn

    def release(self, conn: ManagementClient) -> None:
        """Return a connection to the pool."""
        self._available.put(conn)

    @contextmanager
    def connection(self) -> Iterator[ManagementClient]:
        """Context manager for a leased connection.

        Yields:
            Management client, returned to the pool on exit whatever happens
        """
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def with_connection(self, fn: Callable[[ManagementClient], T]) -> T:
        """Run ``fn`` with a leased connection and return its result."""
        with self.connection() as conn:
            return fn(conn)

    def _create_or_wait(self) -> ManagementClient:
        with self._lock:
            can_create = self._created < self.size
            if can_create:
                self._created += 1

        if can_create:
            try:
                conn = self.factory()
            except Exception:
                with self._lock:
                    self._created -= 1
                raise
            with self._lock:
                self._stats["connections_created"] += 1
            logger.debug(f"Created management connection {self._created}/{self.size}")
            return conn

        try:
            return self._available.get(timeout=self.timeout)
        except queue.Empty:
            with self._lock:
                self._stats["lease_timeouts"] += 1
            raise PoolTimeoutError(
                f"No management connection available within {self.timeout}s "
                f"(pool size {self.size})"
            ) from None

    def _ensure_alive(self, conn: ManagementClient) -> None:
        """Cheap round trip; reload the session if the transport is broken.

        Any failure here gives the connection back to the pool before
        propagating, so the pool never shrinks.
        """
        try:
            conn.current_time()
        except self.reconnect_on as e:
            logger.info(f"Management session is stale ({type(e).__name__}), reconnecting")
            try:
                conn.reload()
            except Exception:
                self.release(conn)
                raise
            with self._lock:
                self._stats["reconnects"] += 1
        except Exception as e:
            logger.warning(f"Management session check failed: {type(e).__name__}: {e}")
            self.release(conn)
            raise

    def shutdown(self) -> None:
        """Disconnect every idle connection and empty the pool."""
        while True:
            try:
                conn = self._available.get_nowait()
            except queue.Empty:
                break
            try:
                conn.disconnect()
            except Exception as e:
                logger.debug(f"Disconnect error during pool shutdown: {e}")
            with self._lock:
                self._created -= 1

    def get_stats(self) -> dict[str, Any]:
        """Get pool statistics."""
        with self._lock:
            stats: dict[str, Any] = dict(self._stats)
            stats["pool_size"] = self._created
        stats["idle_connections"] = self._available.qsize()
        return stats


_pool: ManagementConnectionPool | None = None
_pool_lock = threading.Lock()


def get_connection_pool(config: VSphereConfig | None = None) -> ManagementConnectionPool:
    """Process-wide pool, created from the configuration on first call.

    Later calls return the same pool and ignore ``config``.
    """
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                config = config or get_config()
                from labvsphere.vsphere.pyvmomi_client import connect

                settings = config.connection
                _pool = ManagementConnectionPool(
                    factory=lambda: connect(settings),
                    size=config.connection_pool.size,
                    timeout=config.connection_pool.timeout,
                )
                logger.info(
                    f"Management connection pool initialized: size={config.connection_pool.size}, "
                    f"timeout={config.connection_pool.timeout}s"
                )
    return _pool


def set_connection_pool(pool: ManagementConnectionPool | None) -> None:
    """Install the process-wide pool."""
    global _pool
    with _pool_lock:
        _pool = pool


def reset_connection_pool() -> None:
    """Shut down the process-wide pool; the next call creates a new one."""
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.shutdown()
        _pool = None


__all__ = [
    "RECONNECT_ERRORS",
    "ManagementConnectionPool",
    "get_connection_pool",
    "reset_connection_pool",
    "set_connection_pool",
]
