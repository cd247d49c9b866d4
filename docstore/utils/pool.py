"""Bounded pool of SQLite connections shared by request handlers."""
from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from docstore.utils.errors import ConfigurationError, ConnectionFailed, PoolClosed, PoolExhausted
from docstore.utils.logging import get_logger

logger = get_logger("pool")

SQLITE_SCHEME = "sqlite:///"
DEFAULT_MAX_SIZE = 10
DEFAULT_TIMEOUT = 30.0
DEFAULT_BUSY_TIMEOUT = 5.0

ConnectionFactory = Callable[[], sqlite3.Connection]


def parse_target(target: str | Path | None) -> Path:
    """Translate a connection target into the SQLite database path.

    Accepts ``sqlite:///relative.db``, ``sqlite:////absolute.db`` or a bare
    filesystem path. In-memory databases are rejected because every pooled
    connection would see its own private database.
    """

    raw = str(target).strip() if target is not None else ""
    if not raw:
        raise ConfigurationError("connection target is empty")

    if "://" in raw:
        if not raw.startswith(SQLITE_SCHEME):
            scheme = raw.split("://", 1)[0]
            raise ConfigurationError(f"unsupported connection scheme: {scheme!r}")
        raw = raw[len(SQLITE_SCHEME):]

    if not raw or raw == ":memory:":
        raise ConfigurationError("in-memory databases cannot be pooled")

    return Path(raw).expanduser()


def sqlite_connector(path: Path, *, busy_timeout: float = DEFAULT_BUSY_TIMEOUT) -> ConnectionFactory:
    """Return a factory opening connections that may cross threads."""

    def _connect() -> sqlite3.Connection:
        con = sqlite3.connect(str(path), timeout=busy_timeout, check_same_thread=False)
        con.row_factory = sqlite3.Row
        return con

    return _connect


def _close_quietly(con: sqlite3.Connection) -> None:
    try:
        con.close()
    except sqlite3.Error:
        logger.warning("Failed to close pooled connection", exc_info=True)


def _rollback(con: sqlite3.Connection) -> bool:
    """Roll back the open transaction, returning ``False`` if the connection is unusable."""

    try:
        con.rollback()
    except sqlite3.Error:
        logger.warning("Rollback failed; connection will be discarded", exc_info=True)
        return False
    return True


class ConnectionPool:
    """Hands out at most ``max_size`` connections, one lease at a time each."""

    def __init__(
        self,
        connect: ConnectionFactory,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        target: str = "",
    ) -> None:
        if max_size < 1:
            raise ConfigurationError(f"pool max_size must be at least 1, got {max_size}")
        if timeout < 0:
            raise ConfigurationError(f"pool timeout must not be negative, got {timeout}")

        self.max_size = int(max_size)
        self.timeout = float(timeout)
        self.target = target
        self._connect = connect
        self._idle: list[sqlite3.Connection] = []
        self._opened = 0
        self._leased = 0
        self._closed = False
        self._cond = threading.Condition(threading.Lock())

    @property
    def size(self) -> int:
        """Number of connections currently open, idle or leased."""

        with self._cond:
            return self._opened

    @property
    def idle(self) -> int:
        with self._cond:
            return len(self._idle)

    @property
    def available(self) -> int:
        """Number of leases that can be granted without waiting."""

        with self._cond:
            return self.max_size - self._leased

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @contextmanager
    def acquire(self, timeout: float | None = None) -> Iterator[sqlite3.Connection]:
        """Lease a connection for the duration of the ``with`` block.

        The connection goes back to the pool on every exit path. An open
        transaction is rolled back first; a connection whose rollback fails is
        closed instead of being reused.
        """

        con = self._checkout(timeout)
        broken = False
        try:
            yield con
        except BaseException:
            broken = not _rollback(con)
            raise
        else:
            if con.in_transaction:
                broken = not _rollback(con)
        finally:
            self._checkin(con, broken=broken)

    def close(self) -> None:
        """Close idle connections and refuse further leases.

        Pending acquirers are woken up and fail with :class:`PoolClosed`;
        connections still leased are closed when they are released.
        """

        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle, self._idle = self._idle, []
            self._opened -= len(idle)
            leased = self._leased
            self._cond.notify_all()

        for con in idle:
            _close_quietly(con)
        logger.info(
            "Connection pool closed",
            extra={"target": self.target, "closed_idle": len(idle), "still_leased": leased},
        )

    def _checkout(self, timeout: float | None) -> sqlite3.Connection:
        wait = self.timeout if timeout is None else max(float(timeout), 0.0)
        deadline = time.monotonic() + wait

        with self._cond:
            while True:
                if self._closed:
                    raise PoolClosed("connection pool is closed")
                if self._idle:
                    self._leased += 1
                    return self._idle.pop()
                if self._opened < self.max_size:
                    # Reserve the slot now, connect outside the lock.
                    self._opened += 1
                    self._leased += 1
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        "Connection pool exhausted",
                        extra={"target": self.target, "max_size": self.max_size, "wait_seconds": wait},
                    )
                    raise PoolExhausted(
                        f"no connection became available within {wait:.2f}s (max_size={self.max_size})"
                    )
                self._cond.wait(remaining)

        try:
            con = self._connect()
        except sqlite3.Error as exc:
            with self._cond:
                self._opened -= 1
                self._leased -= 1
                self._cond.notify()
            logger.error(
                "Failed to open database connection",
                extra={"target": self.target, "error": str(exc)},
            )
            raise ConnectionFailed(f"cannot open database {self.target!r}: {exc}") from exc

        logger.debug("Opened pooled connection", extra={"target": self.target})
        return con

    def _checkin(self, con: sqlite3.Connection, *, broken: bool) -> None:
        with self._cond:
            self._leased -= 1
            discard = broken or self._closed
            if discard:
                self._opened -= 1
            else:
                self._idle.append(con)
            self._cond.notify()

        if discard:
            _close_quietly(con)

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"ConnectionPool(target={self.target!r}, max_size={self.max_size}, "
            f"size={self._opened}, leased={self._leased}, closed={self._closed})"
        )


def initialize(
    connection_target: str | Path,
    max_size: int = DEFAULT_MAX_SIZE,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
) -> ConnectionPool:
    """Build the process-wide pool and prove the target is usable.

    One connection is opened eagerly and kept idle. Any problem with the
    target surfaces here as :class:`ConfigurationError` rather than on the
    first request.
    """

    path = parse_target(connection_target)
    pool = ConnectionPool(
        sqlite_connector(path, busy_timeout=busy_timeout),
        max_size=max_size,
        timeout=timeout,
        target=str(path),
    )

    try:
        with pool.acquire() as con:
            con.execute("PRAGMA schema_version").fetchone()
    except ConnectionFailed as exc:
        pool.close()
        raise ConfigurationError(f"cannot open database {str(path)!r}: {exc}") from exc
    except sqlite3.Error as exc:
        pool.close()
        logger.error("Database target is not usable", extra={"target": str(path), "error": str(exc)})
        raise ConfigurationError(f"database {str(path)!r} is not usable: {exc}") from exc

    logger.info(
        "Connection pool initialised",
        extra={"target": str(path), "max_size": pool.max_size, "timeout": pool.timeout},
    )
    return pool


__all__ = [
    "ConnectionPool",
    "initialize",
    "parse_target",
    "sqlite_connector",
    "DEFAULT_MAX_SIZE",
    "DEFAULT_TIMEOUT",
    "DEFAULT_BUSY_TIMEOUT",
]
