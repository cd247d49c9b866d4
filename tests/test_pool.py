from __future__ import annotations

import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from pathlib import Path

import pytest

from docstore.utils.errors import ConfigurationError, ConnectionFailed, PoolClosed, PoolExhausted
from docstore.utils.pool import ConnectionPool, initialize, parse_target, sqlite_connector


@pytest.mark.parametrize(
    ("target", "expected"),
    [
        ("sqlite:///data/documents.db", Path("data/documents.db")),
        ("sqlite:////var/lib/documents.db", Path("/var/lib/documents.db")),
        ("/srv/documents.db", Path("/srv/documents.db")),
        ("  relative.db  ", Path("relative.db")),
    ],
)
def test_parse_target_accepts_sqlite_locations(target, expected):
    assert parse_target(target) == expected


@pytest.mark.parametrize(
    "target",
    ["", "   ", None, "postgres://user:pw@localhost/db", "sqlite:///", "sqlite:///:memory:", ":memory:"],
)
def test_parse_target_rejects_malformed_targets(target):
    with pytest.raises(ConfigurationError):
        parse_target(target)


def test_initialize_rejects_unreachable_database(tmp_path):
    target = tmp_path / "missing-dir" / "documents.db"

    with pytest.raises(ConfigurationError):
        initialize(f"sqlite:///{target}", 2)


def test_initialize_rejects_file_that_is_not_a_database(tmp_path):
    target = tmp_path / "notes.txt"
    target.write_text("this is definitely not sqlite\n" * 20, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        initialize(str(target), 2)


def test_initialize_rejects_non_positive_size(tmp_path):
    with pytest.raises(ConfigurationError):
        initialize(str(tmp_path / "documents.db"), 0)


def test_initialize_opens_a_single_idle_connection(tmp_path):
    pool = initialize(str(tmp_path / "documents.db"), 3)
    try:
        assert pool.size == 1
        assert pool.idle == 1
        assert pool.available == 3
        assert pool.closed is False
    finally:
        pool.close()


def test_released_connection_is_reused(pool):
    with pool.acquire() as first:
        assert pool.available == pool.max_size - 1
    with pool.acquire() as second:
        assert second is first

    assert pool.available == pool.max_size
    assert pool.size == 1


def test_acquire_times_out_when_every_connection_is_leased(pool):
    with ExitStack() as stack:
        for _ in range(pool.max_size):
            stack.enter_context(pool.acquire())
        assert pool.available == 0

        started = time.monotonic()
        with pytest.raises(PoolExhausted):
            with pool.acquire(timeout=0.05):
                pass
        assert time.monotonic() - started < 2.0

    assert pool.available == pool.max_size


def test_one_more_concurrent_acquirer_than_pool_size_is_refused(pool):
    release = threading.Event()

    def worker() -> str:
        try:
            with pool.acquire(timeout=0.2):
                release.wait(2.0)
                return "leased"
        except PoolExhausted:
            return "exhausted"

    with ThreadPoolExecutor(max_workers=pool.max_size + 1) as executor:
        futures = [executor.submit(worker) for _ in range(pool.max_size + 1)]
        time.sleep(0.5)
        release.set()
        outcomes = [future.result() for future in futures]

    assert outcomes.count("exhausted") >= 1
    assert outcomes.count("leased") <= pool.max_size
    assert pool.available == pool.max_size


def test_waiting_acquirer_receives_released_connection(database_path):
    pool = initialize(str(database_path), 1, timeout=2.0)
    result: dict[str, object] = {}

    def waiter() -> None:
        with pool.acquire() as con:
            result["connection"] = con

    try:
        with pool.acquire() as held:
            thread = threading.Thread(target=waiter)
            thread.start()
            time.sleep(0.1)
            assert "connection" not in result
        thread.join(timeout=2.0)

        assert result["connection"] is held
    finally:
        pool.close()


def test_close_wakes_pending_acquirers(database_path):
    pool = initialize(str(database_path), 1, timeout=5.0)
    errors: list[BaseException] = []

    def waiter() -> None:
        try:
            with pool.acquire():
                pass
        except PoolClosed as exc:
            errors.append(exc)

    with pool.acquire():
        thread = threading.Thread(target=waiter)
        thread.start()
        time.sleep(0.1)
        pool.close()
        thread.join(timeout=2.0)

    assert len(errors) == 1
    assert pool.size == 0


def test_acquire_after_close_fails(pool):
    pool.close()

    with pytest.raises(PoolClosed):
        with pool.acquire():
            pass


def test_close_is_idempotent(pool):
    pool.close()
    pool.close()

    assert pool.closed is True


def test_lease_is_returned_and_rolled_back_on_error(pool, database_path):
    before = pool.available

    with pytest.raises(RuntimeError):
        with pool.acquire() as con:
            con.execute("INSERT INTO documents (external_id, payload) VALUES ('abc', '{}')")
            raise RuntimeError("boom")

    assert pool.available == before
    with pool.acquire() as con:
        assert con.execute("SELECT COUNT(*) FROM documents").fetchone()[0] == 0


def test_uncommitted_work_is_discarded_on_normal_exit(pool):
    with pool.acquire() as con:
        con.execute("INSERT INTO documents (external_id, payload) VALUES ('abc', '{}')")

    with pool.acquire() as con:
        assert con.in_transaction is False
        assert con.execute("SELECT COUNT(*) FROM documents").fetchone()[0] == 0


def test_broken_connection_is_discarded(pool):
    assert pool.size == 1

    with pytest.raises(RuntimeError):
        with pool.acquire() as con:
            con.close()
            raise RuntimeError("connection lost")

    assert pool.size == 0
    assert pool.available == pool.max_size
    with pool.acquire() as con:
        assert con.execute("SELECT 1").fetchone()[0] == 1


def test_connection_failure_frees_the_reserved_slot(tmp_path):
    calls = {"count": 0}

    def failing_connect() -> sqlite3.Connection:
        calls["count"] += 1
        raise sqlite3.OperationalError("unable to open database file")

    pool = ConnectionPool(failing_connect, max_size=1, timeout=0.1, target="broken.db")

    for _ in range(2):
        with pytest.raises(ConnectionFailed):
            with pool.acquire():
                pass

    assert calls["count"] == 2
    assert pool.size == 0
    assert pool.available == 1


def test_connections_are_never_leased_twice(database_path):
    pool = ConnectionPool(sqlite_connector(database_path), max_size=3, timeout=5.0)
    in_use: set[int] = set()
    guard = threading.Lock()
    overlaps: list[int] = []

    def worker() -> None:
        with pool.acquire() as con:
            key = id(con)
            with guard:
                if key in in_use:
                    overlaps.append(key)
                in_use.add(key)
            time.sleep(0.005)
            with guard:
                in_use.discard(key)

    try:
        with ThreadPoolExecutor(max_workers=8) as executor:
            for future in [executor.submit(worker) for _ in range(40)]:
                future.result()

        assert overlaps == []
        assert pool.size <= 3
        assert pool.available == 3
    finally:
        pool.close()
