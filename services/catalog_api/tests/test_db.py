import threading

import psycopg2
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from psycopg2.pool import PoolError

from services.catalog_api import config, db as database
from services.catalog_api.app import app


class _FakeConn:
    def __init__(self, sslmode: str = "prefer") -> None:
        self.sslmode = sslmode
        self.closed = 0
        self.autocommit = True
        self.encoding = None
        self.rollbacks = 0

    def set_client_encoding(self, encoding: str) -> None:
        self.encoding = encoding

    def rollback(self) -> None:
        self.rollbacks += 1


class _FakePool:
    def __init__(self) -> None:
        self.handed_out = []
        self.returned = []

    def getconn(self) -> _FakeConn:
        conn = _FakeConn()
        self.handed_out.append(conn)
        return conn

    def putconn(self, conn, close=False) -> None:
        self.returned.append((conn, close))


@pytest.fixture
def pool(monkeypatch: pytest.MonkeyPatch) -> _FakePool:
    fake = _FakePool()
    monkeypatch.setattr(database, "get_pool", lambda: fake)
    monkeypatch.setattr(database, "_pool_slots", threading.BoundedSemaphore(1))
    monkeypatch.setattr(config, "DB_POOL_WAIT_SECONDS", 0.05)
    return fake


# ── SSL fallback ────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "preferred, expected",
    [
        ("prefer", ["prefer", "require", "disable"]),
        ("require", ["require", "disable"]),
        ("disable", ["disable", "require"]),
        ("", ["require", "disable"]),
    ],
)
def test_ssl_mode_candidates(preferred: str, expected: list) -> None:
    assert database.ssl_mode_candidates(preferred) == expected


def test_connect_falls_back_to_next_ssl_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "DB_SSL_MODE", "prefer")
    tried = []

    def fake_connect(url, sslmode, **kwargs):
        tried.append(sslmode)
        if sslmode == "prefer":
            raise psycopg2.OperationalError("server does not support SSL")
        return _FakeConn(sslmode)

    monkeypatch.setattr(psycopg2, "connect", fake_connect)

    conn = database.connect("postgresql://app:pw@db.test/catalog")

    assert tried == ["prefer", "require"]
    assert conn.sslmode == "require"
    assert conn.autocommit is False
    assert conn.encoding == "UTF8"


def test_connect_reraises_last_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "DB_SSL_MODE", "require")

    def fake_connect(url, sslmode, **kwargs):
        raise psycopg2.OperationalError(f"refused with {sslmode}")

    monkeypatch.setattr(psycopg2, "connect", fake_connect)

    with pytest.raises(psycopg2.OperationalError, match="refused with disable"):
        database.connect("postgresql://db.test/catalog")


def test_connect_requires_url() -> None:
    with pytest.raises(ValueError, match="DATABASE_URL"):
        database.connect("")


def test_pool_creation_falls_back_to_next_ssl_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "DATABASE_URL", "postgresql://db.test/catalog")
    monkeypatch.setattr(config, "DB_SSL_MODE", "verify-full")
    monkeypatch.setattr(database, "_pool", None)
    tried = []

    class FakeThreadedPool:
        def __init__(self, minconn, maxconn, dsn, sslmode, **kwargs):
            tried.append(sslmode)
            if sslmode == "verify-full":
                raise psycopg2.OperationalError("root certificate file does not exist")
            self.sslmode = sslmode

    monkeypatch.setattr(database, "ThreadedConnectionPool", FakeThreadedPool)

    created = database.get_pool()

    assert tried == ["verify-full", "require"]
    assert created.sslmode == "require"
    assert database.get_pool() is created


def test_pool_without_database_url_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(database, "_pool", None)

    with pytest.raises(HTTPException) as exc:
        database.get_pool()
    assert exc.value.status_code == 503
    assert exc.value.detail == "Database not configured"


def test_routes_answer_503_without_database() -> None:
    response = TestClient(app).get("/api/movies/genres")

    assert response.status_code == 503
    assert response.json() == {"message": "Database not configured"}


# ── Request connections ─────────────────────────────────────────────

def test_get_db_rolls_back_and_returns_connection(pool: _FakePool) -> None:
    dependency = database.get_db()
    db = next(dependency)
    dependency.close()

    conn = pool.handed_out[0]
    assert db.conn is conn
    assert conn.rollbacks == 1
    assert pool.returned == [(conn, False)]


def test_closed_connections_are_discarded(pool: _FakePool) -> None:
    dependency = database.get_db()
    next(dependency)
    pool.handed_out[0].closed = 1
    dependency.close()

    conn = pool.handed_out[0]
    assert conn.rollbacks == 0
    assert pool.returned == [(conn, True)]


def test_checkout_answers_503_when_pool_stays_full(pool: _FakePool) -> None:
    held = database.checkout_connection()

    with pytest.raises(HTTPException) as exc:
        database.checkout_connection()
    assert exc.value.status_code == 503
    assert exc.value.detail == "Database busy"

    database.release_connection(*held)
    _, conn = database.checkout_connection()
    assert conn is pool.handed_out[1]


def test_checkout_waits_for_a_released_connection(pool: _FakePool, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "DB_POOL_WAIT_SECONDS", 5)
    held = database.checkout_connection()
    got = []
    waiter = threading.Thread(target=lambda: got.append(database.checkout_connection()))

    waiter.start()
    database.release_connection(*held)
    waiter.join(timeout=5)

    assert len(got) == 1
    assert len(pool.handed_out) == 2


def test_failed_checkout_frees_its_slot(pool: _FakePool, monkeypatch: pytest.MonkeyPatch) -> None:
    getconn = pool.getconn
    failures = [PoolError("connection pool exhausted")]

    def flaky_getconn():
        if failures:
            raise failures.pop()
        return getconn()

    monkeypatch.setattr(pool, "getconn", flaky_getconn)

    with pytest.raises(PoolError):
        database.checkout_connection()
    _, conn = database.checkout_connection()
    assert conn is pool.handed_out[0]
