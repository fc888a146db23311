"""
Connection and Locking Tests

Covers the advisory lock on pooled data sets, including lock ownership
across two registries sharing one root database, and the live server pool.
"""

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError

from station_data.connections import LiveConnectionPool, LiveSession
from station_data.database import DatabaseDirectory
from station_data.exceptions import (
    ConfigurationError,
    DataSetBusyError,
    DataSetDeletedError,
    UnsupportedFormatError,
)
from station_data.models.data_sets import KEY_LMS_LIVE, FormatType
from station_data.models.ext_db import ExtDbRecord
from station_data.registry import Registry

ROOT = "default"


def _persisted_lock(root, key: int) -> bool:
    with root.engine.connect() as conn:
        return bool(conn.execute(select(ExtDbRecord.locked).where(ExtDbRecord.ext_db_key == key)).scalar())


@pytest.fixture
def generic_key(service):
    return service.create_generic(ROOT, FormatType.GENERIC_TV, name="Lock test")


@pytest.fixture
def other_registry(test_settings):
    """A second registry over the same root, standing in for another process"""
    databases = DatabaseDirectory(test_settings)
    registry = Registry(databases, None, test_settings)
    yield registry
    databases.close_all()


def test_locked_connect_sets_and_clears_flag(service, root, generic_key):
    handle = service.get(ROOT, generic_key)

    conn = handle.connect(lock=True)
    assert handle.source.is_locked
    assert _persisted_lock(root, generic_key)

    handle.release(conn)
    assert not handle.source.is_locked
    assert not _persisted_lock(root, generic_key)


def test_second_connect_while_locked_is_busy(service, generic_key):
    handle = service.get(ROOT, generic_key)
    conn = handle.connect(lock=True)
    try:
        with pytest.raises(DataSetBusyError):
            handle.connect(lock=True)
        with pytest.raises(DataSetBusyError):
            handle.connect()
    finally:
        handle.release(conn)

    handle.release(handle.connect(lock=True))


def test_lock_is_seen_by_another_registry(service, generic_key, other_registry):
    """The persisted flag keeps other processes out."""
    handle = service.get(ROOT, generic_key)
    conn = handle.connect(lock=True)
    try:
        other = other_registry.get(ROOT, generic_key)
        with pytest.raises(DataSetBusyError):
            other.connect()
    finally:
        handle.release(conn)

    other.release(other.connect(lock=True))


def test_unlocked_release_keeps_other_lock(service, root, generic_key, other_registry):
    """Releasing a plain connection never clears a lock another connection took."""
    handle = service.get(ROOT, generic_key)
    plain = handle.connect()

    other = other_registry.get(ROOT, generic_key)
    locked = other.connect(lock=True)
    try:
        handle.release(plain)
        assert _persisted_lock(root, generic_key)
        with pytest.raises(DataSetBusyError):
            handle.connect()
    finally:
        other.release(locked)

    assert not _persisted_lock(root, generic_key)


def test_deleted_handle_refuses_connections(service, generic_key):
    handle = service.get(ROOT, generic_key)
    service.delete(ROOT, generic_key)

    assert handle.deleted
    with pytest.raises(DataSetDeletedError):
        handle.connect()


def test_session_numbers_records(service, generic_key):
    handle = service.get(ROOT, generic_key)

    with handle.open_session() as session:
        assert handle.source.is_locked
        assert session.next_key() == 1
        assert session.next_key() == 2

    assert not handle.source.is_locked


def test_session_needs_generic_data(service, wireless_csv):
    key = service.import_wireless(ROOT, *wireless_csv)

    with pytest.raises(UnsupportedFormatError):
        service.get(ROOT, key).open_session()


def test_live_pool_unavailable_without_credentials(tmp_path):
    """A missing credentials file makes the live server permanently unavailable."""
    path = tmp_path / "api_login.props"
    pool = LiveConnectionPool(str(path))

    assert not pool.is_available()
    path.write_text("lms_driver=sqlite\n", encoding="utf-8")
    assert not pool.is_available()
    with pytest.raises(ConfigurationError):
        pool.acquire()


@pytest.fixture
def live_pool(tmp_path):
    """Live pool whose engine factory opens a local SQLite file"""
    path = tmp_path / "api_login.props"
    path.write_text(
        "lms_driver=postgresql\nlms_host=lms.example\nlms_name=lms\nlms_user=reader\nlms_pass=secret\n",
        encoding="utf-8",
    )
    live_url = f"sqlite:///{tmp_path / 'live.db'}"
    pool = LiveConnectionPool(str(path), engine_factory=lambda url, **kwargs: create_engine(live_url, **kwargs))
    yield pool
    pool.dispose()


def test_live_pool_reuses_sessions(live_pool):
    assert live_pool.is_available()
    assert live_pool.database_name == "lms"
    assert live_pool.idle_count == 1

    first = live_pool.acquire()
    second = live_pool.acquire()
    assert live_pool.open_count == 2
    assert live_pool.idle_count == 0

    live_pool.release(first)
    live_pool.release(second)
    assert live_pool.open_count == 0
    assert live_pool.idle_count == 2


def test_failed_live_handshake_keeps_idle_session(live_pool, monkeypatch):
    """A session whose connect fails goes back on the idle stack."""
    assert live_pool.is_available()

    def refuse(session):
        raise OperationalError("connect", {}, Exception("server down"))

    monkeypatch.setattr(LiveSession, "open", refuse)

    with pytest.raises(OperationalError):
        live_pool.acquire()

    assert live_pool.idle_count == 1
    assert live_pool.open_count == 0


def test_live_handle_in_registry(test_settings, live_pool):
    """The live server shows up as a fixed key and matches LMS lists."""
    databases = DatabaseDirectory(test_settings)
    registry = Registry(databases, live_pool, test_settings)
    try:
        handle = registry.get(ROOT, KEY_LMS_LIVE)
        assert handle.is_live
        assert handle.description == "LMS TV live server"
        assert handle.has_am

        keys = [item.key for item in registry.list_handles(ROOT, format_type=FormatType.LMS)]
        assert keys == [KEY_LMS_LIVE]

        with pytest.raises(UnsupportedFormatError):
            handle.connect(lock=True)
        with handle.connection() as conn:
            assert conn.exec_driver_sql("SELECT 1").scalar() == 1
    finally:
        databases.close_all()
