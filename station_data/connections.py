"""Connection sources for data set handles.

Imported and generic data sets live in backing stores of a root database
and are reached through the root's SQLAlchemy pool. They also carry an
advisory lock: a row flag in the index table, set and checked under a short
table lock so the check-then-set is atomic across processes. The live
server is reached through a separate pool seeded from a credentials file.
"""

import threading
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from typing import Callable, Dict, Optional

import structlog
from pydantic import ValidationError
from pydantic_settings import BaseSettings
from sqlalchemy import column, create_engine, func, select, table, update
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from station_data.database import RootDatabase
from station_data.exceptions import (
    ConfigurationError,
    DataSetBusyError,
    DataSetDeletedError,
    UnsupportedFormatError,
)
from station_data.models.data_sets import DataSetHandle
from station_data.models.ext_db import ExtDbRecord

logger = structlog.get_logger()


class ConnectionSource(ABC):
    """How connections to one data set are made and given back"""

    @abstractmethod
    def connect(self, lock: bool = False) -> Connection:
        pass

    @abstractmethod
    def release(self, conn: Connection):
        pass

    def open_session(self) -> "LockSession":
        raise UnsupportedFormatError("Connect failed, station data cannot be locked")


class LockSession:
    """A locked connection to a generic data set plus its record key counter.

    Keys handed out by next_key() continue from the largest source_key in
    the store when the session was opened. Closing releases the connection,
    which clears the lock.
    """

    def __init__(self, source: ConnectionSource, conn: Connection, next_record_key: int):
        self.source = source
        self.connection = conn
        self._next_record_key = next_record_key
        self.closed = False

    def next_key(self) -> int:
        key = self._next_record_key
        self._next_record_key += 1
        return key

    def close(self):
        if not self.closed:
            self.closed = True
            self.source.release(self.connection)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class PooledConnectionSource(ConnectionSource):
    """Connections from the root database pool, switched to the data set's store"""

    def __init__(self, root: RootDatabase, handle: DataSetHandle):
        self.root = root
        self.handle = handle
        self._mutex = threading.RLock()
        self._lock_holder: Optional[Connection] = None

    @property
    def is_locked(self) -> bool:
        return self._lock_holder is not None

    def connect(self, lock: bool = False) -> Connection:
        key = self.handle.key
        with self._mutex:
            if self.handle.deleted:
                logger.warning("Connect refused, station data deleted", key=key)
                raise DataSetDeletedError(key)
            if self._lock_holder is not None:
                logger.warning("Connect refused, station data in use", key=key)
                raise DataSetBusyError(key)

            conn = self.root.engine.connect()
            try:
                with self.root.index_lock(conn):
                    was_locked = bool(conn.execute(
                        select(ExtDbRecord.locked).where(ExtDbRecord.ext_db_key == key)
                    ).scalar())
                    if not was_locked and lock:
                        result = conn.execute(
                            update(ExtDbRecord)
                            .where(ExtDbRecord.ext_db_key == key, ExtDbRecord.locked.is_(False))
                            .values(locked=True)
                        )
                        was_locked = result.rowcount != 1
                        if not was_locked:
                            self._lock_holder = conn
                if was_locked:
                    logger.warning("Connect refused, station data locked", key=key)
                    raise DataSetBusyError(key)
                self.root.use_store(conn, self.handle.store_name)
            except Exception:
                if self._lock_holder is conn:
                    self._lock_holder = None
                    self._clear_persisted_lock()
                conn.close()
                raise

            logger.debug("Station data connected", key=key, locked=self._lock_holder is conn)
            return conn

    def release(self, conn: Connection):
        with self._mutex:
            try:
                self.root.leave_store(conn, self.handle.store_name)
            finally:
                # Only the connection that took the lock clears it
                if self._lock_holder is conn:
                    self._lock_holder = None
                    self._clear_persisted_lock()
                conn.close()

    def _clear_persisted_lock(self):
        with self.root.engine.begin() as conn:
            conn.execute(
                update(ExtDbRecord).where(ExtDbRecord.ext_db_key == self.handle.key).values(locked=False)
            )

    def open_session(self) -> LockSession:
        if not self.handle.is_generic:
            raise UnsupportedFormatError("Connect failed, station data cannot be locked")
        conn = self.connect(lock=True)
        try:
            source_table = table("source", column("source_key"), schema=self.handle.store_name)
            max_key = conn.execute(select(func.max(source_table.c.source_key))).scalar()
        except SQLAlchemyError:
            self.release(conn)
            raise
        return LockSession(self, conn, (max_key or 0) + 1)


class LiveCredentials(BaseSettings):
    """Login properties for the live server, read from a properties file"""

    lms_driver: str
    lms_host: str
    lms_name: str
    lms_user: str
    lms_pass: str

    class Config:
        case_sensitive = False
        extra = "ignore"

    def to_url(self) -> URL:
        return URL.create(
            drivername=self.lms_driver,
            username=self.lms_user,
            password=self.lms_pass,
            host=self.lms_host,
            database=self.lms_name,
        )


class LiveSession:
    """One reusable live server connection slot"""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.connection: Optional[Connection] = None

    def open(self) -> Connection:
        self.connection = self.engine.connect()
        return self.connection

    def close(self):
        if self.connection is not None:
            self.connection.close()
            self.connection = None


class LiveConnectionPool:
    """Pool of live server connections shared by every live handle.

    Credentials are read on first use only. If the file is missing or
    incomplete, or the first connection fails, the live server stays
    unavailable for the life of the pool.
    """

    def __init__(self, credentials_path: str, schema: str = "mass_media",
                 engine_factory: Callable[..., Engine] = create_engine):
        self.credentials_path = credentials_path
        self.schema = schema
        self.engine_factory = engine_factory
        self.database_name: Optional[str] = None
        self._mutex = threading.Lock()
        self._did_try_open = False
        self._seed_engine: Optional[Engine] = None
        self._idle: deque = deque()
        self._open: Dict[int, LiveSession] = {}

    def is_available(self) -> bool:
        with self._mutex:
            if not self._did_try_open:
                self._did_try_open = True
                self._open_seed()
            return self._seed_engine is not None

    def _open_seed(self):
        path = Path(self.credentials_path)
        if not path.exists():
            logger.debug("No live server credentials", path=str(path))
            return
        try:
            credentials = LiveCredentials(_env_file=str(path))
        except ValidationError:
            logger.debug("Live server credentials incomplete", path=str(path))
            return

        engine = self.engine_factory(credentials.to_url(), poolclass=NullPool)
        try:
            with engine.connect():
                pass
        except SQLAlchemyError as e:
            logger.error("Cannot open live server connection, properties may be invalid", error=str(e))
            engine.dispose()
            return

        self._seed_engine = engine
        self.database_name = credentials.lms_name
        self._idle.append(LiveSession(engine))
        logger.info("Live server available", host=credentials.lms_host, database=credentials.lms_name)

    def acquire(self) -> Connection:
        with self._mutex:
            if self._seed_engine is None:
                raise ConfigurationError("The live server is not available")
            session = self._idle.pop() if self._idle else LiveSession(self._seed_engine)
        try:
            conn = session.open()
        except SQLAlchemyError:
            with self._mutex:
                self._idle.append(session)
            raise
        with self._mutex:
            self._open[id(conn)] = session
        return conn

    def release(self, conn: Connection):
        with self._mutex:
            session = self._open.pop(id(conn), None)
        if session is None:
            return
        session.close()
        with self._mutex:
            self._idle.append(session)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def open_count(self) -> int:
        return len(self._open)

    def dispose(self):
        with self._mutex:
            for session in self._open.values():
                session.close()
            self._open.clear()
            self._idle.clear()
            if self._seed_engine is not None:
                self._seed_engine.dispose()


class LiveConnectionSource(ConnectionSource):
    """Connections to the live server, never locked"""

    def __init__(self, pool: LiveConnectionPool):
        self.pool = pool

    def connect(self, lock: bool = False) -> Connection:
        if lock:
            raise UnsupportedFormatError("Connect failed, live station data cannot be locked")
        return self.pool.acquire()

    def release(self, conn: Connection):
        self.pool.release(conn)
