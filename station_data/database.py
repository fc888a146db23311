"""Database configuration, root databases and backing store management"""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

import structlog
from sqlalchemy import create_engine, select, text
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.orm import declarative_base

from station_data.config import Settings, settings as default_settings
from station_data.exceptions import ConfigurationError

logger = structlog.get_logger()

# Base class for models
Base = declarative_base()


class RootDatabase:
    """One root database: the index tables plus the backing stores of its data sets.

    Backing stores are databases on MySQL, schemas on PostgreSQL and attached
    database files on SQLite. Store tables are always addressed with the store
    name as schema, so the same Core statements work on every backend.
    """

    def __init__(self, root_db_id: str, url: str, settings: Settings = default_settings):
        self.root_db_id = root_db_id
        self.url = make_url(url)
        self.dialect = self.url.get_backend_name()

        engine_args = {"echo": settings.database_echo, "pool_pre_ping": True}
        if self.dialect == "sqlite":
            database = self.url.database
            if not database or database == ":memory:":
                raise ConfigurationError(f"Root database '{root_db_id}' must be a SQLite file")
            db_path = Path(database)
            self.name = db_path.stem
            self.store_dir = db_path.parent
            self.store_dir.mkdir(parents=True, exist_ok=True)
            engine_args["connect_args"] = {"check_same_thread": False}
        else:
            self.name = self.url.database
            self.store_dir = None
            engine_args["pool_size"] = settings.pool_size

        self.engine = create_engine(self.url, **engine_args)

    def ensure_index(self):
        """Create the index tables and seed the key sequence if needed"""
        from station_data.models.ext_db import ExtDbRecord, ExtDbKeySequence

        Base.metadata.create_all(
            self.engine, tables=[ExtDbRecord.__table__, ExtDbKeySequence.__table__]
        )
        with self.engine.begin() as conn:
            if conn.execute(select(ExtDbKeySequence.ext_db_key)).first() is None:
                conn.execute(ExtDbKeySequence.__table__.insert().values(ext_db_key=0))

    def quote(self, identifier: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(identifier)

    @contextmanager
    def index_lock(self, conn: Connection, table_name: str = "ext_db"):
        """Hold a table write lock for a check-then-set on an index table.

        SQLite serialises writers on its own, callers there rely on
        conditional updates.
        """
        if self.dialect == "mysql":
            conn.exec_driver_sql(f"LOCK TABLES {table_name} WRITE")
        elif self.dialect == "postgresql":
            conn.exec_driver_sql(f"LOCK TABLE {table_name} IN EXCLUSIVE MODE")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if self.dialect == "mysql":
                conn.exec_driver_sql("UNLOCK TABLES")

    def _store_path(self, store_name: str) -> Path:
        return self.store_dir / f"{store_name}.db"

    def _attached(self, conn: Connection) -> List[str]:
        return [row[1] for row in conn.exec_driver_sql("PRAGMA database_list")]

    def _end_transaction(self, conn: Connection):
        # ATTACH and DETACH are refused inside a transaction
        if conn.in_transaction():
            conn.commit()

    def store_exists(self, conn: Connection, store_name: str) -> bool:
        if self.dialect == "sqlite":
            return self._store_path(store_name).exists()
        query = text("SELECT schema_name FROM information_schema.schemata WHERE schema_name = :name")
        return conn.execute(query, {"name": store_name}).first() is not None

    def list_stores(self, conn: Connection) -> List[str]:
        """Names of all existing backing stores belonging to this root"""
        prefix = f"{self.name}_"
        if self.dialect == "sqlite":
            return sorted(p.stem for p in self.store_dir.glob(f"{prefix}*.db"))
        query = text("SELECT schema_name FROM information_schema.schemata")
        return sorted(row[0] for row in conn.execute(query) if row[0].startswith(prefix))

    def create_store(self, conn: Connection, store_name: str):
        if self.dialect == "sqlite":
            self._end_transaction(conn)
            conn.exec_driver_sql(
                f"ATTACH DATABASE ? AS {self.quote(store_name)}", (str(self._store_path(store_name)),)
            )
        elif self.dialect == "mysql":
            conn.exec_driver_sql(f"CREATE DATABASE {self.quote(store_name)} CHARACTER SET latin1")
        else:
            conn.exec_driver_sql(f"CREATE SCHEMA {self.quote(store_name)}")
        logger.info("Backing store created", root_db_id=self.root_db_id, store=store_name)

    def drop_store(self, conn: Connection, store_name: str):
        if self.dialect == "sqlite":
            self._end_transaction(conn)
            if store_name in self._attached(conn):
                conn.exec_driver_sql(f"DETACH DATABASE {self.quote(store_name)}")
            self._store_path(store_name).unlink(missing_ok=True)
        elif self.dialect == "mysql":
            conn.exec_driver_sql(f"DROP DATABASE IF EXISTS {self.quote(store_name)}")
        else:
            conn.exec_driver_sql(f"DROP SCHEMA IF EXISTS {self.quote(store_name)} CASCADE")
        logger.info("Backing store dropped", root_db_id=self.root_db_id, store=store_name)

    def use_store(self, conn: Connection, store_name: str):
        """Make the store the default target for unqualified table names"""
        if self.dialect == "sqlite":
            self._end_transaction(conn)
            if store_name not in self._attached(conn):
                conn.exec_driver_sql(
                    f"ATTACH DATABASE ? AS {self.quote(store_name)}", (str(self._store_path(store_name)),)
                )
        elif self.dialect == "mysql":
            conn.exec_driver_sql(f"USE {self.quote(store_name)}")
        else:
            conn.exec_driver_sql(f"SET search_path TO {self.quote(store_name)}, public")

    def leave_store(self, conn: Connection, store_name: str):
        """Undo use_store before a connection goes back to the pool"""
        self._end_transaction(conn)
        if self.dialect == "sqlite":
            if store_name in self._attached(conn):
                conn.exec_driver_sql(f"DETACH DATABASE {self.quote(store_name)}")
        elif self.dialect == "mysql":
            conn.exec_driver_sql(f"USE {self.quote(self.name)}")
        else:
            conn.exec_driver_sql("RESET search_path")

    def dispose(self):
        self.engine.dispose()


class DatabaseDirectory:
    """Maps root database ids to RootDatabase objects, built on first use"""

    def __init__(self, settings: Settings = default_settings, roots: Optional[Dict[str, str]] = None):
        self.settings = settings
        self.urls = roots if roots is not None else settings.get_root_databases()
        self._roots: Dict[str, RootDatabase] = {}
        self._lock = threading.Lock()

    def get(self, root_db_id: str) -> RootDatabase:
        with self._lock:
            root = self._roots.get(root_db_id)
            if root is None:
                url = self.urls.get(root_db_id)
                if url is None:
                    raise ConfigurationError(f"Unknown root database '{root_db_id}'")
                root = RootDatabase(root_db_id, url, self.settings)
                root.ensure_index()
                self._roots[root_db_id] = root
                logger.info("Root database opened", root_db_id=root_db_id, name=root.name)
            return root

    def root_ids(self) -> List[str]:
        return list(self.urls.keys())

    def open_ids(self) -> List[str]:
        with self._lock:
            return list(self._roots.keys())

    def close(self, root_db_id: str):
        with self._lock:
            root = self._roots.pop(root_db_id, None)
        if root is not None:
            root.dispose()

    def close_all(self):
        for root_db_id in list(self._roots.keys()):
            self.close(root_db_id)
