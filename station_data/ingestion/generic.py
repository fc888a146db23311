"""Generic data sets: user-composed station records in a single source table.

A generic set starts empty and grows by appends. Appends hold the set's
lock for their duration and number new records after the largest existing
source_key.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import Boolean, Column, Float, Integer, MetaData, String, Table

from station_data.exceptions import UnsupportedFormatError
from station_data.ingestion.importer import TIMESTAMP_ID_FORMAT
from station_data.models.data_sets import DataSetHandle, FormatType, make_store_name
from station_data.registry import Registry

logger = structlog.get_logger()

SOURCE_TABLE = "source"


def source_table(schema: Optional[str] = None) -> Table:
    """The record table of a generic data set"""
    return Table(
        SOURCE_TABLE,
        MetaData(),
        Column("source_key", Integer, primary_key=True, autoincrement=False),
        Column("record_type", Integer, nullable=False, default=0),
        Column("call_sign", String(12), nullable=False, default=""),
        Column("channel", Integer, nullable=False, default=0),
        Column("city", String(20), nullable=False, default=""),
        Column("state", String(2), nullable=False, default=""),
        Column("country", String(2), nullable=False, default=""),
        Column("latitude", Float, nullable=False, default=0.0),
        Column("longitude", Float, nullable=False, default=0.0),
        Column("height_amsl", Float, nullable=False, default=0.0),
        Column("erp", Float, nullable=False, default=0.0),
        Column("has_horizontal_pattern", Boolean, nullable=False, default=False),
        Column("horizontal_pattern_name", String(255), nullable=False, default=""),
        Column("has_vertical_pattern", Boolean, nullable=False, default=False),
        Column("vertical_pattern_name", String(255), nullable=False, default=""),
        schema=schema,
    )


def create_generic_data_set(registry: Registry, root_db_id: str, format_type: FormatType,
                            name: Optional[str] = None) -> int:
    """Create an empty generic data set, returns its key"""
    if not format_type.is_generic:
        raise UnsupportedFormatError("Cannot create station data, unknown or unsupported data type")

    root = registry.databases.get(root_db_id)
    key = registry.allocate_key(root_db_id)
    store_name = make_store_name(root.name, format_type, key)

    with root.engine.connect() as conn:
        root.create_store(conn, store_name)
        try:
            source_table(store_name).create(conn)
            conn.commit()
            root.leave_store(conn, store_name)
            now = datetime.now()
            registry.register_data_set(
                root_db_id, key, format_type, 0, now.strftime(TIMESTAMP_ID_FORMAT),
                name=name, db_date=now, suffix_duplicate_name=True,
            )
        except Exception as e:
            logger.error("Generic station data not created", root_db_id=root_db_id, key=key, error=str(e))
            conn.rollback()
            root.drop_store(conn, store_name)
            raise

    registry.reload(root_db_id)
    return key


class GenericAppender:
    """Adds records to a generic data set under its lock"""

    def __init__(self, registry: Registry):
        self.registry = registry

    def append(self, handle: DataSetHandle, records: Iterable[Dict[str, Any]]) -> List[int]:
        """Insert records, returns the source keys assigned to them in order"""
        if not handle.is_generic:
            raise UnsupportedFormatError("Records can only be added to generic station data")

        table = source_table(handle.store_name)
        defaults = {column.name: column.default.arg for column in table.columns if column.default is not None}
        keys = []
        with handle.open_session() as session:
            rows = []
            for record in records:
                row = dict(defaults)
                row.update(record)
                row["source_key"] = session.next_key()
                keys.append(row["source_key"])
                rows.append(row)
            if rows:
                session.connection.execute(table.insert(), rows)
                session.connection.commit()

        logger.info("Records added to generic station data", root_db_id=handle.root_db_id,
                    key=handle.key, count=len(keys))
        return keys

    def append_to(self, root_db_id: str, key: int, records: Iterable[Dict[str, Any]]) -> List[int]:
        return self.append(self.registry.get(root_db_id, key), records)
