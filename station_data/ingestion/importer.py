"""Import pipeline: data files into a new backing store and a new index row.

An import opens every file of the format first, so a missing required file
fails before anything is created. It then allocates a key, creates the
store, copies each file into its own table and finally registers the data
set. Any failure after the store exists drops the store again.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import Column, Float, Index, Integer, MetaData, SmallInteger, Table, Text, UniqueConstraint
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from station_data.config import Settings, settings as default_settings
from station_data.exceptions import (
    ImportCancelledError,
    ImportFailedError,
    SchemaMismatchError,
    UnsupportedFormatError,
)
from station_data.ingestion.archive import ArchiveSource
from station_data.ingestion.flatfile import DateCounter, RecordReader, parse_header, valid_field_names
from station_data.ingestion.table_specs import (
    DATE_FORMATS,
    FORMAT_FILES,
    FORMAT_VERSIONS,
    ImportFieldSpec,
    ImportFileSpec,
    load_table_defs,
)
from station_data.models.data_sets import FormatType, make_store_name
from station_data.registry import Registry
from station_data.status import StatusReporter

logger = structlog.get_logger()

TIMESTAMP_ID_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ImportColumn:
    """A column of an import table and how its raw text is converted"""
    name: str
    spec: Optional[ImportFieldSpec]

    @property
    def is_text(self) -> bool:
        return self.spec is None or self.spec.is_text

    def column_type(self):
        return self.spec.type if self.spec is not None else Text()


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return int(float(value))


def _converter(column: ImportColumn) -> Callable[[str], object]:
    if column.is_text:
        return lambda value: value
    if isinstance(column.spec.type, (Integer, SmallInteger)):
        return lambda value: _to_int(value) if value.strip() else 0
    if isinstance(column.spec.type, Float):
        return lambda value: float(value) if value.strip() else 0.0
    return lambda value: value


def match_fields(names: List[str], file_spec: ImportFileSpec, version: int) -> Tuple[List[ImportColumn], int]:
    """Pair file columns with field specs and work out the effective version.

    The first column whose name matches a spec takes it. Columns with no
    spec become text. A missing strictly required field is an error, a
    missing versioned field lowers the version below its min_version.
    """
    remaining = list(file_spec.fields)
    columns = []
    seen = set()
    for name in names:
        column_name = name.lower()
        if column_name in seen:
            raise SchemaMismatchError(
                f"Duplicate field name '{name}' in data file '{file_spec.file_name}'", file_spec.file_name
            )
        seen.add(column_name)
        spec = next((s for s in remaining if s.name.lower() == column_name), None)
        if spec is not None:
            remaining.remove(spec)
        columns.append(ImportColumn(column_name, spec))

    for spec in remaining:
        if spec.min_version == 0:
            raise SchemaMismatchError(
                f"Missing required field '{spec.name}' in data file '{file_spec.file_name}'", file_spec.file_name
            )
        if spec.min_version <= version:
            version = spec.min_version - 1
    return columns, version


def build_table(file_spec: ImportFileSpec, columns: List[ImportColumn], schema: str) -> Table:
    """Table for one data file, constraints limited to columns actually present"""
    present = {column.name for column in columns}
    primary_key = [name for name in file_spec.primary_key if name in present]
    table_args = []
    for column in columns:
        table_args.append(Column(
            column.name, column.column_type(),
            primary_key=column.name in primary_key, autoincrement=False,
        ))
    for unique_columns in file_spec.unique:
        if all(name in present for name in unique_columns):
            table_args.append(UniqueConstraint(*unique_columns))
    for name in file_spec.indexes:
        if name in present and name not in primary_key:
            table_args.append(Index(f"idx_{file_spec.table_name}_{name}", name))
    return Table(file_spec.table_name, MetaData(), *table_args, schema=schema)


class Importer:
    """Creates data sets from downloaded or user-supplied data files"""

    def __init__(self, registry: Registry, settings: Settings = default_settings):
        self.registry = registry
        self.settings = settings

    def import_data_set(self, root_db_id: str, format_type: FormatType, source_path,
                        name: Optional[str] = None, status: Optional[StatusReporter] = None,
                        is_download: bool = False) -> int:
        """Import a directory or ZIP archive of data files, returns the new key"""
        file_specs = FORMAT_FILES.get(format_type)
        if file_specs is None:
            raise UnsupportedFormatError(f"Station data type '{format_type.type_name}' cannot be imported")
        status = status or StatusReporter()
        root = self.registry.databases.get(root_db_id)
        version = FORMAT_VERSIONS[format_type]

        table_defs: Dict[str, List[str]] = {}
        if any(file_spec.names_from_defs for file_spec in file_specs):
            table_defs = load_table_defs(self.settings.cdbs_table_defs_path)

        logger.info("Starting import", root_db_id=root_db_id, format=format_type.type_name,
                    source=str(source_path), is_download=is_download)

        with ArchiveSource(source_path) as archive:
            to_copy = []
            for file_spec in file_specs:
                if not archive.has(file_spec.file_name):
                    if file_spec.required:
                        raise SchemaMismatchError(
                            f"Missing required data file '{file_spec.file_name}'", file_spec.file_name
                        )
                    if 0 < file_spec.min_version <= version:
                        version = file_spec.min_version - 1
                    continue
                if file_spec.names_from_defs and file_spec.table_name not in table_defs:
                    raise SchemaMismatchError(
                        f"Missing field names for table '{file_spec.table_name}'", file_spec.file_name
                    )
                to_copy.append(file_spec)

            key = self.registry.allocate_key(root_db_id)
            store_name = make_store_name(root.name, format_type, key)
            date_format = DATE_FORMATS.get(format_type)
            date_counter = DateCounter(date_format) if date_format else None

            with root.engine.connect() as conn:
                root.create_store(conn, store_name)
                try:
                    for file_spec in to_copy:
                        if status.is_cancelled:
                            raise ImportCancelledError("Import cancelled")
                        status.report_status(f"Importing {file_spec.file_name}...")
                        version = self._copy_table(
                            conn, store_name, archive, file_spec, table_defs, version, date_counter
                        )

                    now = datetime.now()
                    if date_counter is not None:
                        data_set_id = date_counter.date_string()
                        db_date = date_counter.latest or now
                    else:
                        data_set_id = now.strftime(TIMESTAMP_ID_FORMAT)
                        db_date = now

                    root.leave_store(conn, store_name)
                    self.registry.register_data_set(
                        root_db_id, key, format_type, version, data_set_id,
                        name=name, db_date=db_date, is_download=is_download,
                    )
                except Exception as e:
                    logger.error("Import failed, dropping backing store", root_db_id=root_db_id,
                                 key=key, store=store_name, error=str(e))
                    conn.rollback()
                    root.drop_store(conn, store_name)
                    raise

        if is_download and self.settings.auto_delete_previous_download:
            self.registry.retire_downloads(root_db_id, format_type, key)
        self.registry.reload(root_db_id)

        status.log_message(f"Imported {format_type.type_name} station data, key {key}, version {version}")
        return key

    def _field_names(self, file_spec: ImportFileSpec, table_defs: Dict[str, List[str]],
                     stream) -> Tuple[List[str], int]:
        """Field names and the line number of the first record"""
        if file_spec.field_names is not None:
            return list(file_spec.field_names), 1
        if file_spec.names_from_defs:
            names = table_defs[file_spec.table_name]
            if not valid_field_names(names):
                raise SchemaMismatchError(
                    f"Bad field names for table '{file_spec.table_name}'", file_spec.file_name
                )
            return names, 1
        names = parse_header(stream.readline())
        if names is None:
            raise SchemaMismatchError(
                f"Bad or missing field names in data file '{file_spec.file_name}'", file_spec.file_name
            )
        return names, 2

    def _copy_table(self, conn: Connection, store_name: str, archive: ArchiveSource,
                    file_spec: ImportFileSpec, table_defs: Dict[str, List[str]], version: int,
                    date_counter: Optional[DateCounter]) -> int:
        file_name = file_spec.file_name
        reader = None
        try:
            with archive.open(file_name) as stream:
                names, first_line = self._field_names(file_spec, table_defs, stream)
                columns, version = match_fields(names, file_spec, version)
                table = build_table(file_spec, columns, store_name)
                table.create(conn)

                converters = [_converter(column) for column in columns]
                date_index = None
                if date_counter is not None and file_spec.date_field is not None:
                    date_name = file_spec.fields[file_spec.date_field].name
                    date_index = next((i for i, c in enumerate(columns) if c.name == date_name), None)

                max_length = self.settings.import_max_statement_length
                batch = []
                batch_length = 0
                row_count = 0
                reader = RecordReader(stream, file_name, len(columns), first_line=first_line)
                for fields in reader:
                    if date_index is not None:
                        date_counter.add(fields[date_index])
                    try:
                        row = {
                            column.name: convert(value)
                            for column, convert, value in zip(columns, converters, fields)
                        }
                    except ValueError as e:
                        raise ImportFailedError(f"Bad numeric value, {e}", file_name, reader.line)
                    batch.append(row)
                    batch_length += sum(len(value) for value in fields) + len(fields)
                    if batch_length >= max_length:
                        conn.execute(table.insert(), batch)
                        row_count += len(batch)
                        batch = []
                        batch_length = 0
                if batch:
                    conn.execute(table.insert(), batch)
                    row_count += len(batch)
                conn.commit()
        except (SQLAlchemyError, OSError, UnicodeDecodeError) as e:
            line = reader.line if reader is not None else 1
            raise ImportFailedError(str(e), file_name, line) from e

        logger.info("Data file copied", store=store_name, table=file_spec.table_name, rows=row_count)
        return version