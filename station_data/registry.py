"""Registry of external data sets with a per-root metadata cache"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from station_data.config import Settings, settings as default_settings
from station_data.connections import (
    LiveConnectionPool,
    LiveConnectionSource,
    PooledConnectionSource,
)
from station_data.database import DatabaseDirectory
from station_data.exceptions import (
    DataSetBusyError,
    DataSetDeletedError,
    InvalidKeyError,
    InvalidNameError,
    StationDataError,
)
from station_data.ingestion.table_specs import FORMAT_VERSIONS
from station_data.models.data_sets import (
    DOWNLOAD_SET_NAME,
    KEY_LMS_LIVE,
    LIVE_DATA_SET_NAME,
    MOST_RECENT_KEYS,
    MOST_RECENT_NAMES,
    NAME_MAX_LENGTH,
    NAME_UNIQUE_CHAR,
    RESERVED_KEY_RANGE_END,
    RESERVED_KEY_RANGE_START,
    DataSetHandle,
    FormatType,
    HandleListItem,
    RecordKind,
    is_reserved_key,
    make_store_name,
)
from station_data.models.ext_db import ExtDbKeySequence, ExtDbRecord

logger = structlog.get_logger()

Listener = Callable[[str], None]


@dataclass
class RootCache:
    """Cached handles of one root database"""
    handles: Dict[int, DataSetHandle] = field(default_factory=dict)
    most_recent: Dict[int, DataSetHandle] = field(default_factory=dict)
    refreshed_at: Optional[float] = None
    listeners: List[Listener] = field(default_factory=list)


def _is_newer(candidate: DataSetHandle, current: DataSetHandle) -> bool:
    if candidate.source_date is None:
        return False
    if current.source_date is None:
        return True
    return candidate.source_date > current.source_date


def _sort_key(key: int, format_type: FormatType) -> Tuple[int, int, int]:
    # Reserved keys first and ascending, concrete keys newest first
    if is_reserved_key(key):
        return (format_type.sort_rank, 0, key)
    return (format_type.sort_rank, 1, -key)


class Registry:
    """Handles for the data sets of every configured root database.

    Each root has its own cache, refreshed from the ext_db index when older
    than the configured TTL or when a key is not found. Handles are updated
    in place on refresh so callers holding one see renames and deletes.
    """

    def __init__(self, databases: DatabaseDirectory, live_pool: Optional[LiveConnectionPool] = None,
                 settings: Settings = default_settings, clock: Callable[[], float] = time.monotonic):
        self.databases = databases
        self.live_pool = live_pool
        self.settings = settings
        self.clock = clock
        self._caches: Dict[str, RootCache] = {}
        self._lock = threading.RLock()

    # Cache maintenance

    def _cache(self, root_db_id: str) -> RootCache:
        cache = self._caches.get(root_db_id)
        if cache is None:
            cache = RootCache()
            if self.live_pool is not None and self.live_pool.is_available():
                live = DataSetHandle(
                    root_db_id=root_db_id,
                    key=KEY_LMS_LIVE,
                    format_type=FormatType.LMS_LIVE,
                    store_name="",
                    version=FORMAT_VERSIONS[FormatType.LMS],
                    name=LIVE_DATA_SET_NAME,
                    description=LIVE_DATA_SET_NAME,
                    source=LiveConnectionSource(self.live_pool),
                )
                cache.handles[KEY_LMS_LIVE] = live
            self._caches[root_db_id] = cache
        return cache

    def _fresh_cache(self, root_db_id: str) -> RootCache:
        cache = self._cache(root_db_id)
        if (cache.refreshed_at is None or
                self.clock() - cache.refreshed_at > self.settings.cache_ttl_seconds):
            self._refresh(root_db_id, cache)
        return cache

    def _refresh(self, root_db_id: str, cache: RootCache):
        root = self.databases.get(root_db_id)
        query = select(
            ExtDbRecord.ext_db_key,
            ExtDbRecord.db_type,
            ExtDbRecord.db_date,
            ExtDbRecord.version,
            ExtDbRecord.id,
            ExtDbRecord.name,
            ExtDbRecord.deleted,
            ExtDbRecord.is_download,
        ).order_by(ExtDbRecord.ext_db_key.desc())
        with root.engine.connect() as conn:
            rows = conn.execute(query).all()

        cache.most_recent.clear()
        for row in rows:
            format_type = FormatType.from_code(row.db_type)
            if format_type is None or format_type == FormatType.LMS_LIVE:
                logger.debug("Skipping unknown data set type", key=row.ext_db_key, db_type=row.db_type)
                continue

            handle = cache.handles.get(row.ext_db_key)
            if handle is None:
                handle = DataSetHandle(
                    root_db_id=root_db_id,
                    key=row.ext_db_key,
                    format_type=format_type,
                    store_name=make_store_name(root.name, format_type, row.ext_db_key),
                    version=row.version,
                    source_date=row.db_date,
                )
                handle.source = PooledConnectionSource(root, handle)
                cache.handles[handle.key] = handle

            handle.id = row.id or ""
            handle.name = row.name or ""
            handle.deleted = bool(row.deleted)
            handle.is_download = bool(row.is_download)
            handle.refresh_description()

            most_recent_key = MOST_RECENT_KEYS.get(format_type)
            if most_recent_key is not None and not handle.deleted:
                current = cache.most_recent.get(most_recent_key)
                if current is None or _is_newer(handle, current):
                    cache.most_recent[most_recent_key] = handle

        cache.refreshed_at = self.clock()
        logger.debug("Registry cache refreshed", root_db_id=root_db_id, count=len(rows))

    @staticmethod
    def _lookup(cache: RootCache, key: int) -> Optional[DataSetHandle]:
        handle = cache.most_recent.get(key)
        if handle is None:
            handle = cache.handles.get(key)
        return handle

    def reload(self, root_db_id: str):
        """Refresh the cache now and tell listeners"""
        with self._lock:
            cache = self._cache(root_db_id)
            self._refresh(root_db_id, cache)
            listeners = list(cache.listeners)
        for listener in listeners:
            listener(root_db_id)

    def invalidate(self, root_db_id: str):
        """Force the next read to refresh"""
        with self._lock:
            cache = self._caches.get(root_db_id)
            if cache is not None:
                cache.refreshed_at = None

    def add_listener(self, root_db_id: str, listener: Listener):
        with self._lock:
            cache = self._cache(root_db_id)
            if listener not in cache.listeners:
                cache.listeners.append(listener)

    def remove_listener(self, root_db_id: str, listener: Listener):
        with self._lock:
            cache = self._caches.get(root_db_id)
            if cache is not None and listener in cache.listeners:
                cache.listeners.remove(listener)

    # Lookups

    def get(self, root_db_id: str, key: int, include_deleted: bool = False) -> DataSetHandle:
        """Handle for a key, resolving the most-recent keys to a concrete set"""
        with self._lock:
            cache = self._fresh_cache(root_db_id)
            handle = self._lookup(cache, key)
            if handle is None:
                self._refresh(root_db_id, cache)
                handle = self._lookup(cache, key)
        if handle is None:
            raise InvalidKeyError(root_db_id, key)
        if handle.deleted and not include_deleted:
            logger.warning("Station data has been deleted", root_db_id=root_db_id, key=key)
            raise DataSetDeletedError(key)
        return handle

    def find_by_name(self, root_db_id: str, name: str) -> Optional[DataSetHandle]:
        if not name:
            return None
        wanted = name.lower()
        with self._lock:
            cache = self._fresh_cache(root_db_id)
            for handle in cache.handles.values():
                if not handle.deleted and handle.name.lower() == wanted:
                    return handle
        return None

    def handles(self, root_db_id: str) -> List[DataSetHandle]:
        """All non-deleted handles in display order"""
        with self._lock:
            cache = self._fresh_cache(root_db_id)
            result = [h for h in cache.handles.values() if not h.deleted]
        result.sort(key=lambda h: (h.format_type.sort_rank, -h.key))
        return result

    def list_handles(self, root_db_id: str, record_kind: Optional[RecordKind] = None,
                     format_type: Optional[FormatType] = None, min_version: int = 0,
                     include_generic: bool = True, include_most_recent: bool = True) -> List[HandleListItem]:
        """Filtered list of data sets for display.

        Asking for LMS also returns the live server. Most-recent entries are
        described by their category name and filtered on the set they point
        to, except that include_generic does not apply to them.
        """
        def matches(handle: DataSetHandle, live_matches_lms: bool) -> bool:
            if record_kind is not None and handle.record_kind != record_kind:
                return False
            if format_type is not None and handle.format_type != format_type:
                if not (live_matches_lms and format_type == FormatType.LMS and handle.is_live):
                    return False
            return handle.version >= min_version

        items: List[HandleListItem] = []
        with self._lock:
            cache = self._fresh_cache(root_db_id)
            for handle in cache.handles.values():
                if handle.deleted or (handle.is_generic and not include_generic):
                    continue
                if matches(handle, True):
                    items.append(HandleListItem(handle.key, handle.description, handle.format_type))
            if include_most_recent:
                for key, handle in cache.most_recent.items():
                    if matches(handle, False):
                        items.append(HandleListItem(key, MOST_RECENT_NAMES[key], handle.format_type))

        items.sort(key=lambda item: _sort_key(item.key, item.format_type))
        return items

    def type_name(self, root_db_id: str, key: int) -> str:
        try:
            return self.get(root_db_id, key, include_deleted=True).type_name
        except (StationDataError, SQLAlchemyError):
            return FormatType.LMS_LIVE.type_name if key == KEY_LMS_LIVE else ""

    def describe(self, root_db_id: str, key: int) -> str:
        try:
            return self.get(root_db_id, key, include_deleted=True).description
        except (StationDataError, SQLAlchemyError):
            return f"{LIVE_DATA_SET_NAME} (offline)" if key == KEY_LMS_LIVE else ""

    # Names

    def check_name(self, root_db_id: str, new_name: str, old_name: Optional[str] = None):
        """Raise InvalidNameError if new_name cannot be given to a data set"""
        new_name = new_name.strip()
        if old_name is not None and new_name.lower() == old_name.strip().lower():
            return
        if not new_name:
            return
        if len(new_name) > NAME_MAX_LENGTH:
            raise InvalidNameError(f"The name cannot be more than {NAME_MAX_LENGTH} characters")
        if NAME_UNIQUE_CHAR in new_name:
            raise InvalidNameError(f"The character '{NAME_UNIQUE_CHAR}' cannot be used in a name")
        if new_name.lower() == DOWNLOAD_SET_NAME.lower():
            raise InvalidNameError("That name cannot be used, please try again")
        if self.find_by_name(root_db_id, new_name) is not None:
            raise InvalidNameError("That name is already in use, please try again")

    def rename(self, root_db_id: str, key: int, new_name: str):
        """Set a new name, appending the key if it is not unique.

        A renamed download is no longer a download and will not be removed
        when a newer one arrives.
        """
        if is_reserved_key(key):
            return
        new_name = new_name.strip()
        root = self.databases.get(root_db_id)
        with root.engine.connect() as conn:
            with root.index_lock(conn):
                if new_name:
                    clash = conn.execute(
                        select(ExtDbRecord.ext_db_key).where(
                            func.upper(ExtDbRecord.name) == new_name.upper(),
                            ExtDbRecord.deleted.is_(False),
                            ExtDbRecord.ext_db_key != key,
                        )
                    ).first()
                    if clash is not None:
                        new_name = f"{new_name} {NAME_UNIQUE_CHAR}{key}"
                conn.execute(
                    update(ExtDbRecord)
                    .where(ExtDbRecord.ext_db_key == key)
                    .values(name=new_name, is_download=False)
                )
        logger.info("Station data renamed", root_db_id=root_db_id, key=key, name=new_name)
        self.reload(root_db_id)

    # Deletion and close

    def delete(self, root_db_id: str, key: int, drop_store: bool = False):
        """Soft delete a data set, refused while it is locked"""
        if is_reserved_key(key):
            return
        try:
            handle = self.get(root_db_id, key, include_deleted=True)
        except InvalidKeyError:
            return
        if handle.deleted:
            return

        root = self.databases.get(root_db_id)
        with root.engine.connect() as conn:
            with root.index_lock(conn):
                locked = conn.execute(
                    select(ExtDbRecord.locked).where(ExtDbRecord.ext_db_key == key)
                ).scalar()
                if locked:
                    logger.warning("Station data in use, not deleted", root_db_id=root_db_id, key=key)
                    raise DataSetBusyError(key, "The station data is in use and cannot be deleted")
                conn.execute(
                    update(ExtDbRecord)
                    .where(ExtDbRecord.ext_db_key == key)
                    .values(deleted=True, is_download=False, name="")
                )
            if drop_store:
                root.drop_store(conn, handle.store_name)

        logger.info("Station data deleted", root_db_id=root_db_id, key=key)
        self.reload(root_db_id)

    def retire_downloads(self, root_db_id: str, format_type: FormatType, keep_key: int) -> int:
        """Delete earlier unlocked downloads of a format, returns how many"""
        root = self.databases.get(root_db_id)
        with root.engine.connect() as conn:
            with root.index_lock(conn):
                result = conn.execute(
                    update(ExtDbRecord)
                    .where(
                        ExtDbRecord.db_type == int(format_type),
                        ExtDbRecord.ext_db_key != keep_key,
                        ExtDbRecord.is_download.is_(True),
                        ExtDbRecord.locked.is_(False),
                    )
                    .values(is_download=False, deleted=True)
                )
                count = result.rowcount
        if count:
            logger.info("Previous downloads deleted", root_db_id=root_db_id,
                        format=format_type.type_name, count=count)
        return count

    def close(self, root_db_id: str):
        """Bring stores and index in line, then drop the root's caches.

        Index rows whose store is gone are marked deleted. Stores with no
        index row, or whose row is deleted, are dropped.
        """
        root = self.databases.get(root_db_id)
        with root.engine.connect() as conn:
            existing = set(root.list_stores(conn))
            in_use = set()
            with root.index_lock(conn):
                rows = conn.execute(
                    select(ExtDbRecord.ext_db_key, ExtDbRecord.db_type).where(ExtDbRecord.deleted.is_(False))
                ).all()
                for row in rows:
                    format_type = FormatType.from_code(row.db_type)
                    if format_type is None or not format_type.store_base_name:
                        continue
                    store_name = make_store_name(root.name, format_type, row.ext_db_key)
                    if store_name in existing:
                        in_use.add(store_name)
                        continue
                    logger.warning("Backing store missing, station data deleted",
                                   root_db_id=root_db_id, key=row.ext_db_key, store=store_name)
                    conn.execute(
                        update(ExtDbRecord)
                        .where(ExtDbRecord.ext_db_key == row.ext_db_key)
                        .values(deleted=True, is_download=False, name="")
                    )
            for store_name in sorted(existing - in_use):
                root.drop_store(conn, store_name)

        with self._lock:
            self._caches.pop(root_db_id, None)
        logger.info("Root database closed", root_db_id=root_db_id, dropped=len(existing - in_use))

    # Registration, used by the import pipeline

    def allocate_key(self, root_db_id: str) -> int:
        """Next data set key from the sequence, never inside the reserved range"""
        root = self.databases.get(root_db_id)
        with root.engine.connect() as conn:
            with root.index_lock(conn, ExtDbKeySequence.__tablename__):
                conn.execute(
                    update(ExtDbKeySequence).values(ext_db_key=ExtDbKeySequence.ext_db_key + 1)
                )
                key = conn.execute(select(ExtDbKeySequence.ext_db_key)).scalar()
                if key == RESERVED_KEY_RANGE_START:
                    key = RESERVED_KEY_RANGE_END + 1
                    conn.execute(update(ExtDbKeySequence).values(ext_db_key=key))
        return key

    def register_data_set(self, root_db_id: str, key: int, format_type: FormatType, version: int,
                          data_set_id: str, name: Optional[str] = None, db_date: Optional[datetime] = None,
                          is_download: bool = False, suffix_duplicate_name: bool = False) -> Tuple[str, str]:
        """Write the index row for a new data set.

        The id gets the key appended if another set already has it. A name in
        use by another set is dropped and the set saved unnamed, or with the
        key appended when suffix_duplicate_name is set. Returns the id and
        name actually saved.
        """
        name = (name or "").strip()
        root = self.databases.get(root_db_id)
        with root.engine.connect() as conn:
            with root.index_lock(conn):
                if conn.execute(
                    select(ExtDbRecord.ext_db_key).where(ExtDbRecord.id == data_set_id)
                ).first() is not None:
                    data_set_id = f"{data_set_id} {NAME_UNIQUE_CHAR}{key}"
                if name and conn.execute(
                    select(ExtDbRecord.ext_db_key).where(
                        func.upper(ExtDbRecord.name) == name.upper(),
                        ExtDbRecord.deleted.is_(False),
                    )
                ).first() is not None:
                    if suffix_duplicate_name:
                        name = f"{name} {NAME_UNIQUE_CHAR}{key}"
                    else:
                        logger.warning("Station data name already in use, saved without a name",
                                       root_db_id=root_db_id, key=key, name=name)
                        name = ""
                conn.execute(
                    insert(ExtDbRecord).values(
                        ext_db_key=key,
                        db_type=int(format_type),
                        db_date=db_date,
                        version=version,
                        id=data_set_id,
                        name=name,
                        deleted=False,
                        locked=False,
                        is_download=is_download,
                    )
                )
        logger.info("Station data registered", root_db_id=root_db_id, key=key,
                    format=format_type.type_name, id=data_set_id, version=version)
        return data_set_id, name

    def close_all(self):
        for root_db_id in list(self._caches.keys()):
            self.close(root_db_id)
