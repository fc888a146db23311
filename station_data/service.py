"""Process-wide entry point to the station data registry"""

from typing import Any, Dict, Iterable, List, Optional

import httpx
import structlog

from station_data.config import Settings, settings as default_settings
from station_data.connections import LiveConnectionPool
from station_data.database import DatabaseDirectory
from station_data.ingestion.downloader import Downloader
from station_data.ingestion.generic import GenericAppender, create_generic_data_set
from station_data.ingestion.importer import Importer
from station_data.ingestion.wireless import import_wireless
from station_data.models.data_sets import DataSetHandle, FormatType, HandleListItem, RecordKind
from station_data.registry import Registry
from station_data.search import AntennaID, GeoPoint, check_for_am_stations, find_antennas
from station_data.status import StatusReporter

logger = structlog.get_logger()


class StationDataService:
    """Owns the root databases, the live server pool, the registry and the pipelines.

    One instance is meant to live for the whole process. Tests build their
    own with explicit settings and root databases.
    """

    def __init__(self, settings: Settings = default_settings, roots: Optional[Dict[str, str]] = None,
                 live_pool: Optional[LiveConnectionPool] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        self.databases = DatabaseDirectory(settings, roots)
        if live_pool is None:
            live_pool = LiveConnectionPool(settings.live_credentials_path, settings.live_schema)
        self.live_pool = live_pool
        self.registry = Registry(self.databases, live_pool, settings)
        self.importer = Importer(self.registry, settings)
        self.downloader = Downloader(self.importer, settings, transport)
        self.appender = GenericAppender(self.registry)

    # Lookups

    def get(self, root_db_id: str, key: int, include_deleted: bool = False) -> DataSetHandle:
        return self.registry.get(root_db_id, key, include_deleted=include_deleted)

    def find_by_name(self, root_db_id: str, name: str) -> Optional[DataSetHandle]:
        return self.registry.find_by_name(root_db_id, name)

    def list_handles(self, root_db_id: str, record_kind: Optional[RecordKind] = None,
                     format_type: Optional[FormatType] = None, min_version: int = 0,
                     include_generic: bool = True, include_most_recent: bool = True) -> List[HandleListItem]:
        return self.registry.list_handles(
            root_db_id, record_kind=record_kind, format_type=format_type, min_version=min_version,
            include_generic=include_generic, include_most_recent=include_most_recent,
        )

    def handles(self, root_db_id: str) -> List[DataSetHandle]:
        return self.registry.handles(root_db_id)

    # Creating data sets

    def import_data_set(self, root_db_id: str, format_type: FormatType, source_path,
                        name: Optional[str] = None, status: Optional[StatusReporter] = None) -> int:
        return self.importer.import_data_set(root_db_id, format_type, source_path, name=name, status=status)

    def import_wireless(self, root_db_id: str, station_csv, pattern_csv, name: Optional[str] = None,
                        status: Optional[StatusReporter] = None) -> int:
        return import_wireless(self.importer, root_db_id, station_csv, pattern_csv, name=name, status=status)

    def download(self, root_db_id: str, format_type: FormatType, name: Optional[str] = None,
                 status: Optional[StatusReporter] = None) -> int:
        return self.downloader.download(root_db_id, format_type, name=name, status=status)

    def create_generic(self, root_db_id: str, format_type: FormatType, name: Optional[str] = None) -> int:
        return create_generic_data_set(self.registry, root_db_id, format_type, name=name)

    def append_records(self, root_db_id: str, key: int, records: Iterable[Dict[str, Any]]) -> List[int]:
        return self.appender.append_to(root_db_id, key, records)

    # Maintenance

    def check_name(self, root_db_id: str, new_name: str, old_name: Optional[str] = None):
        self.registry.check_name(root_db_id, new_name, old_name)

    def rename(self, root_db_id: str, key: int, new_name: str):
        self.registry.rename(root_db_id, key, new_name)

    def delete(self, root_db_id: str, key: int, drop_store: bool = False):
        self.registry.delete(root_db_id, key, drop_store=drop_store)

    # Searches

    def find_antennas(self, root_db_id: str, key: int, search: str, elevation: bool = False) -> List[AntennaID]:
        return find_antennas(self.registry, root_db_id, key, search, elevation=elevation)

    def check_for_am_stations(self, root_db_id: str, key: int, target: GeoPoint, distance_nd: float,
                              distance_da: float, km_per_degree: float) -> str:
        handle = self.registry.get(root_db_id, key)
        return check_for_am_stations(handle, target, distance_nd, distance_da, km_per_degree)

    # Shutdown

    def close(self, root_db_id: str):
        """Sync stores with the index and release the root database"""
        self.registry.close(root_db_id)
        self.databases.close(root_db_id)

    def shutdown(self):
        for root_db_id in self.databases.open_ids():
            self.close(root_db_id)
        self.live_pool.dispose()
        logger.info("Station data service shut down")
