"""Data set formats, handles and list items"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Optional


class FormatType(IntEnum):
    """Persisted format codes of external data sets"""
    CDBS = 1
    LMS = 2
    WIRELESS = 3
    CDBS_FM = 4
    LMS_LIVE = 5
    GENERIC_TV = 6
    GENERIC_WL = 7
    GENERIC_FM = 8

    @property
    def type_name(self) -> str:
        return TYPE_NAMES[self]

    @property
    def record_kind(self) -> "RecordKind":
        return RECORD_KINDS[self]

    @property
    def is_generic(self) -> bool:
        return self in (FormatType.GENERIC_TV, FormatType.GENERIC_WL, FormatType.GENERIC_FM)

    @property
    def store_base_name(self) -> str:
        return STORE_BASE_NAMES.get(self, "")

    @property
    def sort_rank(self) -> int:
        return FORMAT_PRIORITY.index(self)

    @classmethod
    def from_code(cls, code: int) -> Optional["FormatType"]:
        try:
            return cls(code)
        except ValueError:
            return None


class RecordKind(Enum):
    """Kind of station record a data set produces"""
    TV = "tv"
    WL = "wl"
    FM = "fm"


TYPE_NAMES: Dict[FormatType, str] = {
    FormatType.CDBS: "CDBS TV",
    FormatType.LMS: "LMS TV",
    FormatType.WIRELESS: "Wireless",
    FormatType.CDBS_FM: "CDBS FM",
    FormatType.LMS_LIVE: "LMS TV",
    FormatType.GENERIC_TV: "Generic TV",
    FormatType.GENERIC_WL: "Generic W/l",
    FormatType.GENERIC_FM: "Generic FM",
}

RECORD_KINDS: Dict[FormatType, RecordKind] = {
    FormatType.CDBS: RecordKind.TV,
    FormatType.LMS: RecordKind.TV,
    FormatType.LMS_LIVE: RecordKind.TV,
    FormatType.GENERIC_TV: RecordKind.TV,
    FormatType.WIRELESS: RecordKind.WL,
    FormatType.GENERIC_WL: RecordKind.WL,
    FormatType.CDBS_FM: RecordKind.FM,
    FormatType.GENERIC_FM: RecordKind.FM,
}

STORE_BASE_NAMES: Dict[FormatType, str] = {
    FormatType.CDBS: "cdbs",
    FormatType.LMS: "lms",
    FormatType.WIRELESS: "wireless",
    FormatType.CDBS_FM: "cdbs_fm",
    FormatType.GENERIC_TV: "import_tv",
    FormatType.GENERIC_WL: "import_wl",
    FormatType.GENERIC_FM: "import_fm",
}

# Display order for handle lists
FORMAT_PRIORITY = (
    FormatType.LMS_LIVE,
    FormatType.LMS,
    FormatType.GENERIC_TV,
    FormatType.CDBS,
    FormatType.WIRELESS,
    FormatType.GENERIC_WL,
    FormatType.CDBS_FM,
    FormatType.GENERIC_FM,
)

# Keys in this range are never assigned to persisted data sets
RESERVED_KEY_RANGE_START = 10000
RESERVED_KEY_RANGE_END = 19999

KEY_LMS_LIVE = 10005
KEY_MOST_RECENT_LMS = 10102
KEY_MOST_RECENT_CDBS = 10103
KEY_MOST_RECENT_CDBS_FM = 10104

MOST_RECENT_KEYS: Dict[FormatType, int] = {
    FormatType.LMS: KEY_MOST_RECENT_LMS,
    FormatType.CDBS: KEY_MOST_RECENT_CDBS,
    FormatType.CDBS_FM: KEY_MOST_RECENT_CDBS_FM,
}

MOST_RECENT_NAMES: Dict[int, str] = {
    KEY_MOST_RECENT_LMS: "Most recent LMS TV",
    KEY_MOST_RECENT_CDBS: "Most recent CDBS TV",
    KEY_MOST_RECENT_CDBS_FM: "Most recent CDBS FM",
}

LIVE_DATA_SET_NAME = "LMS TV live server"
DOWNLOAD_SET_NAME = "(download)"
NAME_UNIQUE_CHAR = "#"
NAME_MAX_LENGTH = 255


def is_reserved_key(key: int) -> bool:
    return RESERVED_KEY_RANGE_START <= key <= RESERVED_KEY_RANGE_END


def make_store_name(root_name: str, format_type: FormatType, key: int) -> str:
    """Name of the schema holding one data set's tables"""
    base_name = format_type.store_base_name
    if not base_name:
        return ""
    return f"{root_name}_{base_name}_{key}"


@dataclass(eq=False)
class DataSetHandle:
    """In-memory description of one external data set.

    Identity is the key. Name, id, deleted and is_download are refreshed in
    place by the registry; the connection source is chosen when the handle
    is built and decides how connections to the backing store are made.
    """
    root_db_id: str
    key: int
    format_type: FormatType
    store_name: str
    version: int
    source_date: Optional[datetime] = None
    id: str = ""
    name: str = ""
    deleted: bool = False
    is_download: bool = False
    description: str = ""
    source: Any = field(default=None, repr=False)

    def __eq__(self, other):
        return isinstance(other, DataSetHandle) and other.key == self.key

    def __hash__(self):
        return hash(self.key)

    def __str__(self):
        return self.description

    @property
    def record_kind(self) -> RecordKind:
        return self.format_type.record_kind

    @property
    def type_name(self) -> str:
        return self.format_type.type_name

    @property
    def is_generic(self) -> bool:
        return self.format_type.is_generic

    @property
    def is_live(self) -> bool:
        return self.format_type == FormatType.LMS_LIVE

    @property
    def has_am(self) -> bool:
        return ((self.format_type == FormatType.CDBS and self.version > 0) or
                (self.format_type == FormatType.LMS and self.version > 2) or
                self.is_live)

    @property
    def has_baseline(self) -> bool:
        return (self.format_type == FormatType.CDBS or
                (self.format_type == FormatType.LMS and self.version > 1) or
                self.is_live)

    def refresh_description(self):
        label = self.name if self.name else self.id
        self.description = f"{self.type_name} {label}" + (" (deleted)" if self.deleted else "")

    def connect(self, lock: bool = False):
        return self.source.connect(lock=lock)

    def release(self, conn):
        self.source.release(conn)

    def open_session(self):
        return self.source.open_session()

    @contextmanager
    def connection(self):
        """Connection to the backing store, released on exit"""
        conn = self.connect()
        try:
            yield conn
        finally:
            self.release(conn)


@dataclass
class HandleListItem:
    """Entry of a handle list as shown to users"""
    key: int
    description: str
    format_type: FormatType
