"""Database models and data set types"""

from .ext_db import ExtDbRecord, ExtDbKeySequence
from .data_sets import (
    FormatType, RecordKind, DataSetHandle, HandleListItem,
    KEY_LMS_LIVE, KEY_MOST_RECENT_LMS, KEY_MOST_RECENT_CDBS, KEY_MOST_RECENT_CDBS_FM,
    RESERVED_KEY_RANGE_START, RESERVED_KEY_RANGE_END,
    is_reserved_key, make_store_name,
)

__all__ = [
    "ExtDbRecord", "ExtDbKeySequence",
    "FormatType", "RecordKind", "DataSetHandle", "HandleListItem",
    "KEY_LMS_LIVE", "KEY_MOST_RECENT_LMS", "KEY_MOST_RECENT_CDBS", "KEY_MOST_RECENT_CDBS_FM",
    "RESERVED_KEY_RANGE_START", "RESERVED_KEY_RANGE_END",
    "is_reserved_key", "make_store_name",
]
