"""
Registry Tests

Handle lookup and caching, list ordering and filtering, most-recent
resolution, names, deletion, key allocation and the close-time sync
between index rows and backing stores.
"""

from datetime import datetime

import pytest
from sqlalchemy import update

from station_data.exceptions import DataSetBusyError, DataSetDeletedError, InvalidKeyError, InvalidNameError
from station_data.models.data_sets import (
    KEY_LMS_LIVE,
    KEY_MOST_RECENT_CDBS,
    KEY_MOST_RECENT_CDBS_FM,
    KEY_MOST_RECENT_LMS,
    FormatType,
    RecordKind,
)
from station_data.models.ext_db import ExtDbKeySequence
from station_data.registry import Registry

ROOT = "default"


def test_unknown_key_raises(registry):
    with pytest.raises(InvalidKeyError) as exc_info:
        registry.get(ROOT, 42)

    assert exc_info.value.key == 42
    assert exc_info.value.root_db_id == ROOT


def test_cache_miss_forces_refresh(service, registry, test_settings):
    """A set registered by another registry is found on first lookup."""
    registry.handles(ROOT)
    other = Registry(service.databases, None, test_settings)
    key = other.allocate_key(ROOT)
    other.register_data_set(ROOT, key, FormatType.LMS, 6, "2024-01-01")

    assert registry.get(ROOT, key).id == "2024-01-01"


def test_cache_expires_after_ttl(service, test_settings):
    """Handles reflect index changes once the cache is older than the TTL."""
    now = [1000.0]
    registry = Registry(service.databases, None, test_settings, clock=lambda: now[0])
    writer = Registry(service.databases, None, test_settings)
    key = writer.allocate_key(ROOT)
    writer.register_data_set(ROOT, key, FormatType.LMS, 6, "2024-01-01")
    assert registry.handles(ROOT)[0].name == ""

    writer.rename(ROOT, key, "Renamed")
    assert registry.handles(ROOT)[0].name == ""

    now[0] += test_settings.cache_ttl_seconds + 1
    assert registry.handles(ROOT)[0].name == "Renamed"


def test_handles_are_updated_in_place(registry, register):
    key = register(FormatType.CDBS)
    handle = registry.get(ROOT, key)

    registry.rename(ROOT, key, "New name")

    assert handle.name == "New name"
    assert handle.description == "CDBS TV New name"
    assert registry.get(ROOT, key) is handle


def test_most_recent_follows_newest_date(registry, register):
    older = register(FormatType.CDBS, db_date=datetime(2024, 1, 1))
    newer = register(FormatType.CDBS, db_date=datetime(2024, 6, 1))
    register(FormatType.CDBS, db_date=datetime(2023, 1, 1))

    assert registry.get(ROOT, KEY_MOST_RECENT_CDBS).key == newer

    registry.delete(ROOT, newer)
    assert registry.get(ROOT, KEY_MOST_RECENT_CDBS).key == older


def test_most_recent_tie_keeps_newest_key(registry, register):
    register(FormatType.LMS, db_date=datetime(2024, 1, 1))
    latest = register(FormatType.LMS, db_date=datetime(2024, 1, 1))

    assert registry.get(ROOT, KEY_MOST_RECENT_LMS).key == latest


def test_most_recent_missing_without_sets(registry, register):
    register(FormatType.CDBS)

    with pytest.raises(InvalidKeyError):
        registry.get(ROOT, KEY_MOST_RECENT_CDBS_FM)


def test_list_order_and_most_recent_entries(registry, register):
    """Formats in display order, reserved keys first, then newest first."""
    cdbs_fm = register(FormatType.CDBS_FM, db_date=datetime(2024, 1, 1))
    cdbs_old = register(FormatType.CDBS, db_date=datetime(2024, 1, 1))
    wireless = register(FormatType.WIRELESS)
    cdbs_new = register(FormatType.CDBS, db_date=datetime(2024, 2, 1))
    generic = register(FormatType.GENERIC_TV, version=0)
    lms = register(FormatType.LMS, db_date=datetime(2024, 3, 1), version=6)

    items = registry.list_handles(ROOT)

    assert [item.key for item in items] == [
        KEY_MOST_RECENT_LMS, lms, generic, KEY_MOST_RECENT_CDBS, cdbs_new, cdbs_old,
        wireless, KEY_MOST_RECENT_CDBS_FM, cdbs_fm,
    ]
    assert items[0].description == "Most recent LMS TV"
    assert items[0].format_type == FormatType.LMS


def test_list_filters(registry, register):
    register(FormatType.CDBS, version=0)
    cdbs = register(FormatType.CDBS, version=1)
    register(FormatType.WIRELESS)
    generic_fm = register(FormatType.GENERIC_FM, version=0)

    tv = registry.list_handles(ROOT, record_kind=RecordKind.TV, min_version=1, include_most_recent=False)
    assert [item.key for item in tv] == [cdbs]

    fm = registry.list_handles(ROOT, record_kind=RecordKind.FM)
    assert [item.key for item in fm] == [generic_fm]

    no_generic = registry.list_handles(ROOT, include_generic=False)
    assert generic_fm not in [item.key for item in no_generic]
    assert KEY_MOST_RECENT_CDBS in [item.key for item in no_generic]


def test_describe_falls_back_for_live_key(registry):
    assert registry.describe(ROOT, KEY_LMS_LIVE) == "LMS TV live server (offline)"
    assert registry.type_name(ROOT, KEY_LMS_LIVE) == "LMS TV"
    assert registry.describe(ROOT, 77) == ""


def test_find_by_name_ignores_case(registry, register):
    key = register(FormatType.LMS, name="Weekly Data")

    assert registry.find_by_name(ROOT, "weekly data").key == key
    assert registry.find_by_name(ROOT, "monthly") is None
    assert registry.find_by_name(ROOT, "") is None


@pytest.mark.parametrize("name,message", [
    ("x" * 256, "The name cannot be more than 255 characters"),
    ("Test #1", "The character '#' cannot be used in a name"),
    ("(Download)", "That name cannot be used, please try again"),
    ("taken", "That name is already in use, please try again"),
])
def test_check_name_rejects(registry, register, name, message):
    register(FormatType.LMS, name="Taken")

    with pytest.raises(InvalidNameError) as exc_info:
        registry.check_name(ROOT, name)

    assert str(exc_info.value) == message


def test_check_name_accepts(registry, register):
    register(FormatType.LMS, name="Taken")

    registry.check_name(ROOT, "Fresh name")
    registry.check_name(ROOT, "TAKEN", old_name="taken")
    registry.check_name(ROOT, "   ")


def test_rename_clash_appends_key(registry, register):
    register(FormatType.LMS, name="Alpha")
    key = register(FormatType.LMS)

    registry.rename(ROOT, key, "alpha")

    assert registry.get(ROOT, key).name == f"alpha #{key}"


def test_rename_clears_download_flag(registry, register):
    key = register(FormatType.LMS, is_download=True)

    registry.rename(ROOT, key, "Kept")

    assert not registry.get(ROOT, key).is_download


def test_rename_to_empty_unnames(registry, register):
    key = register(FormatType.LMS, name="Alpha")

    registry.rename(ROOT, key, "")

    handle = registry.get(ROOT, key)
    assert handle.name == ""
    assert handle.description == f"LMS TV set {key}"


def test_delete_is_soft(registry, register):
    """Deleted sets stay reachable with include_deleted."""
    key = register(FormatType.CDBS, name="Gone")

    registry.delete(ROOT, key)

    with pytest.raises(DataSetDeletedError):
        registry.get(ROOT, key)
    handle = registry.get(ROOT, key, include_deleted=True)
    assert handle.deleted
    assert handle.name == ""
    assert handle.description == f"CDBS TV set {key} (deleted)"
    assert registry.find_by_name(ROOT, "Gone") is None
    assert registry.handles(ROOT) == []


def test_delete_unknown_or_reserved_key_is_ignored(registry):
    registry.delete(ROOT, 999)
    registry.delete(ROOT, KEY_MOST_RECENT_LMS)


def test_delete_locked_set_is_refused(service, registry):
    key = service.create_generic(ROOT, FormatType.GENERIC_TV)
    handle = registry.get(ROOT, key)

    with handle.open_session():
        with pytest.raises(DataSetBusyError) as exc_info:
            registry.delete(ROOT, key)

    assert "cannot be deleted" in str(exc_info.value)
    registry.delete(ROOT, key)
    assert registry.get(ROOT, key, include_deleted=True).deleted


def test_delete_with_drop_store(service, registry, root):
    key = service.create_generic(ROOT, FormatType.GENERIC_TV)

    registry.delete(ROOT, key, drop_store=True)

    with root.engine.connect() as conn:
        assert root.list_stores(conn) == []


def test_allocate_key_skips_reserved_range(registry, root):
    with root.engine.begin() as conn:
        conn.execute(update(ExtDbKeySequence).values(ext_db_key=9999))

    assert registry.allocate_key(ROOT) == 20000
    assert registry.allocate_key(ROOT) == 20001


def test_allocate_key_counts_up(registry):
    assert registry.allocate_key(ROOT) == 1
    assert registry.allocate_key(ROOT) == 2


def test_duplicate_id_gets_key(registry):
    first = registry.allocate_key(ROOT)
    registry.register_data_set(ROOT, first, FormatType.CDBS, 1, "01/01/2024")
    second = registry.allocate_key(ROOT)

    saved_id, _ = registry.register_data_set(ROOT, second, FormatType.CDBS, 1, "01/01/2024")

    assert saved_id == f"01/01/2024 #{second}"


def test_close_syncs_stores_and_index(service, registry, register, root):
    """Rows without stores are deleted and stores without rows are dropped."""
    generic = service.create_generic(ROOT, FormatType.GENERIC_TV)
    orphan_row = register(FormatType.CDBS)
    orphan_store = root.store_dir / f"{root.name}_cdbs_999.db"
    orphan_store.write_bytes(b"")

    registry.close(ROOT)

    assert not orphan_store.exists()
    assert registry.get(ROOT, orphan_row, include_deleted=True).deleted
    assert not registry.get(ROOT, generic).deleted
    with root.engine.connect() as conn:
        assert root.list_stores(conn) == [f"{root.name}_import_tv_{generic}"]


def test_listeners_hear_reloads(registry, register):
    calls = []
    registry.add_listener(ROOT, calls.append)

    register(FormatType.LMS)
    registry.remove_listener(ROOT, calls.append)
    register(FormatType.LMS)

    assert calls == [ROOT]
