"""Import table definitions for every importable data set format.

Each format maps to an ordered list of file specs, each file spec to the
fields that must be present in the file or need specific typing. Columns
found in a file but not listed here are created as generic text.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy import Float, Integer, SmallInteger, String
from sqlalchemy.types import TypeEngine

from station_data.models.data_sets import FormatType

# Current schema version per format, lowered on import when optional
# fields or files are absent
FORMAT_VERSIONS: Dict[FormatType, int] = {
    FormatType.CDBS: 1,
    FormatType.LMS: 6,
    FormatType.WIRELESS: 1,
    FormatType.CDBS_FM: 1,
}

# strptime formats of the date column that dates an import
DATE_FORMATS: Dict[FormatType, str] = {
    FormatType.CDBS: "%m/%d/%Y",
    FormatType.LMS: "%Y-%m-%d",
    FormatType.CDBS_FM: "%m/%d/%Y",
}

WIRELESS_BASE_TABLE = "base_station"
WIRELESS_INDEX_TABLE = "antenna_index"
WIRELESS_PATTERN_TABLE = "antenna_pattern"


@dataclass(frozen=True)
class ImportFieldSpec:
    """A field that must appear in a data file, with its column type.

    min_version 0 means the field is strictly required. Otherwise a missing
    field caps the import version at min_version - 1.
    """
    name: str
    type: TypeEngine
    min_version: int = 0

    @property
    def is_text(self) -> bool:
        return isinstance(self.type, String)


@dataclass(frozen=True)
class ImportFileSpec:
    """One table of a data set and the dump file it is loaded from"""
    table_name: str
    fields: Tuple[ImportFieldSpec, ...]
    field_names: Optional[Tuple[str, ...]] = None  # None reads the header line
    names_from_defs: bool = False  # names come from the CDBS table definitions file
    primary_key: Tuple[str, ...] = ()
    unique: Tuple[Tuple[str, ...], ...] = ()
    indexes: Tuple[str, ...] = ()
    date_field: Optional[int] = None  # index into fields
    required: bool = True
    min_version: int = 0  # a missing optional file caps the version at min_version - 1

    @property
    def file_name(self) -> str:
        return f"{self.table_name}.dat"


def _int(name: str, min_version: int = 0) -> ImportFieldSpec:
    return ImportFieldSpec(name, Integer(), min_version)


def _tinyint(name: str) -> ImportFieldSpec:
    return ImportFieldSpec(name, SmallInteger())


def _float(name: str, min_version: int = 0) -> ImportFieldSpec:
    return ImportFieldSpec(name, Float(), min_version)


def _char(name: str, length: int, min_version: int = 0) -> ImportFieldSpec:
    return ImportFieldSpec(name, String(length), min_version)


def _location(prefix: str = "") -> Tuple[ImportFieldSpec, ...]:
    return (
        _char(f"{prefix}lat_dir", 1), _int(f"{prefix}lat_deg"), _int(f"{prefix}lat_min"),
        _float(f"{prefix}lat_sec"), _char(f"{prefix}lon_dir", 1), _int(f"{prefix}lon_deg"),
        _int(f"{prefix}lon_min"), _float(f"{prefix}lon_sec"),
    )


AM_ANT_SYS_FIELDS = (
    _int("application_id"), _char("eng_record_type", 1), _char("am_dom_status", 1), _char("ant_mode", 3),
) + _location()

ELEVATION_PATTERN_FIELDS = (
    _int("elevation_antenna_id"), _float("depression_angle"), _float("field_value"),
) + tuple(_float(f"field_value{angle}") for angle in range(0, 360, 10))

ANTENNA_FILES = (
    ImportFileSpec(
        "ant_make", (_int("antenna_id"), _char("ant_make", 3), _char("ant_model_num", 60)),
        names_from_defs=True, primary_key=("antenna_id",),
    ),
    ImportFileSpec(
        "ant_pattern", (_int("antenna_id"), _float("azimuth"), _float("field_value")),
        names_from_defs=True, indexes=("antenna_id",),
    ),
    ImportFileSpec(
        "elevation_ant_make",
        (_int("elevation_antenna_id"), _char("ant_make", 3), _char("ant_model_num", 60)),
        names_from_defs=True, primary_key=("elevation_antenna_id",),
    ),
    ImportFileSpec(
        "elevation_pattern", ELEVATION_PATTERN_FIELDS,
        names_from_defs=True, indexes=("elevation_antenna_id",),
    ),
    ImportFileSpec(
        "elevation_pattern_addl",
        (_int("elevation_antenna_id"), _float("azimuth"), _float("depression_angle"), _float("field_value")),
        names_from_defs=True, indexes=("elevation_antenna_id",),
    ),
)

APP_TRACKING_FILE = ImportFileSpec(
    "app_tracking",
    (_int("application_id"), _char("accepted_date", 20), _char("last_change_date", 20)),
    names_from_defs=True, indexes=("application_id",), date_field=2,
)

CDBS_FILES = (
    ImportFileSpec(
        "application",
        (
            _int("application_id"), _char("fac_callsign", 12), _char("comm_city", 20), _char("comm_state", 2),
            _char("file_prefix", 10), _char("app_arn", 12), _char("last_change_date", 20),
        ),
        names_from_defs=True, primary_key=("application_id",), date_field=6,
    ),
    APP_TRACKING_FILE,
    ImportFileSpec(
        "facility",
        (
            _int("facility_id"), _char("fac_callsign", 12), _char("comm_city", 20), _char("comm_state", 2),
            _char("fac_service", 2), _char("fac_country", 2), _char("last_change_date", 20),
        ),
        names_from_defs=True, primary_key=("facility_id",), date_field=6,
    ),
    ImportFileSpec(
        "tv_eng_data",
        (
            _int("application_id"), _tinyint("site_number"), _int("facility_id"), _char("eng_record_type", 1),
            _char("vsd_service", 2), _int("station_channel"), _char("tv_dom_status", 6), _char("fac_zone", 3),
            _char("freq_offset", 1), _char("dt_emission_mask", 1),
        ) + _location() + (
            _float("rcamsl_horiz_mtr"), _float("haat_rc_mtr"), _float("effective_erp"),
            _float("max_erp_any_angle"), _int("antenna_id"), _float("ant_rotation"),
            _int("elevation_antenna_id"), _float("electrical_deg"), _float("mechanical_deg"),
            _float("true_deg"), _float("predict_coverage_area"), _char("last_change_date", 20),
        ),
        names_from_defs=True, unique=(("application_id", "site_number"),), indexes=("facility_id",),
        date_field=29,
    ),
    ImportFileSpec(
        "tv_app_indicators",
        (_int("application_id"), _tinyint("site_number"), _char("da_ind", 1)),
        names_from_defs=True, unique=(("application_id", "site_number"),),
    ),
    ImportFileSpec(
        "dtv_channel_assignments",
        (
            _int("facility_id"), _char("callsign", 12), _char("city", 20), _char("state", 2),
            _int("post_dtv_channel"), _char("latitude", 10), _char("longitude", 11), _int("rcamsl"),
            _float("haat"), _float("erp"), _char("da_ind", 1), _int("antenna_id"), _int("ref_azimuth"),
        ),
        names_from_defs=True, unique=(("facility_id",),),
    ),
) + ANTENNA_FILES + (
    ImportFileSpec("am_ant_sys", AM_ANT_SYS_FIELDS, names_from_defs=True, required=False),
)

CDBS_FM_FILES = (
    ImportFileSpec(
        "application",
        (_int("application_id"), _char("file_prefix", 10), _char("app_arn", 12), _char("last_change_date", 20)),
        names_from_defs=True, primary_key=("application_id",), date_field=3,
    ),
    APP_TRACKING_FILE,
    ImportFileSpec(
        "facility",
        (
            _int("facility_id"), _char("fac_callsign", 12), _char("fac_service", 2), _char("comm_city", 20),
            _char("comm_state", 2), _char("fac_country", 2), _char("digital_status", 1),
            _char("last_change_date", 20),
        ),
        names_from_defs=True, primary_key=("facility_id",), date_field=7,
    ),
    ImportFileSpec(
        "fm_eng_data",
        (
            _int("application_id"), _int("facility_id"), _char("eng_record_type", 1), _char("asd_service", 2),
            _int("station_channel"), _char("fm_dom_status", 6),
        ) + _location() + (
            _float("rcamsl_horiz_mtr"), _float("rcamsl_vert_mtr"), _float("haat_horiz_rc_mtr"),
            _float("haat_vert_rc_mtr"), _float("max_horiz_erp"), _float("horiz_erp"), _float("max_vert_erp"),
            _float("vert_erp"), _int("antenna_id"), _float("ant_rotation"), _char("last_change_date", 20),
        ),
        names_from_defs=True, indexes=("application_id", "facility_id"), date_field=24,
    ),
    ImportFileSpec(
        "fm_app_indicators", (_int("application_id"), _char("da_ind", 1)),
        names_from_defs=True, primary_key=("application_id",),
    ),
    ImportFileSpec(
        "if_notification", (_int("application_id"), _float("analog_erp"), _float("digital_erp")),
        names_from_defs=True, primary_key=("application_id",),
    ),
) + ANTENNA_FILES

LMS_FILES = (
    ImportFileSpec(
        "application",
        (
            _char("aapp_application_id", 36), _char("aapp_callsign", 12), _char("aapp_receipt_date", 20),
            _char("aapp_file_num", 20), _char("dts_reference_ind", 1), _char("dts_waiver_distance", 255),
            _char("last_update_ts", 30), _char("channel_sharing_ind", 1),
        ),
        indexes=("aapp_application_id",), date_field=6,
    ),
    ImportFileSpec(
        "license_filing_version",
        (
            _char("filing_version_id", 36), _char("active_ind", 1), _char("purpose_code", 6),
            _char("original_purpose_code", 6), _char("service_code", 6), _char("auth_type_code", 6),
            _char("current_status_code", 6), _char("last_update_ts", 30),
        ),
        indexes=("filing_version_id", "service_code", "purpose_code"), date_field=7,
    ),
    ImportFileSpec(
        "application_facility",
        (
            _char("afac_application_id", 36), _int("afac_facility_id"), _int("afac_channel"),
            _char("afac_community_city", 255), _char("afac_community_state_code", 255), _char("country_code", 3),
            _char("last_update_ts", 30), _char("licensee_name", 255),
        ),
        indexes=("afac_application_id", "afac_facility_id", "country_code"), date_field=6,
    ),
    ImportFileSpec(
        "facility",
        (
            _int("facility_id"), _char("callsign", 12), _char("community_served_city", 255),
            _char("community_served_state", 255), _char("facility_status", 6),
        ),
        indexes=("facility_id",),
    ),
    ImportFileSpec(
        "app_location",
        (
            _char("aloc_aapp_application_id", 36), _char("aloc_loc_record_id", 36), _int("aloc_loc_seq_id"),
            _char("aloc_dts_reference_location_ind", 1), _char("aloc_lat_dir", 1), _int("aloc_lat_deg"),
            _int("aloc_lat_mm"), _float("aloc_lat_ss"), _char("aloc_long_dir", 1), _int("aloc_long_deg"),
            _int("aloc_long_mm"), _float("aloc_long_ss"),
        ),
        indexes=("aloc_aapp_application_id", "aloc_loc_record_id"),
    ),
    ImportFileSpec(
        "app_antenna",
        (
            _char("aant_aloc_loc_record_id", 36), _char("aant_antenna_record_id", 36),
            _char("aant_antenna_type_code", 255), _float("aant_rc_amsl"), _float("aant_rc_haat"),
            _float("aant_rotation_deg"), _float("aant_electrical_deg"), _float("aant_mechanical_deg"),
            _float("aant_true_deg"), _char("emission_mask_code", 6), _char("aant_antenna_id", 255),
            _char("aant_make", 255), _char("aant_model", 255), _float("foreign_station_beam_tilt", 5),
        ),
        indexes=("aant_aloc_loc_record_id", "aant_antenna_record_id"),
    ),
    ImportFileSpec(
        "app_antenna_frequency",
        (_char("aafq_aant_antenna_record_id", 36), _float("aafq_power_erp_kw"), _char("aafq_offset", 255)),
        indexes=("aafq_aant_antenna_record_id",),
    ),
    ImportFileSpec(
        "app_antenna_field_value",
        (_char("aafv_aant_antenna_record_id", 36), _float("aafv_azimuth"), _float("aafv_field_value")),
        indexes=("aafv_aant_antenna_record_id",),
    ),
    ImportFileSpec(
        "app_antenna_elevation_pattern",
        (
            _char("aaep_antenna_record_id", 36), _float("aaep_azimuth"), _float("aaep_depression_angle"),
            _float("aaep_field_value"),
        ),
        indexes=("aaep_antenna_record_id",),
    ),
    ImportFileSpec(
        "app_dtv_channel_assignment",
        (
            _int("adca_facility_record_id"), _char("dtv_allotment_id", 36), _char("callsign", 12),
            _float("rcamsl"), _char("directional_antenna_ind", 1), _char("antenna_id", 36),
            _float("antenna_rotation"), _char("emission_mask_code", 255, 4), _float("electrical_deg", 5),
            _int("pre_auction_channel"),
        ),
        indexes=("adca_facility_record_id",),
    ),
    ImportFileSpec(
        "lkp_dtv_allotment",
        (
            _char("rdta_dtv_allotment_id", 36), _char("rdta_service_code", 6, 3), _char("rdta_city", 255),
            _char("rdta_state", 2), _char("rdta_country_code", 3, 3), _int("rdta_digital_channel"),
            _float("rdta_erp"), _float("rdta_haat"),
        ) + _location("rdta_") + (
            _char("dts_ref_application_id", 36),
        ),
        indexes=("rdta_dtv_allotment_id",),
    ),
    ImportFileSpec(
        "lkp_antenna",
        (
            _char("rant_antenna_id", 36), _char("rant_antenna_record_id", 36), _char("rant_make", 255),
            _char("rant_model", 255),
        ),
        indexes=("rant_antenna_id",),
    ),
    ImportFileSpec(
        "lkp_antenna_field_value",
        (_char("rafv_antenna_record_id", 36), _float("rafv_azimuth"), _float("rafv_field_value")),
        indexes=("rafv_antenna_record_id",),
    ),
    ImportFileSpec(
        "shared_channel",
        (_char("application_id", 36), _int("facility_id"), _char("host_ind", 1)),
        indexes=("application_id", "facility_id"), required=False, min_version=6,
    ),
    ImportFileSpec(
        "xref_cdbs_lm_app_id_transfer",
        (_int("application_id"), _char("filing_version_id", 36)),
        indexes=("application_id",), required=False,
    ),
    ImportFileSpec("gis_am_ant_sys", AM_ANT_SYS_FIELDS, indexes=("application_id",), required=False),
    ImportFileSpec(
        "gis_application",
        (_int("application_id"), _int("facility_id"), _char("file_prefix", 10), _char("app_arn", 12)),
        indexes=("application_id", "facility_id"), required=False,
    ),
    ImportFileSpec(
        "gis_facility",
        (
            _int("facility_id"), _char("fac_callsign", 12), _int("fac_channel"), _char("comm_city", 20),
            _char("comm_state", 2),
        ),
        indexes=("facility_id",), required=False,
    ),
)

WIRELESS_FILES = (
    ImportFileSpec(
        WIRELESS_BASE_TABLE,
        (
            _int("cell_key"), _float("cell_lat"), _float("cell_lon"), _float("rc_amsl"), _float("haat"),
            _float("erp"), _int("az_ant_id"), _float("orientation"), _int("el_ant_id"), _float("e_tilt"),
            _float("m_tilt"), _float("m_tilt_orientation"), _char("reference_number", 255), _char("city", 20),
            _char("state", 2), _char("country", 2),
        ),
        field_names=(
            "cell_key", "cell_site_id", "sector_id", "cell_lat", "cell_lon", "rc_amsl", "haat", "erp",
            "az_ant_id", "orientation", "el_ant_id", "e_tilt", "m_tilt", "m_tilt_orientation",
            "reference_number", "city", "state", "country",
        ),
        primary_key=("cell_key",),
    ),
    ImportFileSpec(
        WIRELESS_INDEX_TABLE,
        (_int("ant_id"), _char("pat_type", 1)),
        field_names=("ant_id", "pat_type", "name"),
        primary_key=("ant_id",),
    ),
    ImportFileSpec(
        WIRELESS_PATTERN_TABLE,
        (_int("ant_id"), _float("degree"), _float("relative_field")),
        field_names=("ant_id", "degree", "relative_field"),
        indexes=("ant_id",),
    ),
)

FORMAT_FILES: Dict[FormatType, Tuple[ImportFileSpec, ...]] = {
    FormatType.CDBS: CDBS_FILES,
    FormatType.LMS: LMS_FILES,
    FormatType.WIRELESS: WIRELESS_FILES,
    FormatType.CDBS_FM: CDBS_FM_FILES,
}


@lru_cache(maxsize=8)
def load_table_defs(path: str) -> Dict[str, List[str]]:
    """Field name lists for CDBS tables.

    The file alternates a table name line with a '|'-separated field name
    line. Blank lines and lines starting with '#' are skipped. A missing
    file gives an empty map, imports needing it then fail on the lookup.
    """
    defs_path = Path(path)
    if not defs_path.exists():
        return {}
    lines = [
        line.strip() for line in defs_path.read_text(encoding="latin-1").splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]
    table_defs = {}
    for table_name, fields in zip(lines[0::2], lines[1::2]):
        names = fields.split("|")
        if len(table_name) > 3 and len(names) > 2:
            table_defs[table_name] = names
    return table_defs
