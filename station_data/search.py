"""Searches against the tables of a single data set"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import Boolean, Float, Integer, String, column, func, literal, or_, select, table
from sqlalchemy.exc import SQLAlchemyError

from station_data.exceptions import StationDataError
from station_data.models.data_sets import DataSetHandle, FormatType
from station_data.registry import Registry

logger = structlog.get_logger()

SHORT_SEARCH_LENGTH = 3


@dataclass
class AntennaID:
    """One antenna found by find_antennas"""
    root_db_id: str
    key: int
    antenna_record_id: str
    antenna_id: str
    name: str


@dataclass
class GeoPoint:
    """Latitude positive north, longitude positive west, in degrees"""
    latitude: float = 0.0
    longitude: float = 0.0

    @classmethod
    def from_dms(cls, lat_dir: Optional[str], lat_deg, lat_min, lat_sec,
                 lon_dir: Optional[str], lon_deg, lon_min, lon_sec) -> "GeoPoint":
        latitude = (lat_deg or 0) + (lat_min or 0) / 60.0 + (lat_sec or 0.0) / 3600.0
        if lat_dir and lat_dir.upper() == "S":
            latitude = -latitude
        longitude = (lon_deg or 0) + (lon_min or 0) / 60.0 + (lon_sec or 0.0) / 3600.0
        if lon_dir and lon_dir.upper() == "E":
            longitude = -longitude
        return cls(latitude, longitude)

    def distance_to(self, other: "GeoPoint", km_per_degree: float) -> float:
        """Great-circle distance in kilometers"""
        lat1 = math.radians(self.latitude)
        lat2 = math.radians(other.latitude)
        delta = math.radians(self.longitude - other.longitude)
        cosine = math.sin(lat1) * math.sin(lat2) + math.cos(lat1) * math.cos(lat2) * math.cos(delta)
        return math.degrees(math.acos(max(-1.0, min(1.0, cosine)))) * km_per_degree


def _schema(handle: DataSetHandle) -> str:
    if handle.is_live:
        return handle.source.pool.schema
    return handle.store_name


def _antenna_query(handle: DataSetHandle, search: str, antenna_number: int, elevation: bool):
    pattern = f"%{search}%"
    schema = _schema(handle)
    format_type = handle.format_type

    if format_type in (FormatType.CDBS, FormatType.CDBS_FM):
        id_name = "elevation_antenna_id" if elevation else "antenna_id"
        antennas = table(
            "elevation_ant_make" if elevation else "ant_make",
            column(id_name, Integer), column("ant_make", String), column("ant_model_num", String),
            schema=schema,
        )
        antenna_id = antennas.c[id_name]
        name = (antennas.c.ant_make + "-" + antennas.c.ant_model_num).label("name")
        if antenna_number > 0:
            condition = antenna_id == antenna_number
        else:
            condition = func.upper(antennas.c.ant_model_num).like(pattern)
            if len(search) <= SHORT_SEARCH_LENGTH:
                condition = or_(func.upper(antennas.c.ant_make).like(pattern), condition)
        return select(antenna_id.label("record_id"), antenna_id.label("antenna_id"), name) \
            .where(condition).order_by(name)

    if format_type in (FormatType.LMS, FormatType.LMS_LIVE):
        antennas = table(
            "app_antenna",
            column("aant_antenna_record_id", String), column("aant_antenna_id", String),
            column("aant_make", String), column("aant_model", String),
            schema=schema,
        )
        name = (antennas.c.aant_make + "-" + antennas.c.aant_model).label("name")
        if antenna_number > 0:
            condition = antennas.c.aant_antenna_id == str(antenna_number)
        else:
            condition = func.upper(antennas.c.aant_model).like(pattern)
            if len(search) <= SHORT_SEARCH_LENGTH:
                condition = or_(func.upper(antennas.c.aant_make).like(pattern), condition)
        return select(antennas.c.aant_antenna_record_id, antennas.c.aant_antenna_id, name) \
            .where(condition).order_by(name)

    if format_type == FormatType.WIRELESS:
        antennas = table(
            "antenna_index",
            column("ant_id", Integer), column("pat_type", String), column("name", String),
            schema=schema,
        )
        if antenna_number > 0:
            condition = antennas.c.ant_id == antenna_number
        else:
            condition = func.upper(antennas.c.name).like(pattern)
        return select(antennas.c.ant_id.label("record_id"), antennas.c.ant_id.label("antenna_id"),
                      antennas.c.name) \
            .where(antennas.c.pat_type == ("E" if elevation else "A"), condition) \
            .order_by(antennas.c.name)

    if handle.is_generic:
        name_field = "vertical_pattern_name" if elevation else "horizontal_pattern_name"
        flag_field = "has_vertical_pattern" if elevation else "has_horizontal_pattern"
        sources = table(
            "source",
            column("source_key", Integer), column(flag_field, Boolean), column(name_field, String),
            schema=schema,
        )
        condition = func.upper(sources.c[name_field]).like(pattern)
        if antenna_number > 0:
            condition = or_(sources.c.source_key == antenna_number, condition)
        return select(sources.c.source_key.label("record_id"), sources.c.source_key.label("antenna_id"),
                      sources.c[name_field]) \
            .where(sources.c[flag_field].is_(True), condition) \
            .order_by(sources.c[name_field])

    return None


def find_antennas(registry: Registry, root_db_id: str, key: int, search: str,
                  elevation: bool = False) -> List[AntennaID]:
    """Antennas in a data set matching a search string.

    A positive number matches the antenna ID. Otherwise the string is a
    case-insensitive substring of the model or pattern name, and a string
    of three characters or less may also match the make. '*' is a wildcard.
    """
    handle = registry.get(root_db_id, key)
    text = search.strip().upper().replace("*", "%")
    if not text:
        return []
    try:
        antenna_number = int(search.strip())
    except ValueError:
        antenna_number = 0

    query = _antenna_query(handle, text, antenna_number, elevation)
    if query is None:
        return []

    with handle.connection() as conn:
        rows = conn.execute(query).all()
    return [
        AntennaID(handle.root_db_id, handle.key, str(row[0]), str(row[1]), row[2] or "")
        for row in rows
    ]


def _am_query(handle: DataSetHandle):
    schema = _schema(handle)
    if handle.format_type == FormatType.CDBS:
        prefix = ""
    elif handle.format_type in (FormatType.LMS, FormatType.LMS_LIVE):
        prefix = "gis_"
    else:
        return None

    systems = table(
        f"{prefix}am_ant_sys",
        column("application_id", Integer), column("eng_record_type", String), column("am_dom_status", String),
        column("ant_mode", String), column("hours_operation", String),
        column("lat_dir", String), column("lat_deg", Integer), column("lat_min", Integer), column("lat_sec", Float),
        column("lon_dir", String), column("lon_deg", Integer), column("lon_min", Integer), column("lon_sec", Float),
        schema=schema,
    )
    applications = table(
        f"{prefix}application",
        column("application_id", Integer), column("facility_id", Integer), column("fac_frequency", Integer),
        column("file_prefix", String), column("app_arn", String), column("hours_operation", String),
        schema=schema,
    )
    facilities = table(
        f"{prefix}facility",
        column("facility_id", Integer), column("fac_callsign", String),
        column("comm_city", String), column("comm_state", String),
        schema=schema,
    )

    # The live server keeps hours of operation on the application
    hours = applications.c.hours_operation if handle.is_live else systems.c.hours_operation
    mode = (systems.c.ant_mode + literal(" ") + hours).label("mode")
    joined = systems.join(
        applications, systems.c.application_id == applications.c.application_id
    ).join(
        facilities, applications.c.facility_id == facilities.c.facility_id
    )
    return select(
        systems.c.lat_dir, systems.c.lat_deg, systems.c.lat_min, systems.c.lat_sec,
        systems.c.lon_dir, systems.c.lon_deg, systems.c.lon_min, systems.c.lon_sec,
        facilities.c.fac_callsign, applications.c.fac_frequency, systems.c.am_dom_status, mode,
        facilities.c.comm_city, facilities.c.comm_state, applications.c.file_prefix, applications.c.app_arn,
    ).select_from(joined).where(
        systems.c.eng_record_type.not_in(["P", "A", "R"])
    ).order_by(
        facilities.c.comm_state, facilities.c.comm_city, applications.c.fac_frequency, mode
    )


def _frequency(value) -> int:
    # CDBS dumps write frequencies as text, sometimes with a decimal part
    if value is None or str(value).strip() == "":
        return 0
    return int(float(value))


def _nearby_am_stations(rows, target: GeoPoint, distance_nd: float, distance_da: float,
                        km_per_degree: float) -> Tuple[List[str], List[str]]:
    non_directional: List[str] = []
    directional: List[str] = []
    for row in rows:
        point = GeoPoint.from_dms(row[0], row[1], row[2], row[3], row[4], row[5], row[6], row[7])
        mode = row.mode or ""
        entry = (f"{row.fac_callsign or ''} {_frequency(row.fac_frequency)} {row.am_dom_status or ''} {mode} "
                 f"{row.comm_city or ''}, {row.comm_state or ''} {row.file_prefix or ''}{row.app_arn or ''}\n")
        if mode.startswith("ND"):
            if target.distance_to(point, km_per_degree) <= distance_nd:
                non_directional.append(entry)
        elif target.distance_to(point, km_per_degree) <= distance_da:
            directional.append(entry)
    return non_directional, directional


def check_for_am_stations(handle: DataSetHandle, target: GeoPoint, distance_nd: float,
                          distance_da: float, km_per_degree: float) -> str:
    """Report text listing AM stations near a point.

    Non-directional and directional stations are searched to separate
    distances. Never raises: if the data set has no AM data, the query
    fails or a row cannot be read, the report says the check could not be done.
    """
    unavailable = "Data is not available for AM station check\n\n"
    if not handle.has_am:
        return unavailable
    query = _am_query(handle)
    if query is None:
        return unavailable

    try:
        with handle.connection() as conn:
            rows = conn.execute(query).all()
        non_directional, directional = _nearby_am_stations(rows, target, distance_nd, distance_da, km_per_degree)
    except (StationDataError, SQLAlchemyError, ValueError, TypeError) as e:
        logger.warning("AM station check failed", key=handle.key, error=str(e))
        return unavailable

    report = []
    if non_directional:
        report.append(f"Non-directional AM stations within {distance_nd:.1f} km:\n")
        report.extend(non_directional)
        report.append("\n")
    else:
        report.append(f"No non-directional AM stations found within {distance_nd:.1f} km\n\n")
    if directional:
        report.append(f"Directional AM stations within {distance_da:.1f} km:\n")
        report.extend(directional)
        report.append("\n")
    else:
        report.append(f"No directional AM stations found within {distance_da:.1f} km\n\n")
    return "".join(report)
