"""Wireless station data from CSV files.

The station CSV has one sector per line. The pattern CSV has one antenna
pattern per line, with points written as "degree;field". Both are checked
and rewritten as the three data files of the wireless format in a
temporary directory, which is then imported like any other data set.
"""

import math
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, TextIO

import structlog

from station_data.exceptions import MalformedRecordError
from station_data.ingestion.flatfile import END_OF_RECORD, SEPARATOR
from station_data.ingestion.importer import Importer
from station_data.ingestion.table_specs import (
    WIRELESS_BASE_TABLE,
    WIRELESS_INDEX_TABLE,
    WIRELESS_PATTERN_TABLE,
)
from station_data.models.data_sets import FormatType
from station_data.status import StatusReporter

logger = structlog.get_logger()

LATITUDE_MIN, LATITUDE_MAX = -73.0, 73.0
LONGITUDE_MIN, LONGITUDE_MAX = -180.0, 180.0
HEIGHT_MIN, HEIGHT_MAX = -1000.0, 10000.0
ERP_MIN, ERP_MAX = 0.00001, 5000.0
TILT_MIN, TILT_MAX = -10.0, 11.1
AZIMUTH_MIN, AZIMUTH_MAX = 0.0, 359.999
DEPRESSION_MIN, DEPRESSION_MAX = -90.0, 90.0

MAX_CELL_SITE_ID_LENGTH = 12
MAX_SECTOR_ID_LENGTH = 3
MAX_REFERENCE_NUMBER_LENGTH = 255
MAX_CITY_LENGTH = 20
MAX_STATE_LENGTH = 2
MAX_COUNTRY_LENGTH = 2
MAX_PATTERN_NAME_LENGTH = 255

PATTERN_REQUIRED_POINTS = 2


def _split(line: str, separator: str) -> List[str]:
    # Trailing empty fields do not count
    fields = line.split(separator)
    while fields and fields[-1] == "":
        fields.pop()
    return fields


def _parse_float(text: str) -> Optional[float]:
    text = text.strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _parse_int(text: str) -> Optional[int]:
    try:
        return int(text.strip())
    except ValueError:
        return None


def _normalize_angle(value: float) -> float:
    value = math.remainder(value, 360.0)
    if value < 0.0:
        value += 360.0
    return value


def _data_lines(stream: TextIO):
    """Line number and text of each line that is not blank or a comment"""
    for line_number, line in enumerate(stream, start=1):
        line = line.rstrip("\r\n")
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        yield line_number, line


def _write_record(out: TextIO, values: List[str]):
    out.write(SEPARATOR.join(values) + END_OF_RECORD + "\n")


def convert_stations(stream: TextIO, file_name: str, out: TextIO, status: StatusReporter) -> int:
    """Rewrite the station CSV as base station records, returns the record count"""
    count = 0
    for line_number, line in _data_lines(stream):
        def fail(message: str):
            raise MalformedRecordError(message, file_name, line_number)

        if SEPARATOR in line:
            fail(f"Illegal character '{SEPARATOR}'")
        fields = _split(line, ",")
        if len(fields) < 13 or len(fields) > 17:
            fail("Bad field count")

        cell_site_id = fields[0].strip()
        if not cell_site_id:
            fail("Missing cell site ID")
        if len(cell_site_id) > MAX_CELL_SITE_ID_LENGTH:
            cell_site_id = cell_site_id[:MAX_CELL_SITE_ID_LENGTH]
            status.log_message(f"Cell site ID too long, truncated, in '{file_name}' at line {line_number}")

        sector_id = fields[1].strip()
        if len(sector_id) > MAX_SECTOR_ID_LENGTH:
            sector_id = sector_id[:MAX_SECTOR_ID_LENGTH]
            status.log_message(f"Sector ID too long, truncated, in '{file_name}' at line {line_number}")

        latitude = _parse_float(fields[2])
        if latitude is None or not LATITUDE_MIN <= latitude <= LATITUDE_MAX:
            fail("Missing or bad latitude")

        # Longitude is negative west in the CSV, positive west here
        longitude = _parse_float(fields[3])
        if longitude is not None:
            longitude = -longitude
        if longitude is None or not LONGITUDE_MIN <= longitude <= LONGITUDE_MAX:
            fail("Missing or bad longitude")

        rc_amsl = _parse_float(fields[4])
        if rc_amsl is None or not HEIGHT_MIN <= rc_amsl <= HEIGHT_MAX:
            fail("Missing or bad AMSL height")

        haat = _parse_float(fields[5])
        if haat is None or not HEIGHT_MIN <= haat <= HEIGHT_MAX:
            fail("Missing or bad HAAT")

        erp = _parse_float(fields[6])
        if erp is None or not ERP_MIN <= erp <= ERP_MAX:
            fail("Bad ERP")

        az_ant_id = 0
        if fields[7].strip():
            az_ant_id = _parse_int(fields[7])
            if az_ant_id is None or az_ant_id < 0:
                fail("Bad azimuth antenna ID")

        orientation = 0.0
        if fields[8].strip():
            value = _parse_float(fields[8])
            if value is None:
                fail("Bad pattern orientation")
            orientation = _normalize_angle(value)

        el_ant_id = 0
        if fields[9].strip():
            el_ant_id = _parse_int(fields[9])
            if el_ant_id is None or el_ant_id < 0:
                fail("Bad elevation antenna ID")

        e_tilt = 0.0
        if fields[10].strip():
            e_tilt = _parse_float(fields[10])
            if e_tilt is None or not TILT_MIN <= e_tilt <= TILT_MAX:
                fail("Bad electrical tilt")

        m_tilt = 0.0
        if fields[11].strip():
            m_tilt = _parse_float(fields[11])
            if m_tilt is None or not TILT_MIN <= m_tilt <= TILT_MAX:
                fail("Bad mechanical tilt")

        m_tilt_orientation = orientation
        if fields[12].strip():
            value = _parse_float(fields[12])
            if value is None:
                fail("Bad mechanical tilt orientation")
            m_tilt_orientation = _normalize_angle(value)

        optional = [field.strip() for field in fields[13:17]]
        optional += [""] * (4 - len(optional))
        reference_number, city, state, country = optional
        reference_number = reference_number[:MAX_REFERENCE_NUMBER_LENGTH]
        city = city[:MAX_CITY_LENGTH]
        state = state[:MAX_STATE_LENGTH]
        country = country[:MAX_COUNTRY_LENGTH]

        _write_record(out, [
            str(line_number), cell_site_id, sector_id, str(latitude), str(longitude), str(rc_amsl),
            str(haat), str(erp), str(az_ant_id), str(orientation), str(el_ant_id), str(e_tilt),
            str(m_tilt), str(m_tilt_orientation), reference_number, city, state, country,
        ])
        count += 1
    return count


def convert_patterns(stream: TextIO, file_name: str, index_out: TextIO, pattern_out: TextIO,
                     status: StatusReporter) -> int:
    """Split the pattern CSV into index and point records, returns the pattern count.

    Points must be in increasing degree order with a relative field above 0
    and at most 1. A pattern with no 1.0 point is kept but noted.
    """
    count = 0
    for line_number, line in _data_lines(stream):
        def fail(message: str):
            raise MalformedRecordError(message, file_name, line_number)

        fields = _split(line, ",")
        if len(fields) < PATTERN_REQUIRED_POINTS + 3:
            fail("Bad field count")

        ant_id = _parse_int(fields[0]) if fields[0].strip() else None
        if ant_id is None or ant_id <= 0:
            fail("Missing or bad antenna ID")

        pattern_type = fields[1].strip().upper()[:1]
        if pattern_type not in ("A", "E"):
            fail("Missing or bad pattern type")
        is_azimuth = pattern_type == "A"

        pattern_name = fields[2].strip()
        if not pattern_name:
            fail("Missing pattern name")
        if len(pattern_name) > MAX_PATTERN_NAME_LENGTH:
            pattern_name = pattern_name[:MAX_PATTERN_NAME_LENGTH]
            status.log_message(f"Pattern name too long, truncated, in '{file_name}' at line {line_number}")
        if SEPARATOR in pattern_name:
            fail(f"Illegal character '{SEPARATOR}' in pattern name")

        _write_record(index_out, [str(ant_id), pattern_type, pattern_name])

        if is_azimuth:
            low, high, label = AZIMUTH_MIN, AZIMUTH_MAX, "azimuth"
        else:
            low, high, label = DEPRESSION_MIN, DEPRESSION_MAX, "vertical angle"
        last_degree = low - 1.0
        field_max = 0.0

        for point_number, point in enumerate(fields[3:], start=1):
            parts = _split(point, ";")
            if len(parts) != 2:
                fail(f"Bad pattern point format, point {point_number}")
            degree = _parse_float(parts[0])
            if degree is None or not low <= degree <= high:
                fail(f"Bad {label}, point {point_number}")
            if degree <= last_degree:
                fail(f"Pattern points out of order or duplicated, point {point_number}")
            last_degree = degree

            field = _parse_float(parts[1])
            if field is None or field <= 0.0 or field > 1.0:
                fail(f"Bad relative field, point {point_number}")
            field_max = max(field_max, field)

            _write_record(pattern_out, [str(ant_id), str(degree), str(field)])

        if field_max < 1.0:
            status.log_message(
                f"Pattern does not contain a 1 for antenna ID {ant_id} in '{file_name}' at line {line_number}"
            )
        count += 1
    return count


def import_wireless(importer: Importer, root_db_id: str, station_csv, pattern_csv,
                    name: Optional[str] = None, status: Optional[StatusReporter] = None) -> int:
    """Convert and import a pair of wireless CSV files, returns the new key"""
    status = status or StatusReporter()
    station_path = Path(station_csv)
    pattern_path = Path(pattern_csv)
    temp_dir = Path(tempfile.mkdtemp(prefix="wl_import", dir=importer.settings.temp_dir))
    try:
        status.report_status("Converting wireless station data...")
        with open(station_path, "r", encoding="latin-1") as stream, \
                open(temp_dir / f"{WIRELESS_BASE_TABLE}.dat", "w", encoding="latin-1") as out:
            stations = convert_stations(stream, station_path.name, out, status)

        with open(pattern_path, "r", encoding="latin-1") as stream, \
                open(temp_dir / f"{WIRELESS_INDEX_TABLE}.dat", "w", encoding="latin-1") as index_out, \
                open(temp_dir / f"{WIRELESS_PATTERN_TABLE}.dat", "w", encoding="latin-1") as pattern_out:
            patterns = convert_patterns(stream, pattern_path.name, index_out, pattern_out, status)

        logger.info("Wireless data converted", stations=stations, patterns=patterns)
        return importer.import_data_set(root_db_id, FormatType.WIRELESS, temp_dir, name=name, status=status)
    finally:
        shutil.rmtree(temp_dir)
