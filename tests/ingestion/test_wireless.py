"""
Wireless CSV Import Tests

Conversion of station and pattern CSV files to wireless data files, the
checks applied on the way, and the full import.
"""

import io
from pathlib import Path

import pytest
from sqlalchemy import Float, Integer, String, column, select, table

from station_data.exceptions import MalformedRecordError
from station_data.ingestion.wireless import convert_patterns, convert_stations
from station_data.models.data_sets import FormatType
from station_data.status import StatusReporter

ROOT = "default"


def _convert_stations(text: str, status: StatusReporter = None):
    out = io.StringIO()
    count = convert_stations(io.StringIO(text), "stations.csv", out, status or StatusReporter())
    return count, out.getvalue()


def _convert_patterns(text: str, status: StatusReporter = None):
    index_out = io.StringIO()
    pattern_out = io.StringIO()
    count = convert_patterns(io.StringIO(text), "patterns.csv", index_out, pattern_out, status or StatusReporter())
    return count, index_out.getvalue(), pattern_out.getvalue()


def test_convert_stations_writes_base_station_records():
    """Longitude flips to positive west and the line number becomes the key."""
    count, output = _convert_stations(
        "\n"
        "SITE1,A,40.5,-75.25,120,45,20,7,370,9,2,1,,REF-1,Springfield,PA,US\n"
    )

    assert count == 1
    assert output == (
        "2|SITE1|A|40.5|75.25|120.0|45.0|20.0|7|10.0|9|2.0|1.0|10.0|REF-1|Springfield|PA|US|^|\n"
    )


def test_convert_stations_fills_optional_fields():
    _, output = _convert_stations("SITE2,B,10,20,0,0,1,,,,,,90\n")

    fields = output.split("|")
    assert fields[0] == "1"
    assert fields[4] == "-20.0"
    assert fields[8] == "0"
    assert fields[13] == "90.0"
    assert fields[14:18] == ["", "", "", ""]


def test_convert_stations_truncates_long_ids():
    """Over-long IDs are cut and a message is logged."""
    status = StatusReporter()

    _, output = _convert_stations("ABCDEFGHIJKLMNOP,ALPHA,40,-75,100,50,10,0,0,0,0,0,0\n", status)

    assert output.startswith("1|ABCDEFGHIJKL|ALP|")
    assert len(status.messages) == 2
    assert "Cell site ID too long" in status.messages[0]


@pytest.mark.parametrize("line,message", [
    ("SITE1,A,40.5\n", "Bad field count"),
    (",A,40,-75,100,50,10,0,0,0,0,0,0\n", "Missing cell site ID"),
    ("SITE1,A,80,-75,100,50,10,0,0,0,0,0,0\n", "Missing or bad latitude"),
    ("SITE1,A,40,-75,100,50,0,0,0,0,0,0,0\n", "Bad ERP"),
    ("SITE1,A,40,-75,100,50,10,0,0,0,12,0,0\n", "Bad electrical tilt"),
    ("SITE1|X,A,40,-75,100,50,10,0,0,0,0,0,0\n", "Illegal character '|'"),
])
def test_convert_stations_rejects_bad_lines(line, message):
    with pytest.raises(MalformedRecordError) as exc_info:
        _convert_stations("# header\n" + line)

    assert str(exc_info.value) == f"{message} in data file 'stations.csv' at line 2"


def test_convert_patterns_splits_index_and_points():
    count, index_output, pattern_output = _convert_patterns("7,A,Panel,0;1.0,180;0.5\n")

    assert count == 1
    assert index_output == "7|A|Panel|^|\n"
    assert pattern_output == "7|0.0|1.0|^|\n7|180.0|0.5|^|\n"


def test_convert_patterns_notes_missing_maximum():
    """A pattern that never reaches 1.0 is kept with a message."""
    status = StatusReporter()

    count, _, _ = _convert_patterns("7,A,Panel,0;0.9,180;0.5\n", status)

    assert count == 1
    assert status.messages == ["Pattern does not contain a 1 for antenna ID 7 in 'patterns.csv' at line 1"]


@pytest.mark.parametrize("line,message", [
    ("7,A,Panel,0;1.0\n", "Bad field count"),
    ("0,A,Panel,0;1.0,90;0.5\n", "Missing or bad antenna ID"),
    ("7,X,Panel,0;1.0,90;0.5\n", "Missing or bad pattern type"),
    ("7,A,Panel,90;1.0,0;0.5\n", "Pattern points out of order or duplicated, point 2"),
    ("7,A,Panel,0;1.0,360;0.5\n", "Bad azimuth, point 2"),
    ("7,E,Panel,-95;1.0,0;0.5\n", "Bad vertical angle, point 1"),
    ("7,A,Panel,0;1.5,90;0.5\n", "Bad relative field, point 1"),
    ("7,A,Panel,0-1.0,90;0.5\n", "Bad pattern point format, point 1"),
])
def test_convert_patterns_rejects_bad_lines(line, message):
    with pytest.raises(MalformedRecordError) as exc_info:
        _convert_patterns(line)

    assert str(exc_info.value) == f"{message} in data file 'patterns.csv' at line 1"


def test_import_wireless(service, wireless_csv, test_settings):
    """Both CSV files convert and import into one wireless data set."""
    station_csv, pattern_csv = wireless_csv
    status = StatusReporter()

    key = service.import_wireless(ROOT, station_csv, pattern_csv, name="Towers", status=status)

    handle = service.get(ROOT, key)
    assert handle.format_type == FormatType.WIRELESS
    assert handle.version == 1
    assert handle.description == "Wireless Towers"
    assert not handle.has_am

    base = table("base_station", column("cell_key", Integer), column("cell_lon", Float),
                 column("city", String), schema=handle.store_name)
    with handle.connection() as conn:
        rows = conn.execute(select(base.c.cell_key, base.c.cell_lon, base.c.city).order_by(base.c.cell_key)).all()
    assert [row.cell_key for row in rows] == [2, 3]
    assert rows[0].cell_lon == 75.25
    assert rows[0].city == "Springfield"
    assert rows[1].city == ""

    assert list(Path(test_settings.temp_dir).iterdir()) == []


def test_import_wireless_bad_station_file(service, wireless_csv, test_settings):
    """A bad line fails before anything is created and the temp files go away."""
    station_csv, pattern_csv = wireless_csv
    station_csv.write_text("SITE1,A,95,-75,100,50,10,0,0,0,0,0,0\n", encoding="latin-1")

    with pytest.raises(MalformedRecordError):
        service.import_wireless(ROOT, station_csv, pattern_csv)

    assert service.handles(ROOT) == []
    assert list(Path(test_settings.temp_dir).iterdir()) == []
