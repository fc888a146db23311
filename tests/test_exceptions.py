"""
Error Type Tests

Messages and attributes of the station data error types.
"""

import pytest

from station_data.exceptions import (
    DataSetBusyError,
    DataSetDeletedError,
    ImportFailedError,
    InvalidKeyError,
    MalformedRecordError,
    SchemaMismatchError,
    StationDataError,
)


def test_invalid_key_error_structure():
    """InvalidKeyError names the key and the root database."""
    error = InvalidKeyError("default", 17)

    assert isinstance(error, StationDataError)
    assert error.key == 17
    assert str(error) == "Invalid station data key 17 in 'default'"


def test_busy_error_default_and_custom_message():
    assert str(DataSetBusyError(3)) == "The station data is in use (key 3)"
    assert str(DataSetBusyError(3, "The station data is in use and cannot be deleted")) == (
        "The station data is in use and cannot be deleted (key 3)"
    )


def test_deleted_error_message():
    assert str(DataSetDeletedError(8)) == "The station data has been deleted (key 8)"


def test_malformed_record_error_structure():
    """MalformedRecordError stores the file name and line for reporting."""
    error = MalformedRecordError("Incorrect field count", "facility.dat", 12)

    assert error.file_name == "facility.dat"
    assert error.line == 12
    assert str(error) == "Incorrect field count in data file 'facility.dat' at line 12"


def test_import_failed_error_with_and_without_location():
    located = ImportFailedError("disk full", "ant_pattern.dat", 4)
    plain = ImportFailedError("Import data is not a directory or ZIP archive")

    assert str(located) == "disk full on data file 'ant_pattern.dat' at line 4"
    assert str(plain) == "Import data is not a directory or ZIP archive"
    assert plain.file_name is None


def test_schema_mismatch_error_is_station_data_error():
    with pytest.raises(StationDataError) as exc_info:
        raise SchemaMismatchError("Missing required data file 'facility.dat'", "facility.dat")

    assert exc_info.value.file_name == "facility.dat"
