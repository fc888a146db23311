"""Error types raised by the station data registry"""

from typing import Optional


class StationDataError(Exception):
    """Base exception for station data errors."""
    pass


class InvalidKeyError(StationDataError):
    """Raised when a key is unknown even after a forced cache refresh."""
    def __init__(self, root_db_id: str, key: int):
        self.root_db_id = root_db_id
        self.key = key
        super().__init__(f"Invalid station data key {key} in '{root_db_id}'")


class DataSetDeletedError(StationDataError):
    """Raised when a soft-deleted data set is resolved or connected to."""
    def __init__(self, key: int):
        self.key = key
        super().__init__(f"The station data has been deleted (key {key})")


class DataSetBusyError(StationDataError):
    """Raised when a data set is locked by another connection or process."""
    def __init__(self, key: int, message: str = "The station data is in use"):
        self.key = key
        super().__init__(f"{message} (key {key})")


class InvalidNameError(StationDataError):
    """Raised when a proposed data set name is rejected."""
    pass


class UnsupportedFormatError(StationDataError):
    """Raised when an operation does not apply to a data set format."""
    pass


class ConfigurationError(StationDataError):
    """Raised for missing download URLs or root database configuration."""
    pass


class NetworkFailureError(StationDataError):
    """Raised when a download fails on the network."""
    pass


class SchemaMismatchError(StationDataError):
    """Raised when a required file or field is missing from import data."""
    def __init__(self, message: str, file_name: Optional[str] = None):
        self.file_name = file_name
        super().__init__(message)


class MalformedRecordError(StationDataError):
    """Raised on a field count mismatch or early end of file during a copy."""
    def __init__(self, message: str, file_name: str, line: int):
        self.file_name = file_name
        self.line = line
        super().__init__(f"{message} in data file '{file_name}' at line {line}")


class ImportFailedError(StationDataError):
    """Wraps database or I/O errors raised while copying a data file."""
    def __init__(self, message: str, file_name: Optional[str] = None, line: Optional[int] = None):
        self.file_name = file_name
        self.line = line
        if file_name is not None:
            message = f"{message} on data file '{file_name}' at line {line}"
        super().__init__(message)


class ImportCancelledError(StationDataError):
    """Raised when an import is cancelled between files."""
    pass


class DownloadCancelledError(StationDataError):
    """Raised when a download is cancelled before the import starts."""
    pass
