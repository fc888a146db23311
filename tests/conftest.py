"""
Test configuration and fixtures for the station data test suite.

Every test gets its own root database file and backing store directory
under tmp_path. Data files are generated from the import table specs, so
they always carry every required field.
"""

import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from sqlalchemy import Float, Integer

from station_data.config import Settings
from station_data.ingestion.table_specs import FORMAT_FILES, ImportFileSpec, load_table_defs
from station_data.models.data_sets import FormatType
from station_data.service import StationDataService

ROOT_DB_ID = "default"

DATE_VALUES = {
    FormatType.CDBS: "03/15/2024",
    FormatType.CDBS_FM: "03/15/2024",
    FormatType.LMS: "2024-03-15 08:30:00",
}


def _sample_value(file_spec: ImportFileSpec, name: str, date_value: str) -> str:
    if name.endswith("_date") or name.endswith("_ts"):
        return date_value
    spec = next((field for field in file_spec.fields if field.name == name), None)
    if spec is None or isinstance(spec.type, Integer):
        return "1"
    if isinstance(spec.type, Float):
        return "1.5"
    return "x"


def write_data_files(directory: Path, format_type: FormatType, table_defs: Dict[str, List[str]],
                     rows: Optional[Dict[str, List[Dict[str, str]]]] = None, skip_files=(),
                     skip_fields: Optional[Dict[str, List[str]]] = None) -> Path:
    """Write one data file per table of a format, one sample record each unless rows are given"""
    rows = rows or {}
    skip_fields = skip_fields or {}
    date_value = DATE_VALUES.get(format_type, "")
    directory.mkdir(parents=True, exist_ok=True)

    for file_spec in FORMAT_FILES[format_type]:
        if file_spec.table_name in skip_files:
            continue
        header = None
        if file_spec.field_names is not None:
            names = list(file_spec.field_names)
        elif file_spec.names_from_defs:
            names = table_defs[file_spec.table_name]
        else:
            dropped = skip_fields.get(file_spec.table_name, [])
            names = [field.name for field in file_spec.fields if field.name not in dropped]
            header = "|".join(names) + "|^|\n"

        lines = [header] if header else []
        for row in rows.get(file_spec.table_name, [{}]):
            values = [row.get(name, _sample_value(file_spec, name, date_value)) for name in names]
            lines.append("|".join(values) + "|^|\n")
        (directory / file_spec.file_name).write_text("".join(lines), encoding="latin-1")

    return directory


def zip_directory(directory: Path, zip_path: Path) -> Path:
    with zipfile.ZipFile(zip_path, "w") as archive:
        for file_path in sorted(directory.iterdir()):
            archive.write(file_path, f"dump/{file_path.name}")
    return zip_path


@pytest.fixture(scope="function")
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a private root database and temp directory"""
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    return Settings(
        root_databases=f"{ROOT_DB_ID}=sqlite:///{tmp_path / 'root' / 'station_data.db'}",
        live_credentials_path=str(tmp_path / "missing_login.props"),
        temp_dir=str(temp_dir),
        cdbs_download_url="http://downloads.test/cdbs.zip",
        lms_download_url="http://downloads.test/lms.zip",
        log_format="console",
    )


@pytest.fixture(scope="function")
def service(test_settings):
    """Service over the test root database, shut down after the test"""
    service = StationDataService(test_settings)
    yield service
    service.shutdown()


@pytest.fixture(scope="function")
def registry(service):
    return service.registry


@pytest.fixture(scope="function")
def root(service):
    """The RootDatabase behind the default root id"""
    return service.databases.get(ROOT_DB_ID)


@pytest.fixture(scope="function")
def register(registry):
    """Write an index row with no backing store and reload the cache"""

    def _register(format_type: FormatType, db_date: Optional[datetime] = None, name: Optional[str] = None,
                  version: int = 1, is_download: bool = False) -> int:
        key = registry.allocate_key(ROOT_DB_ID)
        registry.register_data_set(
            ROOT_DB_ID, key, format_type, version, f"set {key}",
            name=name, db_date=db_date, is_download=is_download,
        )
        registry.reload(ROOT_DB_ID)
        return key

    return _register


@pytest.fixture(scope="function")
def data_files(tmp_path, test_settings):
    """Factory writing a directory of data files for a format"""
    table_defs = load_table_defs(test_settings.cdbs_table_defs_path)

    def _data_files(format_type: FormatType, name: str = "data", **kwargs) -> Path:
        return write_data_files(tmp_path / name, format_type, table_defs, **kwargs)

    return _data_files


@pytest.fixture(scope="function")
def data_archive(tmp_path, data_files):
    """Factory writing a ZIP archive of data files for a format"""

    def _data_archive(format_type: FormatType, name: str = "archive", **kwargs) -> Path:
        directory = data_files(format_type, name=f"{name}_files", **kwargs)
        return zip_directory(directory, tmp_path / f"{name}.zip")

    return _data_archive


@pytest.fixture(scope="function")
def wireless_csv(tmp_path):
    """Station and pattern CSV files with two sectors and two patterns"""
    station_csv = tmp_path / "stations.csv"
    station_csv.write_text(
        "# cell site, sector, lat, lon, amsl, haat, erp, az id, orientation, el id, e tilt, m tilt, m tilt az\n"
        "SITE1,A,40.5,-75.25,120,45,20,7,0,9,2,1,,REF-1,Springfield,PA,US\n"
        "SITE1,B,40.5,-75.25,120,45,20,7,120,0,0,0,120\n",
        encoding="latin-1",
    )
    pattern_csv = tmp_path / "patterns.csv"
    pattern_csv.write_text(
        "7,A,Panel 90 degree,0;1.0,90;0.5,180;0.25,270;0.5\n"
        "9,E,Panel tilt,-10;0.5,0;1.0,10;0.5\n",
        encoding="latin-1",
    )
    return station_csv, pattern_csv


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
