"""Access to import data files in a directory or a ZIP archive"""

import io
import zipfile
from pathlib import Path
from typing import Dict, Optional, TextIO

import structlog

from station_data.exceptions import ImportFailedError

logger = structlog.get_logger()

DATA_FILE_ENCODING = "latin-1"


class ArchiveSource:
    """Data files addressed by file name, ignoring case and any directories.

    A ZIP archive is read in place without extracting.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._zip: Optional[zipfile.ZipFile] = None
        self._entries: Dict[str, str] = {}

        if self.path.is_dir():
            for file_path in self.path.iterdir():
                if file_path.is_file():
                    self._entries.setdefault(file_path.name.lower(), str(file_path))
        elif zipfile.is_zipfile(self.path):
            self._zip = zipfile.ZipFile(self.path, "r")
            for entry in self._zip.namelist():
                if entry.endswith("/"):
                    continue
                self._entries.setdefault(Path(entry).name.lower(), entry)
        elif not self.path.exists():
            raise FileNotFoundError(f"Import data not found: {self.path}")
        else:
            raise ImportFailedError(f"Import data is not a directory or ZIP archive: {self.path}")

        logger.debug("Import data opened", path=str(self.path), files=len(self._entries))

    def has(self, file_name: str) -> bool:
        return file_name.lower() in self._entries

    def open(self, file_name: str) -> TextIO:
        entry = self._entries.get(file_name.lower())
        if entry is None:
            raise FileNotFoundError(f"Data file '{file_name}' not found in {self.path}")
        if self._zip is not None:
            return io.TextIOWrapper(self._zip.open(entry), encoding=DATA_FILE_ENCODING, newline="")
        return open(entry, "r", encoding=DATA_FILE_ENCODING, newline="")

    def close(self):
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
