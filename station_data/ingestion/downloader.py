"""Download of current data archives, followed by import"""

import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional

import httpx
import structlog

from station_data.config import Settings, settings as default_settings
from station_data.exceptions import ConfigurationError, DownloadCancelledError, NetworkFailureError
from station_data.ingestion.importer import Importer
from station_data.models.data_sets import FormatType
from station_data.status import StatusReporter

logger = structlog.get_logger()

PROGRESS_STEP_PERCENT = 5


class Downloader:
    """Fetches a data archive over HTTP and imports it as a download.

    Only CDBS, CDBS FM and LMS data can be downloaded. The archive goes to a
    temporary file that is removed whether or not the import succeeds.
    """

    def __init__(self, importer: Importer, settings: Settings = default_settings,
                 transport: Optional[httpx.BaseTransport] = None):
        self.importer = importer
        self.settings = settings
        self.transport = transport

    def download_url(self, format_type: FormatType) -> str:
        if format_type in (FormatType.CDBS, FormatType.CDBS_FM):
            url = self.settings.cdbs_download_url
        elif format_type == FormatType.LMS:
            url = self.settings.lms_download_url
        else:
            raise ConfigurationError(f"Station data type '{format_type.type_name}' cannot be downloaded")
        if not url:
            raise ConfigurationError(f"No download URL configured for {format_type.type_name}")
        return url

    def download(self, root_db_id: str, format_type: FormatType, name: Optional[str] = None,
                 status: Optional[StatusReporter] = None) -> int:
        """Download and import, returns the new key"""
        url = self.download_url(format_type)
        status = status or StatusReporter()

        fd, temp_name = tempfile.mkstemp(prefix="station_data_", suffix=".zip", dir=self.settings.temp_dir)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                size = self._fetch(url, out, status)
            logger.info("Download complete", url=url, format=format_type.type_name, size_bytes=size)

            status.report_status("Importing downloaded data...")
            return self.importer.import_data_set(
                root_db_id, format_type, temp_path, name=name, status=status, is_download=True
            )
        finally:
            temp_path.unlink(missing_ok=True)

    def _fetch(self, url: str, out: BinaryIO, status: StatusReporter) -> int:
        logger.info("Downloading station data", url=url)
        status.report_status("Downloading...")
        received = 0
        try:
            with httpx.Client(timeout=self.settings.download_timeout_seconds, transport=self.transport,
                              follow_redirects=True) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    total = int(response.headers.get("content-length") or 0)
                    last_percent = 0
                    for chunk in response.iter_bytes(chunk_size=self.settings.download_chunk_size):
                        if status.is_cancelled:
                            raise DownloadCancelledError("Download cancelled")
                        out.write(chunk)
                        received += len(chunk)
                        if total > 0:
                            percent = min(100, received * 100 // total)
                            if percent - last_percent >= PROGRESS_STEP_PERCENT:
                                status.report_progress(percent)
                                last_percent = percent
        except httpx.HTTPError as e:
            logger.error("Download failed", url=url, error=str(e))
            raise NetworkFailureError(f"Download failed: {e}") from e

        if status.is_cancelled:
            raise DownloadCancelledError("Download cancelled")
        return received
