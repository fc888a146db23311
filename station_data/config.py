"""Configuration management for the station data registry"""

from pathlib import Path
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


PACKAGE_DATA_DIR = Path(__file__).parent / "data"


class Settings(BaseSettings):
    """Application settings"""

    # Root databases, "<id>=<sqlalchemy url>" pairs separated by ';'
    root_databases: str = Field(
        default="default=sqlite:///./data/station_data.db", env="ROOT_DATABASES"
    )
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    pool_size: int = Field(default=5, env="POOL_SIZE")

    # Registry cache
    cache_ttl_seconds: int = Field(default=300, env="CACHE_TTL_SECONDS")

    # Import configuration
    cdbs_table_defs_path: str = Field(
        default=str(PACKAGE_DATA_DIR / "cdbs_table_defs.dat"), env="CDBS_TABLE_DEFS_PATH"
    )
    import_max_statement_length: int = Field(default=500000, env="IMPORT_MAX_STATEMENT_LENGTH")

    # Download configuration
    lms_download_url: Optional[str] = Field(default=None, env="LMS_DOWNLOAD_URL")
    cdbs_download_url: Optional[str] = Field(default=None, env="CDBS_DOWNLOAD_URL")
    download_timeout_seconds: float = Field(default=30.0, env="DOWNLOAD_TIMEOUT_SECONDS")
    download_chunk_size: int = Field(default=65536, env="DOWNLOAD_CHUNK_SIZE")
    auto_delete_previous_download: bool = Field(default=True, env="AUTO_DELETE_PREVIOUS_DOWNLOAD")
    temp_dir: Optional[str] = Field(default=None, env="TEMP_DIR")

    # Live server credentials file
    live_credentials_path: str = Field(default="./api_login.props", env="LIVE_CREDENTIALS_PATH")
    live_schema: str = Field(default="mass_media", env="LIVE_SCHEMA")

    # Logging Configuration
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    # Application Configuration
    app_name: str = "Station Data Registry"
    app_version: str = "0.1.0"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    def get_root_databases(self) -> Dict[str, str]:
        """Parse the root database directory"""
        roots = {}
        for entry in self.root_databases.split(";"):
            if "=" in entry:
                root_id, url = entry.split("=", 1)
                roots[root_id.strip()] = url.strip()
        return roots


# Global settings instance
settings = Settings()
