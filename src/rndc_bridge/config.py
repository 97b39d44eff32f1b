from pathlib import Path
from typing import Optional

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from rndc_bridge.exceptions import ConfigError

DEFAULT_RNDC_URL = "http://plc.mintransporte.gov.co:8080/soap/IBPMServices"


class AppSettings(BaseSettings):
    name: str = "RNDC Bridge"
    version: str = "1.0.0"


class PathSettings(BaseSettings):
    db_path: Path = Path("./data/rndc_bridge.db")
    output_dir: Path = Path("./reports")


class RndcSettings(BaseSettings):
    """
    Registry endpoint and operator credentials.
    Position reports are signed with the GPS account; completions and queries with the registry account.
    """

    environment: str = "test"  # test|production
    ws_url_test: str = DEFAULT_RNDC_URL
    ws_url_prod: str = DEFAULT_RNDC_URL
    username: str = ""
    password: str = ""
    gps_username: str = "usuariogps"
    gps_password: str = "passwordgps"
    company_nit: str = "9999999999"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_seconds: float = 1.0
    pacing_seconds: float = 0.5  # pause between consecutive sends of a batch

    @property
    def active_ws_url(self) -> str:
        if self.environment.strip().lower() == "production":
            return self.ws_url_prod
        return self.ws_url_test


class BatchSettings(BaseSettings):
    api_url: str = "http://127.0.0.1:8000"
    poll_interval_seconds: float = 2.0
    fallback_quantity: str = "10000"
    arrival_window_minutes: tuple[int, int] = (60, 90)
    dwell_window_minutes: tuple[int, int] = (90, 140)
    query_concurrency: int = 5


class SecuritySettings(BaseSettings):
    api_token: Optional[str] = None  # Bearer token or X-API-Key
    max_upload_mb: int = 15


class LoggingSettings(BaseSettings):
    log_requests: bool = True
    level: str = "INFO"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_nested_delimiter="__", env_file=".env", extra="ignore")
    app: AppSettings = AppSettings()
    paths: PathSettings = PathSettings()
    rndc: RndcSettings = RndcSettings()
    batch: BatchSettings = BatchSettings()
    security: SecuritySettings = SecuritySettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        default_path = Path("config/settings.yaml")
        path = config_path or (default_path if default_path.exists() else None)

        if not path:
            return cls()
        if not Path(path).exists():
            raise ConfigError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        return cls(**config_data)


settings = Settings.load()
