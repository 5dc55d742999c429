import json
import logging
import sys

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .events import Coordinate


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SHELTERWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite:///./data/shelterwatch.db"
    catch_up_limit: int = Field(default=50, ge=1)
    max_query_limit: int = Field(default=500, ge=1)
    subscriber_queue_size: int = Field(default=100, ge=1)
    stream_keepalive_seconds: float = 15.0
    auto_capture_enabled: bool = True
    capture_interval_seconds: float = 2.0
    detection_probability: float = Field(default=0.3, ge=0.0, le=1.0)
    # NYC, used whenever the device location is unavailable
    default_lat: float = 40.7128
    default_lon: float = -74.0060
    location_jitter: float = 0.005
    submit_retry_attempts: int = Field(default=3, ge=1)
    submit_retry_backoff_seconds: float = 0.2
    overlay_capacity: int = 5
    overlay_duration_ms: int = 3000
    log_level: str = "INFO"
    log_format: str = "text"

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    @property
    def default_location(self) -> Coordinate:
        return Coordinate(lat=self.default_lat, lon=self.default_lon)


def get_settings() -> AppSettings:
    return AppSettings()


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(settings: AppSettings) -> None:
    if settings.log_format == "json":
        formatter: logging.Formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=settings.log_level.upper(), handlers=[handler], force=True)
