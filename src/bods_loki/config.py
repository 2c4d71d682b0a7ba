"""Application configuration via environment variables."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BODS_BASE_URL_TEMPLATE = "https://data.bus-data.dft.gov.uk/api/v1/datafeed/{dataset_id}/"

DEFAULT_DATASET_ID = "699"
DEFAULT_LINE_REFS = "49x"
DEFAULT_LOKI_URL = "http://localhost:3100"
DEFAULT_INTERVAL = "30s"
DEFAULT_SHUTDOWN_GRACE_SEC = 5.0
DEFAULT_HTTP_TIMEOUT_SEC = 30.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class Settings(BaseSettings):
    """Application settings loaded from BODS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BODS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    dry_run: bool = False

    # BODS API
    api_key: str = Field(default="")
    dataset_id: str = DEFAULT_DATASET_ID
    line_refs: str = DEFAULT_LINE_REFS

    # Loki
    loki_url: str = DEFAULT_LOKI_URL
    loki_user: str = ""
    loki_password: str = ""

    # Polling
    interval: str = DEFAULT_INTERVAL
    shutdown_grace_sec: float = Field(default=DEFAULT_SHUTDOWN_GRACE_SEC, ge=0)
    http_timeout_sec: float = Field(default=DEFAULT_HTTP_TIMEOUT_SEC, gt=0)

    @property
    def line_ref_list(self) -> list[str]:
        return split_line_refs(self.line_refs)

    @property
    def interval_duration(self) -> timedelta:
        return parse_duration(self.interval)


@dataclass(frozen=True)
class PipelineConfig:
    """Explicit configuration handed to the pipeline at construction."""

    api_key: str
    line_refs: list[str] = field(default_factory=list)
    dataset_id: str = DEFAULT_DATASET_ID
    dry_run: bool = False
    loki_url: str = DEFAULT_LOKI_URL
    loki_user: str = ""
    loki_password: str = ""
    interval: timedelta = timedelta(seconds=30)
    shutdown_grace: timedelta = timedelta(seconds=DEFAULT_SHUTDOWN_GRACE_SEC)
    http_timeout_sec: float = DEFAULT_HTTP_TIMEOUT_SEC

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            api_key=settings.api_key,
            line_refs=settings.line_ref_list,
            dataset_id=settings.dataset_id,
            dry_run=settings.dry_run,
            loki_url=settings.loki_url,
            loki_user=settings.loki_user,
            loki_password=settings.loki_password,
            interval=settings.interval_duration,
            shutdown_grace=timedelta(seconds=settings.shutdown_grace_sec),
            http_timeout_sec=settings.http_timeout_sec,
        )


def split_line_refs(raw: str) -> list[str]:
    """Split a comma-separated line list, dropping blanks."""
    return [ref.strip() for ref in raw.split(",") if ref.strip()]


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as ``30s``, ``1m30s`` or ``500ms``.

    A bare ``0`` is accepted. Raises ValueError for anything else that is
    not a sequence of number+unit pairs.
    """
    text = value.strip()
    if not text:
        msg = "empty duration"
        raise ValueError(msg)

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return timedelta(0)

    seconds = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            msg = f"invalid duration {value!r}"
            raise ValueError(msg)
        number, unit = match.groups()
        seconds += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    return timedelta(seconds=sign * seconds)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
