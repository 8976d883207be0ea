"""
countryblock.config
~~~~~~~~~~~~~~~~~~~

Centralised runtime configuration for **countryblock**.

Every option can be set through a ``COUNTRYBLOCK_*`` environment variable
or an optional ``.env`` file; command-line flags override both by being
passed to :class:`Settings` as keyword arguments.

Typical usage
-------------

>>> from countryblock.config import Settings
>>> print(Settings().max_batch_size)
5000
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

RIPE_COUNTRY_RESOURCE_URL = "https://stat.ripe.net/data/country-resource-list/data.json"

# -----------------------------------------------------------------------------
# Settings Model
# -----------------------------------------------------------------------------


class Settings(BaseSettings):
    # ------------------------------------------------------------------ #
    # Run selection
    # ------------------------------------------------------------------ #
    country_code: Optional[str] = Field(
        None, description="2-letter ISO-3166 country code to block (CH, US, IN …)."
    )
    force_update: bool = Field(
        False, description="Apply even if the source is not newer than the snapshot."
    )
    use_gcloud: bool = Field(
        False, description="Use Google Cloud firewall rules instead of ipset/iptables."
    )

    # ------------------------------------------------------------------ #
    # Snapshot store
    # ------------------------------------------------------------------ #
    data_dir: Path = Field(
        Path(tempfile.gettempdir()),
        description="Directory holding the <family>-<CC> snapshot files.",
    )

    # ------------------------------------------------------------------ #
    # Prefix source
    # ------------------------------------------------------------------ #
    source_url: str = Field(RIPE_COUNTRY_RESOURCE_URL)
    http_timeout: float = Field(30.0, gt=0)
    http_retries: int = Field(3, ge=1, le=10)
    http_retry_delay: float = Field(2.0, ge=0)

    # ------------------------------------------------------------------ #
    # Targets
    # ------------------------------------------------------------------ #
    max_batch_size: int = Field(
        5000, ge=1, description="Max source ranges per cloud firewall rule."
    )
    gcloud_priority: int = Field(1, ge=0, le=65535)
    gcloud_network: Optional[str] = None
    gcloud_project: Optional[str] = None
    ipset_hashsize: int = Field(4096, ge=64)
    ipset_maxelem: int = Field(262144, ge=1)

    # ------------------------------------------------------------------ #
    # Scheduler
    # ------------------------------------------------------------------ #
    cron_time: str = Field(
        "03:00",
        description="Comma-separated HH:MM times for --daemon runs.",
    )
    timezone: str = "UTC"

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    verbose: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    log_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_prefix="COUNTRYBLOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Validators
    # ------------------------------------------------------------------ #
    @field_validator("country_code", mode="before")
    @classmethod
    def _normalise_country(cls, v):
        if v is None:
            return v
        v = str(v).strip()
        if len(v) != 2 or not v.isalpha() or not v.isascii():
            raise ValueError("ISO country code must be a 2-letter code")
        return v.upper()

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v):
        return str(v).strip().upper()

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {v!r}") from exc
        return v

    @property
    def cron_times(self) -> List[str]:
        return [t.strip() for t in self.cron_time.split(",") if t.strip()]

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.verbose else self.log_level

