"""Application settings: single file, Pydantic-based.

Env names match the deployment .env of the dashboard server:
  - IP / PORT: listen address of the HTTP API
  - POOL_ID: the one pool whose delegators are rewarded
  - MODE: CUSTOM_MARGIN | MEDIAN_MARGIN | PERCENTAGE
  - CUSTOM_MARGIN: value in [0, 1], required only in CUSTOM_MARGIN mode
  - API_URL / KOIOS_TOKEN: upstream Koios REST API and optional bearer token
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from poolrewards.enums import Mode


def _project_root() -> Path:
    """Project root. config.py lives at the root."""
    return Path(__file__).resolve().parent


def _ensure_env_loaded() -> None:
    """Load .env from project root (then its parent). Idempotent."""
    root: Path = _project_root()
    for candidate in (root / ".env", root.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)


_ensure_env_loaded()


class KoiosSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KOIOS_",
        env_file=(str(_project_root() / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_url: str = Field(
        description="Base URL of the Koios REST API, e.g. https://api.koios.rest/api/v1",
        validation_alias="API_URL",
    )
    token: str | None = Field(default=None, description="Bearer token sent upstream")
    timeout: float = Field(default=30.0, gt=0)
    page_limit: int = Field(default=1000, gt=0, le=1000)

    @field_validator("api_url")
    @classmethod
    def _api_url_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("API_URL must not be empty")
        return value.rstrip("/")

    @field_validator("token")
    @classmethod
    def _blank_token_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_project_root() / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    ip: str = Field(validation_alias="IP")
    port: int = Field(default=5000, gt=0, lt=65536, validation_alias="PORT")
    pool_id: str = Field(validation_alias="POOL_ID")
    mode: Mode = Field(validation_alias="MODE")
    custom_margin: Decimal | None = Field(default=None, validation_alias="CUSTOM_MARGIN")
    data_dir: Path = Field(default=Path("data"), validation_alias="DATA_DIR")
    sync_interval_seconds: float = Field(
        default=3600.0, gt=0, validation_alias="SYNC_INTERVAL_SECONDS"
    )
    proxy_prefix: str = Field(default="/koios", validation_alias="PROXY_PREFIX")

    koios: KoiosSettings = Field(default_factory=KoiosSettings)

    @field_validator("ip", "pool_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("custom_margin", mode="before")
    @classmethod
    def _empty_margin_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("proxy_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = "/" + value.strip().strip("/")
        if value == "/":
            raise ValueError("PROXY_PREFIX must name a path segment")
        return value

    @model_validator(mode="after")
    def _check_margin_for_mode(self) -> "Settings":
        if self.mode is not Mode.CUSTOM_MARGIN:
            self.custom_margin = None
            return self
        if self.custom_margin is None:
            raise ValueError("CUSTOM_MARGIN is required when MODE is CUSTOM_MARGIN")
        if not Decimal(0) <= self.custom_margin <= Decimal(1):
            raise ValueError("CUSTOM_MARGIN must be a number between 0 and 1")
        return self

    @property
    def resolved_data_dir(self) -> Path:
        if self.data_dir.is_absolute():
            return self.data_dir
        return (_project_root() / self.data_dir).resolve()


@lru_cache
def get_settings() -> Settings:
    return Settings()
