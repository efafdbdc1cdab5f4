"""Application configuration pulled from environment variables via pydantic."""
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the trip safety service."""
    model_config = SettingsConfigDict(env_prefix="SAFETY_", extra="ignore")

    api_key: str | None = None
    api_key_redis_url: str | None = None
    api_key_redis_set: str = "api_keys"

    request_timeout_seconds: float = 9.0
    provider_retries: int = 2
    retry_backoff_factor: float = 0.2
    http_cache_name: str = ".cache"
    http_cache_expire_seconds: int = 300
    user_agent: str = "BackcountryConditions/1.0"

    zone_catalog_url: str = "https://api.avalanche.org/v2/public/products/map-layer"
    zone_catalog_ttl_seconds: int = 600
    snowpack_station_ttl_seconds: int = 12 * 3600
    nearest_zone_cap_km: float = 40.0
    regional_zone_cap_km: float = 90.0
    overall_danger_rule: str = "max"  # options: max, almost_worst_case

    default_travel_window_hours: int = 12
    log_level: str = "INFO"

    @field_validator("zone_catalog_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("overall_danger_rule", mode="after")
    @classmethod
    def normalize_danger_rule(cls, v: str) -> str:
        value = str(v).strip().lower()
        if value not in ("max", "almost_worst_case"):
            raise ValueError(f"Unsupported overall danger rule: {v}")
        return value

    @model_validator(mode="after")
    def regional_cap_not_below_generic(self) -> "Settings":
        """The regional zone cap only ever widens the generic one."""
        if self.regional_zone_cap_km < self.nearest_zone_cap_km:
            self.regional_zone_cap_km = self.nearest_zone_cap_km
        return self


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
