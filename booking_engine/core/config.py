from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_ENV_FIELD_NAMES = frozenset(
    {
        "app_name",
        "app_env",
        "app_version",
        "api_prefix",
        "allowed_origins",
        "slot_store",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_slots_collection",
        "mongodb_slot_occupancy_collection",
        "mongodb_connect_timeout_ms",
        "slot_min_duration_minutes",
        "slot_max_duration_minutes",
        "slot_query_window_days",
    },
)

DEFAULT_MIN_DURATION_MINUTES = 30
DEFAULT_MAX_DURATION_MINUTES = 180
DEFAULT_QUERY_WINDOW_DAYS = 90


class Settings(BaseSettings):
    app_name: str = "Booking Engine API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    slot_store: str = "memory"
    mongodb_uri: str = "mongodb://localhost:27017/?replicaSet=rs0"
    mongodb_db_name: str = "booking_engine"
    mongodb_slots_collection: str = "calendar_slots"
    mongodb_slot_occupancy_collection: str = "calendar_slot_occupancy"
    mongodb_connect_timeout_ms: int = 2000
    slot_min_duration_minutes: int = DEFAULT_MIN_DURATION_MINUTES
    slot_max_duration_minutes: int = DEFAULT_MAX_DURATION_MINUTES
    slot_query_window_days: int = DEFAULT_QUERY_WINDOW_DAYS

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _filter_allowed_env_fields(source):
            return {
                field_name: raw_value
                for field_name, raw_value in source().items()
                if field_name in ALLOWED_ENV_FIELD_NAMES
            }

        return (
            init_settings,
            lambda: _filter_allowed_env_fields(env_settings),
            lambda: _filter_allowed_env_fields(dotenv_settings),
            file_secret_settings,
        )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("slot_store", mode="before")
    @classmethod
    def normalize_slot_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("mongodb_connect_timeout_ms", mode="before")
    @classmethod
    def normalize_mongodb_connect_timeout(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 2000
        return parsed_value

    @field_validator("slot_min_duration_minutes", mode="before")
    @classmethod
    def normalize_min_duration(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return DEFAULT_MIN_DURATION_MINUTES
        return parsed_value

    @field_validator("slot_max_duration_minutes", mode="before")
    @classmethod
    def normalize_max_duration(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return DEFAULT_MAX_DURATION_MINUTES
        return parsed_value

    @field_validator("slot_query_window_days", mode="before")
    @classmethod
    def normalize_query_window(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return DEFAULT_QUERY_WINDOW_DAYS
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
