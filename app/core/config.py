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
        "meeting_data_store",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_meetings_collection",
        "mongodb_teams_collection",
        "mongodb_notifications_collection",
        "mongodb_connect_timeout_ms",
        "gemini_api_key",
        "gemini_model",
        "gemini_api_timeout_seconds",
        "gemini_max_attempts",
        "sync_update_queue_limit",
        "sync_update_queue_retain",
        "default_meeting_title",
    },
)


class Settings(BaseSettings):
    app_name: str = "Meeting Task Assignment API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    meeting_data_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "meeting_assist"
    mongodb_meetings_collection: str = "meetings"
    mongodb_teams_collection: str = "teams"
    mongodb_notifications_collection: str = "notifications"
    mongodb_connect_timeout_ms: int = 2000
    gemini_api_key: str = ""
    gemini_model: str = "gemini-3-flash-preview"
    gemini_api_timeout_seconds: float = 20.0
    gemini_max_attempts: int = 3
    sync_update_queue_limit: int = 1000
    sync_update_queue_retain: int = 500
    default_meeting_title: str = "Meeting Transcript"

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

    @field_validator("meeting_data_store", mode="before")
    @classmethod
    def normalize_meeting_data_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("gemini_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_gemini_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 20.0
        return parsed_value

    @field_validator("gemini_max_attempts", mode="before")
    @classmethod
    def normalize_gemini_max_attempts(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 3
        return parsed_value

    @field_validator("sync_update_queue_limit", mode="before")
    @classmethod
    def normalize_sync_update_queue_limit(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 1000
        return parsed_value

    @field_validator("sync_update_queue_retain", mode="before")
    @classmethod
    def normalize_sync_update_queue_retain(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 500
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
