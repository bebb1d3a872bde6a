# chrysalis/settings/config.py  (Pydantic v2)
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field


class Settings(BaseSettings):
    # ---------- Database ----------
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./chrysalis.db",
        validation_alias=AliasChoices("DATABASE_URL", "CHRYSALIS_DATABASE_URL"),
    )
    DATABASE_ECHO: bool = Field(default=False, validation_alias=AliasChoices("DATABASE_ECHO"))
    # Dev convenience; production schemas are managed outside the app
    RUN_DB_CREATE_ALL: bool = Field(default=True, validation_alias=AliasChoices("RUN_DB_CREATE_ALL"))

    # ---------- Logging ----------
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "CHRYSALIS_LOG_LEVEL"),
    )

    # ---------- Chapters ----------
    DEFAULT_CHAPTER_TITLE: str = Field(
        default="Untitled Chapter",
        validation_alias=AliasChoices("DEFAULT_CHAPTER_TITLE"),
    )

    # ---------- Live streams ----------
    # seconds between SSE keep-alive comments when nothing changed
    STREAM_KEEPALIVE_SECONDS: float = Field(
        default=15.0,
        validation_alias=AliasChoices("STREAM_KEEPALIVE_SECONDS"),
    )

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # allow lower/upper env names
        extra="ignore",
    )


settings = Settings()
