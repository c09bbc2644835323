from __future__ import annotations

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _build_postgres_dsn(
    *,
    host: str,
    port: int,
    name: str,
    user: str,
    password: str,
    ssl_mode: str,
) -> str:
    encoded_user = quote_plus(user)
    encoded_password = quote_plus(password) if password else ""
    auth = f"{encoded_user}:{encoded_password}" if encoded_password else encoded_user
    dsn = f"postgresql://{auth}@{host}:{port}/{name}"
    if ssl_mode:
        dsn = f"{dsn}?sslmode={quote_plus(ssl_mode)}"
    return dsn


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_name: str = Field(default="attachment_lite_dev", validation_alias="DB_NAME")
    db_user: str = Field(default="attachment_lite", validation_alias="DB_USER")
    db_password: str = Field(default="attachment_lite", validation_alias="DB_PASSWORD")
    db_ssl_mode: str = Field(default="prefer", validation_alias="DB_SSL_MODE")

    # Any SQLAlchemy URL; sqlite URLs are routed to aiosqlite.
    database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

    attachment_storage_dir: str = Field(
        default="storage/attachments",
        validation_alias="ATTACHMENT_STORAGE_DIR",
    )
    attachment_base_url: str = Field(default="/uploads", validation_alias="ATTACHMENT_BASE_URL")
    attachment_max_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        validation_alias="ATTACHMENT_MAX_SIZE_BYTES",
    )

    @computed_field
    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url
        return _build_postgres_dsn(
            host=self.db_host,
            port=self.db_port,
            name=self.db_name,
            user=self.db_user,
            password=self.db_password,
            ssl_mode=self.db_ssl_mode,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
