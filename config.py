from pathlib import Path
from typing import List, Optional

from pydantic import Field, AliasChoices, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class MongoDBSettings(BaseSettings):
    """MongoDB connection and database settings."""
    uri: str = Field("mongodb://localhost:27017/", validation_alias=AliasChoices('MONGODB_URI', 'MONGO_URI'))
    database: str = Field("happen", validation_alias=AliasChoices('MONGODB_DATABASE', 'MONGO_DATABASE'))
    server_selection_timeout_ms: int = Field(10000, validation_alias=AliasChoices('MONGODB_SERVER_SELECTION_TIMEOUT_MS'))

    model_config = SettingsConfigDict(
        env_prefix='MONGODB_',
        extra='ignore',
        populate_by_name=True
    )


class StorageSettings(BaseSettings):
    """GridFS bucket used for uploaded images."""
    bucket: str = Field("happen_media", validation_alias=AliasChoices('STORAGE_BUCKET'))

    model_config = SettingsConfigDict(
        env_prefix='STORAGE_',
        extra='ignore',
        populate_by_name=True
    )


class QuerySettings(BaseSettings):
    """Batch sizes and default limits for the client-side filtered queries."""
    nearby_events_batch: int = Field(50, ge=1)
    nearby_venues_batch: int = Field(100, ge=1)
    search_batch: int = Field(100, ge=1)
    feed_limit: int = Field(20, ge=1)

    model_config = SettingsConfigDict(
        env_prefix='QUERY_',
        extra='ignore',
        populate_by_name=True
    )


class LoggingSettings(BaseSettings):
    """Settings for log output."""
    log_output_directory: Path = Field(Path("happen_logs"), validation_alias=AliasChoices('LOG_OUTPUT_DIRECTORY'))
    enable_file_logging: bool = Field(False, validation_alias=AliasChoices('LOG_ENABLE_FILE_LOGGING'))

    model_config = SettingsConfigDict(
        env_prefix='LOG_',
        extra='ignore',
        populate_by_name=True
    )


class SentrySettings(BaseSettings):
    """Configuration for Sentry error tracking."""
    dsn: Optional[HttpUrl] = Field(None, validation_alias=AliasChoices('SENTRY_DSN'))
    environment: Optional[str] = Field(None, description="Overrides main app environment for Sentry if needed.")
    traces_sample_rate: float = Field(0.2, ge=0.0, le=1.0)
    enable_performance_monitoring: bool = Field(True)

    model_config = SettingsConfigDict(
        env_prefix='SENTRY_',
        extra='ignore',
        populate_by_name=True
    )


class ApiSettings(BaseSettings):
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(
        env_prefix='API_',
        extra='ignore',
        populate_by_name=True
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field("development", validation_alias=AliasChoices('APP_ENV', 'ENVIRONMENT'))
    log_level: str = Field("INFO", validation_alias=AliasChoices('APP_LOG_LEVEL', 'LOG_LEVEL'))

    mongodb: MongoDBSettings = Field(default_factory=MongoDBSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    queries: QuerySettings = Field(default_factory=QuerySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        env_nested_delimiter='__',
        extra='ignore',
        populate_by_name=True
    )


settings = Settings()
