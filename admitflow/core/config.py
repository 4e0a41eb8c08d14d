from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Primary relational store. Unset means there is no remote store configured
    # and every submission goes to the REST fallback or the local buffer.
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    local_buffer_url: str = Field("sqlite+aiosqlite:///./admitflow_buffer.db", alias="LOCAL_BUFFER_URL")
    public_api_base_url: Optional[str] = Field(None, alias="PUBLIC_API_BASE_URL")
    public_api_timeout_seconds: float = Field(10.0, alias="PUBLIC_API_TIMEOUT_SECONDS")

    tracking_table: str = Field("application_tracking", alias="TRACKING_TABLE")
    poll_interval_seconds: float = Field(5.0, alias="POLL_INTERVAL_SECONDS")
    create_tables: bool = Field(False, alias="CREATE_TABLES")

    default_campus: str = Field("Main", alias="DEFAULT_CAMPUS")
    default_batch: str = Field("TBD", alias="DEFAULT_BATCH")
    default_due_days: int = Field(7, alias="DEFAULT_DUE_DAYS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


settings = Settings()
