from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # No DATABASE_URL means the server runs in schema-only mode
    DATABASE_URL: Optional[str] = None
    SQL_ECHO: bool = False
    DB_POOL_SIZE: int = 25
    DB_POOL_RECYCLE_SECONDS: int = 300

    LOG_LEVEL: str = "INFO"
    SERVICE_VERSION: str = "1.0.0"

    QUERY_TIMEOUT_SECONDS: Optional[float] = 30.0
    RESULT_TTL_SECONDS: int = 3600
    RESULT_SWEEP_INTERVAL_SECONDS: int = 300

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
