"""
Application settings, loaded from the environment (and an optional .env file).
"""

from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "chart-patterns"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Storage: SQLite file unless DATABASE_URL is given
    PATTERN_DB_PATH: str = "data/patterns.db"
    DATABASE_URL: str | None = None

    # Script sandbox
    SCRIPT_EXEC_TIMEOUT: float = 0.1  # seconds; <= 0 disables the deadline
    SCRIPT_MAX_LENGTH: int = 1000
    SCRIPT_LOG_ENABLED: bool = True
    SCRIPT_LOG_MAX_LENGTH: int = 500

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite:///{Path(self.PATTERN_DB_PATH).as_posix()}"


settings = Settings()
