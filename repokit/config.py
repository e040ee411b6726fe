import re
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

# Sync driver -> async driver used when ASYNC_DATABASE_URL is not set
_ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
}


class Settings(BaseSettings):
    # --- Basic configuration ---
    APP_NAME: str = "repokit"
    APP_DESCRIPTION: str = "Generic repository and unit of work over SQLModel"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"  # development, production, testing
    DEBUG: bool = True

    # --- Database (SQLModel/SQLAlchemy) ---
    DATABASE_URL: str = "sqlite:///./repokit.db"
    ASYNC_DATABASE_URL: Optional[str] = None  # Derived from DATABASE_URL when empty
    SQL_ECHO: bool = False

    # --- Session behaviour ---
    # Reads never write: staged changes only reach the database on save.
    SESSION_AUTOFLUSH: bool = False
    SESSION_EXPIRE_ON_COMMIT: bool = False

    # --- Repository defaults ---
    DEFAULT_PAGE_SIZE: int = 20
    AUTO_HISTORY_TABLE: str = "auto_history"

    # --- Logging ---
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    @property
    def async_database_url(self) -> str:
        """Async variant of DATABASE_URL (explicit ASYNC_DATABASE_URL wins)."""
        if self.ASYNC_DATABASE_URL:
            return self.ASYNC_DATABASE_URL
        match = re.match(r"^(\w+)(\+\w+)?://", self.DATABASE_URL)
        if match is None or match.group(1) not in _ASYNC_DRIVERS:
            raise ValueError(
                f"Cannot derive an async driver for {self.DATABASE_URL!r}; set ASYNC_DATABASE_URL."
            )
        return _ASYNC_DRIVERS[match.group(1)] + self.DATABASE_URL[match.end() - 3:]

    # --- Pydantic ---
    # Load env from project root .env; priority: env vars > .env > defaults
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )


# Singleton settings instance
settings = Settings()
