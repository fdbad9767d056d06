from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Any, Optional
from urllib.parse import quote_plus
import os

# MYSQL_* and SQLITE_PATH are read straight from the environment below
load_dotenv()


class Settings(BaseSettings):
    # Application
    PROJECT_NAME: str = "Beer Game Settlement API"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database configuration
    SQLALCHEMY_DATABASE_URI: str = ""
    SQLITE_PATH: str = "./data/beer_game.db"
    SQLITE_BUSY_TIMEOUT: float = 30.0
    SQL_ECHO: bool = False

    # Game defaults (used when a create request leaves a field out)
    INITIAL_INVENTORY: int = 12
    INITIAL_BACKLOG: int = 0
    DEFAULT_LEAD_TIME: int = 2
    FIXED_DEMAND: int = 4
    HOLDING_COST_PER_UNIT: float = 0.5
    BACKORDER_COST_PER_UNIT: float = 1.0
    DEFAULT_TOTAL_WEEKS: int = 26

    # Settlement
    SETTLEMENT_MAX_ATTEMPTS: int = 3
    SETTLEMENT_RETRY_DELAY: float = 0.5  # seconds between attempts

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_DIR: str = "logs"

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
    )

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> Any:
        if v is not None and v != "":
            return v

        server = os.getenv("MYSQL_SERVER")
        if not server:
            # No MySQL configured: fall back to a local SQLite file
            sqlite_path = os.getenv("SQLITE_PATH", "./data/beer_game.db")
            return f"sqlite:///{sqlite_path}"

        port = os.getenv("MYSQL_PORT", "3306")
        user = os.getenv("MYSQL_USER", "beer_user")
        password = os.getenv("MYSQL_PASSWORD", "beer_password")
        db = os.getenv("MYSQL_DB", "beer_game")

        # URL encode the password to handle special characters
        encoded_password = quote_plus(password)
        return f"mysql+pymysql://{user}:{encoded_password}@{server}:{port}/{db}?charset=utf8mb4"

    @field_validator("SETTLEMENT_MAX_ATTEMPTS")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        return max(1, v)

    @property
    def is_sqlite(self) -> bool:
        return self.SQLALCHEMY_DATABASE_URI.startswith("sqlite")

    @property
    def is_production(self) -> bool:
        """Check if the application is running in production mode."""
        return self.ENVIRONMENT == "production"


def get_settings() -> Settings:
    return Settings()


# Global settings instance
settings = get_settings()
