"""
Application settings and configuration management using Pydantic BaseSettings.
"""

from typing import Optional
from pathlib import Path
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Environment enumeration"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class BucketWidth(str, Enum):
    """Width of one time bucket on the grid's time axis."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class StoreBackend(str, Enum):
    """Where models are loaded from and saved to."""
    API = "api"
    SQLITE = "sqlite"


class GridConfig(BaseSettings):
    """Cash flow grid defaults."""
    model_config = SettingsConfigDict(env_prefix="GRID_", extra="ignore")

    default_bucket_count: int = Field(default=13, ge=1)
    undo_limit: int = Field(default=50, ge=1)
    bucket_width: BucketWidth = BucketWidth.WEEKLY
    default_forecast_method: str = "auto"


class ApiConfig(BaseSettings):
    """Remote cash flow service configuration."""
    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")

    base_url: str = "http://localhost:8000"
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    backoff_factor: float = Field(default=0.5, ge=0)
    auth_token: Optional[str] = None

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class DatabaseConfig(BaseSettings):
    """Local model store settings."""
    model_config = SettingsConfigDict(env_prefix="DB_", extra="ignore")

    path: str = "cashgrid.db"

    @property
    def absolute_path(self) -> str:
        """Get absolute path to the model database."""
        if self.path == ":memory:":
            return self.path
        return str(Path(self.path).resolve())


class AppConfig(BaseSettings):
    """Application configuration settings."""
    model_config = SettingsConfigDict(env_prefix="APP_", extra="ignore")

    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"
    store_backend: StoreBackend = StoreBackend.API

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT


class Settings(BaseSettings):
    """Centralized application settings manager using Pydantic BaseSettings."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    grid: GridConfig = Field(default_factory=GridConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    def __init__(self, **kwargs):
        self._load_env_file()
        super().__init__(**kwargs)

    @staticmethod
    def _load_env_file() -> None:
        """Load environment variables from .env file."""
        env_file = Path('.env')
        if env_file.exists():
            from dotenv import load_dotenv
            load_dotenv(env_file)
