from typing import Optional, Dict, Any
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import yaml
from pathlib import Path

# Define the root directory of the feed_cache package
SERVICE_ROOT_DIR = Path(__file__).parent.parent.resolve()
DEFAULT_CONFIG_PATH = SERVICE_ROOT_DIR / "config" / "app_config.yaml"
# Path to the repository root (two levels up from this settings.py)
PROJECT_ROOT_DIR = SERVICE_ROOT_DIR.parent

class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "FeedCache"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Local cache database
    DB_PATH: str = str(PROJECT_ROOT_DIR / "feed_cache.db")
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("DATABASE_URL", mode='before')
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], values: Any) -> Any:
        if isinstance(v, str) and v:
            return v
        db_path = values.data.get("DB_PATH")
        return f"sqlite+aiosqlite:///{db_path}"

    # Remote index service
    INDEX_BASE_URL: str = "http://localhost:8080"
    INDEX_API_VERSION: str = "v0"
    INDEX_TIMEOUT_SECONDS: float = 10.0
    INDEX_MAX_RETRIES: int = 3
    INDEX_INITIAL_BACKOFF_SECONDS: float = 0.5
    INDEX_MAX_BACKOFF_SECONDS: float = 8.0
    INDEX_MAX_CONSECUTIVE_SERVER_ERRORS: int = 10

    # Homeserver write-through
    HOMESERVER_BASE_URL: str = "http://localhost:6286"

    # Pagination defaults
    STREAM_PAGE_LIMIT: int = 20
    USER_STREAM_PAGE_LIMIT: int = 20
    HOT_TAGS_LIMIT: int = 40
    HOT_TAGS_TAGGERS_LIMIT: int = 20
    NOTIFICATIONS_PAGE_LIMIT: int = 30

    # Freshness and polling
    ENTITY_TTL_SECONDS: int = 300
    NOTIFICATION_POLL_INTERVAL_SECONDS: float = 30.0
    STREAM_POLL_INTERVAL_SECONDS: float = 60.0
    TTL_REFRESH_INTERVAL_SECONDS: float = 5.0
    TTL_REFRESH_BATCH_SIZE: int = 20

    # User hydration batching
    BATCH_QUEUE_DELAY_SECONDS: float = 0.1
    BATCH_QUEUE_MAX_SIZE: int = 100

    # Logging configuration path (can be overridden by env var)
    LOGGING_CONFIG_PATH: str = str(SERVICE_ROOT_DIR / "config" / "logging_config.yaml")

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT_DIR / ".env"),  # Load variables from project root .env
        env_file_encoding='utf-8',
        extra='ignore'
    )

    @classmethod
    def load_from_yaml(cls, config_path: Path = DEFAULT_CONFIG_PATH) -> 'Settings':
        """
        Build settings from an optional YAML file.

        Values from the YAML file are passed as init kwargs, so explicit keys in the
        file win over class defaults. Keys are upper-cased to match field names.
        """
        initial_data: Dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if yaml_config:
                initial_data.update({str(k).upper(): v for k, v in yaml_config.items()})
        return cls(**initial_data)

# Instantiate settings
settings = Settings.load_from_yaml()
