from pydantic import BaseModel
from pydantic_settings import BaseSettings
import json
import os
import logging
from pathlib import Path

# Set up logging
logger = logging.getLogger(__name__)

# Config file location
CONFIG_DIR = Path(os.environ.get("CONFIG_DIR", "/config"))
CONFIG_FILE = CONFIG_DIR / "settings.json"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class CatalogSettings(BaseModel):
    """User-configurable catalog settings, persisted as settings.json."""
    # Playlist fetching
    fetch_timeout: float = 30.0  # Seconds before a playlist download is abandoned
    fetch_user_agent: str = "ChannelCatalog/1.0"
    # Play history: number of most recent entries retained
    history_limit: int = 100
    # Stream health checks
    health_check_timeout: float = 10.0  # Seconds per probe
    health_check_concurrency: int = 5  # Probes in flight at once
    health_dead_threshold: int = 3  # Consecutive failures before a stream is "dead"
    # Smart folders load stream lists so health_status rules see real health.
    # Off by default: health conditions then evaluate against "unknown".
    smart_folder_stream_health: bool = False
    # SQLite database file name, relative to CONFIG_DIR
    database_file: str = "catalog.db"
    # Backend log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    backend_log_level: str = "INFO"

    @property
    def database_path(self) -> Path:
        return CONFIG_DIR / self.database_file


class Settings(BaseSettings):
    """App settings from environment (for container config)."""
    config_dir: str = "/config"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# In-memory cache of settings
_cached_settings: CatalogSettings | None = None


def ensure_config_dir():
    """Ensure config directory exists."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Ensured config directory exists: {CONFIG_DIR}")


def load_settings() -> CatalogSettings:
    """Load settings from file or return defaults."""
    global _cached_settings

    if _cached_settings is not None:
        return _cached_settings

    logger.info(f"Loading settings from {CONFIG_FILE}")

    if CONFIG_FILE.exists():
        try:
            data = json.loads(CONFIG_FILE.read_text())
            _cached_settings = CatalogSettings(**data)
            logger.info("Loaded settings successfully")
            return _cached_settings
        except Exception as e:
            logger.error(f"Failed to load settings from {CONFIG_FILE}: {e}")

    logger.info("Using default settings (no config file found or failed to parse)")
    _cached_settings = CatalogSettings()
    return _cached_settings


def save_settings(settings: CatalogSettings) -> None:
    """Save settings to file."""
    global _cached_settings

    ensure_config_dir()

    try:
        CONFIG_FILE.write_text(json.dumps(settings.model_dump(), indent=2))
        _cached_settings = settings
        logger.info(f"Settings saved successfully to {CONFIG_FILE}")
    except Exception as e:
        logger.error(f"Failed to save settings to {CONFIG_FILE}: {e}")
        raise


def clear_settings_cache() -> None:
    """Clear the cached settings (forces reload)."""
    global _cached_settings
    _cached_settings = None
    logger.debug("Settings cache cleared")


def get_settings() -> CatalogSettings:
    """Get the current catalog settings."""
    return load_settings()


def get_log_level_from_env() -> str:
    """Get log level from environment variable or default to INFO."""
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def set_log_level(level: str) -> str:
    """Set the logging level for all loggers dynamically. Returns the level applied."""
    level_upper = level.upper()

    if level_upper not in VALID_LOG_LEVELS:
        logger.warning(f"Invalid log level '{level}', using INFO")
        level_upper = "INFO"

    numeric_level = getattr(logging, level_upper)

    logging.getLogger().setLevel(numeric_level)

    # Set level for all existing loggers
    for logger_name in logging.root.manager.loggerDict:
        logging.getLogger(logger_name).setLevel(numeric_level)

    logger.info(f"Log level set to {level_upper}")
    return level_upper
