"""
Application wiring.

Builds a ready-to-use Library from settings: logging, database, store,
fetcher, pipeline. Pass a store to skip the database (tests, previews).
"""
import logging
import os
from typing import Optional

from config import VALID_LOG_LEVELS, CatalogSettings, get_log_level_from_env, get_settings, set_log_level
from database import get_session_factory, init_db
from import_pipeline import ImportPipeline
from library import Library
from library_store import LibraryStore
from log_utils import configure_logging
from playlist_fetcher import PlaylistFetcher
from sql_store import SqlLibraryStore
from stream_health import StreamHealthChecker

logger = logging.getLogger(__name__)


def create_library(
    settings: Optional[CatalogSettings] = None,
    store: Optional[LibraryStore] = None,
) -> Library:
    settings = settings or get_settings()

    if store is None:
        init_db(settings.database_path)
        store = SqlLibraryStore(get_session_factory())

    fetcher = PlaylistFetcher(timeout=settings.fetch_timeout, user_agent=settings.fetch_user_agent)
    pipeline = ImportPipeline(store, fetcher)
    library = Library(
        store,
        pipeline=pipeline,
        history_limit=settings.history_limit,
        smart_folder_stream_health=settings.smart_folder_stream_health,
    )
    logger.info("[LIBRARY] Catalog ready (%s)", type(store).__name__)
    return library


def create_health_checker(settings: Optional[CatalogSettings] = None) -> StreamHealthChecker:
    settings = settings or get_settings()
    return StreamHealthChecker(
        timeout=settings.health_check_timeout,
        max_concurrency=settings.health_check_concurrency,
    )


def setup_logging(settings: Optional[CatalogSettings] = None) -> str:
    """Configure logging once at startup. LOG_LEVEL wins over the saved setting."""
    settings = settings or get_settings()
    requested = get_log_level_from_env() if "LOG_LEVEL" in os.environ else settings.backend_log_level
    level = requested.upper() if requested.upper() in VALID_LOG_LEVELS else "INFO"
    configure_logging(level)
    return set_log_level(level)
