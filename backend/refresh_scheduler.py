"""
Refresh Scheduler Module.

Decides which sources are due for re-ingestion under their refresh policy
and runs one refresh cycle. Policies are fixed intervals measured from the
source's last refresh; "manual" sources are never due.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from catalog_schema import RefreshPolicy, Source, utcnow
from import_pipeline import ImportPipeline, ImportResult, SourceConfigurationError
from library_store import LibraryStore
from m3u_parser import PlaylistParseError
from playlist_fetcher import FetchError

logger = logging.getLogger(__name__)

REFRESH_INTERVALS = {
    RefreshPolicy.HOURLY: timedelta(hours=1),
    RefreshPolicy.DAILY: timedelta(days=1),
    RefreshPolicy.WEEKLY: timedelta(weeks=1),
}


def next_refresh_at(source: Source) -> Optional[datetime]:
    """When the source next becomes due, or None for manual sources."""
    interval = REFRESH_INTERVALS.get(source.refresh_policy)
    if interval is None:
        return None
    if source.last_refresh_at is None:
        return source.created_at
    return source.last_refresh_at + interval


def is_refresh_due(source: Source, now: Optional[datetime] = None) -> bool:
    """True when an automatic refresh should run for this source now."""
    due_at = next_refresh_at(source)
    if due_at is None:
        return False
    return due_at <= (now or utcnow())


async def refresh_due_sources(
    store: LibraryStore,
    pipeline: ImportPipeline,
    now: Optional[datetime] = None,
) -> list[ImportResult]:
    """
    Refresh every source that is due, one after another.

    A failing source is logged and skipped so the rest of the cycle still
    runs; its last_refresh_at is not bumped, so it is retried next cycle.
    """
    now = now or utcnow()
    due = [s for s in await store.fetch_sources() if is_refresh_due(s, now)]
    if not due:
        logger.debug("[REFRESH] No sources due")
        return []

    logger.info("[REFRESH] %s sources due for refresh", len(due))
    results = []
    for source in due:
        try:
            results.append(await pipeline.refresh(source))
        except (FetchError, PlaylistParseError, SourceConfigurationError) as e:
            logger.warning("[REFRESH] Refresh of %r failed: %s", source.name, e)
    return results
