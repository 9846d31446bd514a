"""
Refresh Scheduler - Periodic Pull of URL Feeds

An APScheduler interval job ticks every `scheduler_tick_seconds` (first
tick after `scheduler_first_tick_delay`). Each tick selects the feeds that
are due and starts one fire-and-forget task per feed. A feed that is still
refreshing from an earlier tick is skipped, so one feed is never refreshed
twice at once. Different feeds refresh concurrently.

`last_auto_refresh` is stamped after every attempt, successful or not, so a
broken feed is retried once per interval rather than on every tick.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.catalog.schema import EntityKind, Feed, IngestionRun, utcnow
from core.ingestion.pipeline import IngestionEngine


logger = logging.getLogger(__name__)

JOB_ID = "feed-refresh-tick"


class FeedRefreshScheduler:
    """Drives automatic refreshes of due feeds through an IngestionEngine."""

    def __init__(self, engine: IngestionEngine):
        self.engine = engine
        self.catalog = engine.catalog
        self.config = engine.config
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._scheduler: Optional[AsyncIOScheduler] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Register the tick job and start the scheduler on the running loop."""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.refresh_due_feeds,
            "interval",
            seconds=self.config.scheduler_tick_seconds,
            next_run_time=utcnow() + timedelta(seconds=self.config.scheduler_first_tick_delay),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            "Feed scheduler started (tick %ss, first tick in %ss)",
            self.config.scheduler_tick_seconds,
            self.config.scheduler_first_tick_delay,
        )

    def shutdown(self) -> None:
        """Stop ticking. Refreshes already running are left to finish."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Feed scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def in_flight(self) -> frozenset[str]:
        """Ids of feeds currently refreshing."""
        return frozenset(self._in_flight)

    def claim(self, feed_id: str) -> bool:
        """
        Mark a feed as refreshing.

        Returns:
            False if the feed is already refreshing
        """
        if feed_id in self._in_flight:
            return False
        self._in_flight.add(feed_id)
        return True

    def release(self, feed_id: str) -> None:
        self._in_flight.discard(feed_id)

    async def wait_idle(self) -> None:
        """Wait until every refresh started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Tick
    # =========================================================================

    async def refresh_due_feeds(self, now: Optional[datetime] = None) -> None:
        """Start a refresh task for every due feed not already refreshing."""
        due = self.catalog.list_feeds_due(now, self.config.default_refresh_interval_hours)
        for feed in due:
            # Claimed before the task runs so a fast next tick cannot double-start
            if not self.claim(feed.id):
                logger.debug("Feed %s is still refreshing; skipped", feed.id)
                continue
            task = asyncio.create_task(self.refresh_feed(feed), name=f"refresh:{feed.id}")
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

        if due:
            logger.info("Scheduler tick: %d feed(s) due", len(due))

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Refresh task %s crashed: %s", task.get_name(), task.exception())

    async def refresh_feed(self, feed: Feed) -> IngestionRun:
        """
        Fetch, parse and ingest one feed's units, then stamp the feed.

        Returns:
            The recorded run (failed runs included)
        """
        self._in_flight.add(feed.id)
        try:
            run = await self.engine.run(feed.id, EntityKind.UNIT, url=feed.url)
            logger.info("Auto refresh of %s finished: %s", feed.id, run.status.value)
            return run
        finally:
            try:
                self.catalog.stamp_feed_refresh(feed.id, utcnow())
            except KeyError:
                logger.warning("Feed %s was deleted while refreshing", feed.id)
            self.release(feed.id)
