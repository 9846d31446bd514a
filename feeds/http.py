"""
HTTP feed fetcher.

Downloads partner feeds over requests. Requests are blocking, so each
download runs in a worker thread and never stalls the event loop the
scheduler and web app share. requests.Session is not guaranteed to be
thread-safe, so every worker thread gets its own session (and its own
connection pool).
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

import requests

from core.ingestion.errors import FeedFetchError
from feeds.base import BaseFeedFetcher


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

USER_AGENT = "ListingFeedEngine/1.0 (+feed-import)"
REQUEST_TIMEOUT_SECONDS = 30


# =============================================================================
# Fetcher
# =============================================================================

class HttpFeedFetcher(BaseFeedFetcher):
    """
    Fetch feed payloads over HTTP(S).

    Features:
    - Custom User-Agent for identification
    - Per-request timeout
    - One session per worker thread
    - Non-2xx responses and transport errors raised as FeedFetchError
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        session_factory: Optional[Callable[[], requests.Session]] = None,
    ):
        self.timeout = timeout or REQUEST_TIMEOUT_SECONDS
        self._session_factory = session_factory or requests.Session
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        """Session owned by the calling thread, created on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            session.headers.update({
                "User-Agent": USER_AGENT,
                "Accept": "application/xml,text/xml,application/json,text/csv,*/*;q=0.8",
            })
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def fetch_sync(self, url: str) -> bytes:
        """
        Blocking download.

        Raises:
            FeedFetchError: On network errors, timeouts or non-2xx responses.
        """
        logger.info("Fetching feed %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            raise FeedFetchError(url, f"timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise FeedFetchError(url, str(e)) from e

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise FeedFetchError(url, str(response.status_code)) from e

        logger.debug("Fetched %d bytes from %s", len(response.content), url)
        return response.content

    async def fetch(self, url: str) -> bytes:
        return await asyncio.to_thread(self.fetch_sync, url)

    def close(self) -> None:
        """Close every session opened so far."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
