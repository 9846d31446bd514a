"""
Mock feed fetcher for development and testing.
Serves canned payloads without external requests.
"""

import asyncio
from typing import Optional, Union

from core.ingestion.errors import FeedFetchError
from feeds.base import BaseFeedFetcher


Payload = Union[bytes, Exception]


class MockFeedFetcher(BaseFeedFetcher):
    """Fetcher that returns registered payloads by URL."""

    def __init__(self, payloads: Optional[dict[str, Payload]] = None, delay: float = 0.0):
        """
        Initialise mock fetcher.

        Args:
            payloads: URL -> body, or an exception to raise for that URL.
            delay: Seconds to wait before answering, to simulate slow feeds.
        """
        self.payloads: dict[str, Payload] = dict(payloads or {})
        self.delay = delay
        self.requested: list[str] = []

    def register(self, url: str, payload: Payload) -> None:
        self.payloads[url] = payload

    async def fetch(self, url: str) -> bytes:
        self.requested.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)

        payload = self.payloads.get(url)
        if payload is None:
            raise FeedFetchError(url, "404")
        if isinstance(payload, Exception):
            raise payload
        return payload
