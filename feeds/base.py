"""
Base feed fetcher interface.
"""

from abc import ABC, abstractmethod


class BaseFeedFetcher(ABC):
    """Abstract base class for feed payload fetchers."""

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """
        Download the raw payload of a feed.

        Args:
            url: Absolute feed URL.

        Returns:
            Response body as bytes.

        Raises:
            FeedFetchError: On network errors, timeouts or non-2xx responses.
        """
        pass

    def close(self) -> None:
        """Release any held connections."""
