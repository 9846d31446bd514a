"""
Pipeline-fatal errors of the feed engine.

Anything raised from this hierarchy aborts the whole ingestion run before
the catalog is touched. Row-level problems are never raised; they are
collected as RowError diagnostics by the reconciler.
"""


class FeedError(Exception):
    """Base class for feed-level failures."""

    pass


class FeedFetchError(FeedError):
    """Raised when a feed payload cannot be downloaded (timeout, HTTP error)."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Fetch failed: {reason}")


class FeedParseError(FeedError):
    """Raised when a payload cannot be parsed in its detected format."""

    def __init__(self, fmt: str, reason: str):
        self.format = fmt
        self.reason = reason
        super().__init__(f"Could not parse {fmt} feed: {reason}")
