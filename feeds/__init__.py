"""
Feed fetchers for downloading partner listing feeds.

Available fetchers:
- MockFeedFetcher: Development/testing with canned payloads
- HttpFeedFetcher: Live downloads over HTTP(S)
"""

from .base import BaseFeedFetcher
from .mock import MockFeedFetcher
from .http import HttpFeedFetcher

__all__ = [
    "BaseFeedFetcher",
    "MockFeedFetcher",
    "HttpFeedFetcher",
]
