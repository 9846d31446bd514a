"""
Utility modules for the feed engine.
"""

from .formatting import format_error_log, format_row_error, format_stats
from .config import Config

__all__ = ["format_error_log", "format_row_error", "format_stats", "Config"]
