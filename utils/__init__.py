"""General utility functions for tomewright."""

from __future__ import annotations

from .logging import setup_logging
from .text_utils import sanitize_directory_name, truncate_text

__all__ = ["sanitize_directory_name", "setup_logging", "truncate_text"]
