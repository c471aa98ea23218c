# storage/log_cleanup.py
"""Retention-based removal of old generation logs."""

from __future__ import annotations

import os
import time

import structlog

from storage.file_manager import LOGS_DIR_NAME

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

_ESSENTIAL_PREFIXES = (
    "chapter_generation_",
    "scene_generation_",
    "content_generation_",
)


def is_essential_log(file_name: str) -> bool:
    """Return ``True`` for artifacts that resumption depends on."""
    if "token_usage" in file_name:
        return False
    if file_name.startswith("chapter_") and file_name.endswith((".md", ".json")):
        return True
    return file_name.startswith(_ESSENTIAL_PREFIXES)


def cleanup_logs(
    project_dir: str, retention_days: int = 7, keep_essential: bool = True
) -> int:
    """Delete files in ``logs/`` older than ``retention_days``.

    Returns the number of files removed.
    """
    logs_dir = os.path.join(project_dir, LOGS_DIR_NAME)
    if not os.path.isdir(logs_dir):
        return 0

    cutoff = time.time() - retention_days * SECONDS_PER_DAY
    removed = 0
    for entry in os.scandir(logs_dir):
        if not entry.is_file():
            continue
        if keep_essential and is_essential_log(entry.name):
            continue
        try:
            if entry.stat().st_mtime >= cutoff:
                continue
            os.remove(entry.path)
        except OSError as e:
            logger.warning("Failed to remove old log file.", path=entry.path, error=str(e))
            continue
        removed += 1
        logger.debug("Removed old log file.", path=entry.path)

    logger.info("Cleaned up old log files.", removed=removed, logs_dir=logs_dir)
    return removed
