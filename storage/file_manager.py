# storage/file_manager.py
"""Whole-file writes and log artifact helpers for a project directory."""

from __future__ import annotations

import asyncio
import hashlib
import os
import tempfile
from datetime import datetime

import structlog

from core.errors import ProjectIOError

logger = structlog.get_logger(__name__)

LOGS_DIR_NAME = "logs"
CACHE_DIR_NAME = "cache"
LOG_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def log_timestamp() -> str:
    return datetime.now().strftime(LOG_TIMESTAMP_FORMAT)


def chapter_json_name(chapter_number: int) -> str:
    return f"chapter_{chapter_number}.json"


def chapter_outline_log_name(chapter_number: int, timestamp: str) -> str:
    return f"chapter_generation_{chapter_number}_{timestamp}.txt"


def scene_outline_log_name(chapter_number: int, scene_number: int, timestamp: str) -> str:
    return f"scene_generation_ch{chapter_number}_scene{scene_number}_{timestamp}.txt"


def content_log_name(chapter_number: int, scene_number: int) -> str:
    return f"content_generation_ch{chapter_number}_scene{scene_number}.txt"


def summary_log_name(kind: str, index: int, timestamp: str) -> str:
    return f"temporary_summary_{kind}_{index}_{timestamp}.txt"


def write_text_atomic(path: str, text: str) -> None:
    """Replace ``path`` with ``text`` without ever leaving a partial file."""
    directory = os.path.dirname(path) or "."
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=directory, prefix=f".{os.path.basename(path)}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
    except OSError as e:
        raise ProjectIOError(f"Failed to write file ({e})", path) from e


def read_text(path: str) -> str | None:
    """Return the contents of ``path`` or ``None`` when it does not exist."""
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ProjectIOError(f"Failed to read file ({e})", path) from e


class FileManager:
    """Handle reading and writing artifacts under one project directory."""

    def __init__(self, project_dir: str) -> None:
        self.project_dir = project_dir
        self.logs_dir = os.path.join(project_dir, LOGS_DIR_NAME)
        self.cache_dir = os.path.join(project_dir, CACHE_DIR_NAME)
        try:
            os.makedirs(self.logs_dir, exist_ok=True)
            os.makedirs(self.cache_dir, exist_ok=True)
        except OSError as e:
            raise ProjectIOError(f"Cannot create project directory ({e})", project_dir) from e

    def log_path(self, file_name: str) -> str:
        return os.path.join(self.logs_dir, file_name)

    async def save_log(self, file_name: str, text: str) -> str:
        """Write ``text`` to ``logs/file_name`` and return the full path."""
        path = self.log_path(file_name)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, write_text_atomic, path, text)
        logger.debug("Saved log artifact.", path=path)
        return path

    async def save_prompt(self, name: str, prompt: str, context: str = "") -> str:
        if len(name) > 50:
            name = hashlib.sha1(name.encode("utf-8")).hexdigest()[:16]
        return await self.save_log(
            f"{name}_prompt.txt", f"Prompt:\n{prompt}\n\nContext:\n{context}"
        )

    async def write_text(self, path: str, text: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, write_text_atomic, path, text)

    async def read_text(self, file_path: str) -> str | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, read_text, file_path)
