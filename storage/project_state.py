# storage/project_state.py
"""Typed access to the persisted state of one book project.

``metadata.md`` is the human readable record: one ``## Section (timestamp)``
block per phase output. ``metadata.json`` mirrors it for machines and is
preferred when reading. The serialized outline and book live beside them.
"""

from __future__ import annotations

import json
import os
import re
from datetime import datetime
from enum import Enum

import structlog
from pydantic import ValidationError

from models import Book, Outline
from storage.file_manager import read_text, write_text_atomic

logger = structlog.get_logger(__name__)

METADATA_MD = "metadata.md"
METADATA_JSON = "metadata.json"
OUTLINE_JSON = "outline.json"
RAW_OUTLINE = "raw_outline_output.txt"
BOOK_JSON = "book.json"
COMPLETION_FLAG = "book_complete.flag"

SECTION_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_TIMESTAMP_SUFFIX = re.compile(r"^(?P<name>.*?) \((?P<ts>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})\)$")


class MetadataKey(str, Enum):
    """Sections written by the pipeline phases."""

    TITLE = "Title"
    BRAINDUMP = "Braindump"
    GENRE = "Genre"
    STYLE = "Style"
    CHARACTERS = "Characters"
    SYNOPSIS = "Synopsis"
    BOOK_OUTLINE = "Book Outline"
    CHAPTER_COUNT = "Chapter Count"
    GENERATION_TIME = "Generation Time"


_ALIASES: dict[str, tuple[str, ...]] = {
    MetadataKey.BRAINDUMP.value: ("Premise",),
}


def split_section_heading(heading: str) -> tuple[str, str | None]:
    """Split ``Name (YYYY-mm-dd HH:MM:SS)`` into its name and timestamp."""
    match = _TIMESTAMP_SUFFIX.match(heading.strip())
    if match:
        return match.group("name").strip(), match.group("ts")
    return heading.strip(), None


def _section_heading_pattern(name: str) -> re.Pattern[str]:
    return re.compile(
        rf"^## {re.escape(name)}(?: \(\d{{4}}-\d{{2}}-\d{{2}} \d{{2}}:\d{{2}}:\d{{2}}\))?[ \t]*$",
        re.MULTILINE,
    )


def read_markdown_section(markdown: str, name: str) -> str | None:
    """Return the body of section ``name``, tolerating a timestamp suffix."""
    match = _section_heading_pattern(name).search(markdown)
    if not match:
        return None
    body_start = match.end()
    next_heading = re.compile(r"^## ", re.MULTILINE).search(markdown, body_start)
    body_end = next_heading.start() if next_heading else len(markdown)
    return markdown[body_start:body_end].strip()


def replace_markdown_section(markdown: str, heading: str, name: str, content: str) -> str:
    """Replace section ``name`` in place, or append it when absent."""
    block = f"\n## {heading}\n{content}\n"
    match = _section_heading_pattern(name).search(markdown)
    if not match:
        return markdown + block
    start = match.start()
    if start > 0 and markdown[start - 1] == "\n":
        start -= 1
    next_heading = re.compile(r"^## ", re.MULTILINE).search(markdown, match.end())
    end = next_heading.start() - 1 if next_heading else len(markdown)
    return markdown[:start] + block + markdown[end:]


class ProjectState:
    """Get/put store over the files of a single project directory."""

    def __init__(self, project_dir: str) -> None:
        self.project_dir = project_dir

    def _path(self, file_name: str) -> str:
        return os.path.join(self.project_dir, file_name)

    # -- metadata -----------------------------------------------------------

    def _load_metadata_json(self) -> dict[str, str]:
        raw = read_text(self._path(METADATA_JSON))
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("metadata.json is corrupt; ignoring it.", project=self.project_dir)
            return {}
        if not isinstance(data, dict):
            logger.warning("metadata.json is not an object; ignoring it.", project=self.project_dir)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _names_for(self, key: MetadataKey | str) -> tuple[str, ...]:
        name = key.value if isinstance(key, MetadataKey) else key
        return (name, *_ALIASES.get(name, ()))

    def get(self, key: MetadataKey | str) -> str | None:
        """Return the latest stored value for ``key`` or ``None``."""
        names = self._names_for(key)
        metadata = self._load_metadata_json()
        found: tuple[str, str] | None = None
        for heading, value in metadata.items():
            name, ts = split_section_heading(heading)
            if name in names and (found is None or (ts or "") >= found[0]):
                found = (ts or "", value)
        if found is not None and found[1].strip():
            return found[1].strip()

        markdown = read_text(self._path(METADATA_MD))
        if markdown is None:
            return None
        for name in names:
            value = read_markdown_section("\n" + markdown, name)
            if value:
                return value
        return None

    def put(self, key: MetadataKey | str, value: str) -> None:
        """Persist ``value`` under ``key`` in both metadata files."""
        name = key.value if isinstance(key, MetadataKey) else key
        heading = f"{name} ({datetime.now().strftime(SECTION_TIMESTAMP_FORMAT)})"

        markdown = read_text(self._path(METADATA_MD)) or ""
        write_text_atomic(
            self._path(METADATA_MD),
            replace_markdown_section(markdown, heading, name, value),
        )

        metadata = self._load_metadata_json()
        for existing in [h for h in metadata if split_section_heading(h)[0] == name]:
            del metadata[existing]
        metadata[heading] = value
        write_text_atomic(self._path(METADATA_JSON), json.dumps(metadata, indent=2))
        logger.debug("Updated metadata section.", section=name)

    def has(self, key: MetadataKey | str) -> bool:
        return self.get(key) is not None

    # -- outline ------------------------------------------------------------

    def save_outline(self, outline: Outline) -> None:
        write_text_atomic(self._path(OUTLINE_JSON), outline.model_dump_json(indent=2))

    def load_outline(self) -> Outline | None:
        raw = read_text(self._path(OUTLINE_JSON))
        if raw is None:
            return None
        try:
            return Outline.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Could not decode outline.json; treating as missing.", error=str(e)
            )
            return None

    def save_raw_outline(self, text: str) -> None:
        write_text_atomic(self._path(RAW_OUTLINE), text)

    def load_raw_outline(self) -> str | None:
        return read_text(self._path(RAW_OUTLINE))

    # -- book ---------------------------------------------------------------

    def save_book(self, book: Book) -> None:
        write_text_atomic(self._path(BOOK_JSON), book.model_dump_json(indent=2))

    def load_book(self) -> Book | None:
        raw = read_text(self._path(BOOK_JSON))
        if raw is None:
            return None
        try:
            return Book.model_validate_json(raw)
        except ValidationError:
            logger.warning("Could not decode book.json; rebuilding from artifacts.")
            return None

    # -- completion marker --------------------------------------------------

    @property
    def completion_flag_path(self) -> str:
        return self._path(COMPLETION_FLAG)

    def mark_complete(self) -> None:
        write_text_atomic(
            self.completion_flag_path,
            datetime.now().strftime(SECTION_TIMESTAMP_FORMAT),
        )

    def is_marked_complete(self) -> bool:
        return os.path.exists(self.completion_flag_path)
