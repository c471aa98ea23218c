# storage/artifact_scanner.py
"""Reconstruct what a project has already generated from files on disk.

Artifacts have been written under several naming conventions over time.
Each convention is tried in a fixed priority order and the first match
wins. The scanner only reads; it never renames, rewrites or deletes.
"""

from __future__ import annotations

import json
import math
import os
import re
from dataclasses import dataclass, field
from enum import Enum

import structlog
from pydantic import ValidationError

from core.errors import ProjectIOError, SerializationError
from models import Chapter, ChapterOutline, Content, Outline, Scene, SceneOutline
from parsing import OutlineParser, is_chapter_marker
from storage.file_manager import LOGS_DIR_NAME, read_text
from storage.project_state import MetadataKey, ProjectState

logger = structlog.get_logger(__name__)

CHAPTERS_DIR_NAME = "chapters"
LEGACY_SRC_DIR_NAME = "src"
DEFAULT_COMPLETION_THRESHOLD = 0.8
# Legacy heuristic used when an outline exists but no chapter can be counted in it.
FALLBACK_EXPECTED_CHAPTERS = 10

_SKIP_MARKERS = ("temporary", "token_usage", "_prompt")
_SCENE_NUMBER = re.compile(r"scene_?(\d+)")
_CHAPTER_NUMBER_PATTERNS = (re.compile(r"chapter_(\d+)"), re.compile(r"ch(\d+)"))
_FULL_CHAPTER = re.compile(r"^chapter_(\d+)\.md$")


class OutlineSource(str, Enum):
    """Chapter outline conventions, in descending priority."""

    CHAPTER_JSON = "chapter_json"
    CHAPTER_GENERATION = "chapter_generation"
    CHAPTER_MARKDOWN = "chapter_markdown"
    TEMPORARY_SUMMARY = "temporary_summary"


_CHAPTER_OUTLINE_CONVENTIONS: tuple[tuple[OutlineSource, re.Pattern[str]], ...] = (
    (OutlineSource.CHAPTER_JSON, re.compile(r"^chapter_(\d+)\.json$")),
    (OutlineSource.CHAPTER_GENERATION, re.compile(r"^chapter_generation_(\d+)(?:_.*)?\.txt$")),
    (OutlineSource.CHAPTER_MARKDOWN, re.compile(r"^chapter_(\d+)\.md$")),
    (OutlineSource.TEMPORARY_SUMMARY, re.compile(r"^temporary_summary_chapter_(\d+)_")),
)


def extract_scene_number(file_name: str) -> int | None:
    """Return the digits following ``scene`` (optionally ``scene_``)."""
    match = _SCENE_NUMBER.search(file_name)
    return int(match.group(1)) if match else None


def extract_chapter_number(file_name: str) -> int | None:
    """Return the chapter number from ``chapter_N`` or, failing that, ``chN``."""
    for pattern in _CHAPTER_NUMBER_PATTERNS:
        match = pattern.search(file_name)
        if match:
            return int(match.group(1))
    return None


def extract_scene_from_chapter(chapter_text: str, scene_title: str) -> str | None:
    """Return the prose under the ``#``/``##`` heading containing ``scene_title``."""
    lines = chapter_text.splitlines()
    start: int | None = None
    end = len(lines)
    for i, line in enumerate(lines):
        clean = line.strip()
        is_heading = clean.startswith("##") or clean.startswith("# ")
        if not is_heading:
            continue
        if start is None:
            if scene_title and scene_title in clean:
                start = i
        else:
            end = i
            break
    if start is None:
        return None
    body = "\n".join(lines[start + 1 : end]).strip()
    return body or None


def _content_priority(file_name: str, chapter: int, scene: int) -> int | None:
    """Rank a content file name; lower wins, ``None`` means no match."""
    if file_name == f"content_generation_ch{chapter}_scene{scene}.txt":
        return 0
    if file_name.startswith(f"content_generation_ch{chapter}_scene{scene}.txt_"):
        return 1
    if file_name.startswith(f"content_generation_ch{chapter}_scene{scene}"):
        return 2
    if f"scene_{scene}_content_ch{chapter}" in file_name:
        return 3
    if file_name.startswith(f"chapter_{chapter}_scene_{scene}_content"):
        return 4
    return None


def _is_content_file(file_name: str) -> bool:
    if not file_name.endswith((".txt", ".md")) and ".txt_" not in file_name:
        return False
    return "content_generation" in file_name or (
        "scene_" in file_name and "content" in file_name
    )


@dataclass
class SceneArtifacts:
    number: int
    outline_path: str | None = None
    content_path: str | None = None
    _content_rank: int = field(default=99, repr=False)

    @property
    def has_outline(self) -> bool:
        return self.outline_path is not None

    @property
    def has_content(self) -> bool:
        return self.content_path is not None


@dataclass
class ChapterArtifacts:
    number: int
    outline_path: str | None = None
    outline_source: OutlineSource | None = None
    full_chapter_path: str | None = None
    scenes: dict[int, SceneArtifacts] = field(default_factory=dict)

    @property
    def has_outline(self) -> bool:
        return self.outline_path is not None

    @property
    def has_full_chapter(self) -> bool:
        return self.full_chapter_path is not None

    @property
    def has_scene_outlines(self) -> bool:
        return any(s.has_outline for s in self.scenes.values())

    @property
    def has_scene_content(self) -> bool:
        return any(s.has_content for s in self.scenes.values())

    def scene(self, number: int) -> SceneArtifacts:
        return self.scenes.setdefault(number, SceneArtifacts(number=number))


@dataclass
class ReconstructedState:
    """What exists on disk for a project, per chapter and scene."""

    project_dir: str
    chapters: dict[int, ChapterArtifacts] = field(default_factory=dict)
    completion_flag: bool = False
    expected_chapters: int = 0
    outline: Outline | None = None

    def chapter(self, number: int) -> ChapterArtifacts:
        return self.chapters.setdefault(number, ChapterArtifacts(number=number))

    @property
    def complete_chapter_count(self) -> int:
        return sum(
            1
            for c in self.chapters.values()
            if c.has_scene_outlines and c.has_scene_content
        )

    def is_complete(
        self,
        expected_chapters: int | None = None,
        threshold: float = DEFAULT_COMPLETION_THRESHOLD,
    ) -> bool:
        """Completion marker first; otherwise the chapter-count tolerance band."""
        if self.completion_flag:
            return True
        expected = self.expected_chapters if expected_chapters is None else expected_chapters
        if expected <= 0:
            return False
        return self.complete_chapter_count >= math.ceil(expected * threshold)


class ArtifactScanner:
    """Read-only reconciliation of a project directory."""

    def __init__(self, parser: OutlineParser | None = None) -> None:
        self.parser = parser or OutlineParser()

    def scan(self, project_dir: str) -> ReconstructedState:
        state = ReconstructedState(project_dir=project_dir)
        store = ProjectState(project_dir)
        state.completion_flag = store.is_marked_complete()
        state.outline = store.load_outline()
        state.expected_chapters = self._expected_chapter_count(store, state.outline)

        logs_dir = os.path.join(project_dir, LOGS_DIR_NAME)
        for file_name in self._list_files(logs_dir):
            self._classify_chapter_outline(state, logs_dir, file_name)
            self._classify_scene_file(state, logs_dir, file_name)

        for directory in (CHAPTERS_DIR_NAME, LEGACY_SRC_DIR_NAME):
            full_dir = os.path.join(project_dir, directory)
            for file_name in self._list_files(full_dir):
                match = _FULL_CHAPTER.match(file_name)
                if match:
                    chapter = state.chapter(int(match.group(1)))
                    if chapter.full_chapter_path is None:
                        chapter.full_chapter_path = os.path.join(full_dir, file_name)

        logger.info(
            "Scanned project artifacts.",
            project=project_dir,
            chapters=len(state.chapters),
            complete_chapters=state.complete_chapter_count,
            expected_chapters=state.expected_chapters,
            completion_flag=state.completion_flag,
        )
        return state

    @staticmethod
    def _list_files(directory: str) -> list[str]:
        try:
            return sorted(
                name
                for name in os.listdir(directory)
                if os.path.isfile(os.path.join(directory, name))
            )
        except FileNotFoundError:
            return []
        except OSError as e:
            raise ProjectIOError(f"Cannot list directory ({e})", directory) from e

    @staticmethod
    def _expected_chapter_count(store: ProjectState, outline: Outline | None) -> int:
        if outline is not None and outline.chapters:
            return len(outline.chapters)
        count = store.get(MetadataKey.CHAPTER_COUNT)
        if count and count.strip().isdigit():
            return int(count.strip())
        book_outline = store.get(MetadataKey.BOOK_OUTLINE)
        if book_outline:
            counted = sum(
                1 for line in book_outline.splitlines() if is_chapter_marker(line.strip())
            )
            return counted or FALLBACK_EXPECTED_CHAPTERS
        return 0

    @staticmethod
    def _classify_chapter_outline(
        state: ReconstructedState, logs_dir: str, file_name: str
    ) -> None:
        if "token_usage" in file_name:
            return
        for priority, (source, pattern) in enumerate(_CHAPTER_OUTLINE_CONVENTIONS):
            match = pattern.match(file_name)
            if not match:
                continue
            if source is OutlineSource.CHAPTER_MARKDOWN and "scene" in file_name:
                return
            chapter = state.chapter(int(match.group(1)))
            current = (
                list(OutlineSource).index(chapter.outline_source)
                if chapter.outline_source is not None
                else len(_CHAPTER_OUTLINE_CONVENTIONS)
            )
            # Names are sorted, so a later file of the same convention is newer.
            if priority <= current:
                chapter.outline_path = os.path.join(logs_dir, file_name)
                chapter.outline_source = source
            return

    @staticmethod
    def _classify_scene_file(
        state: ReconstructedState, logs_dir: str, file_name: str
    ) -> None:
        if any(marker in file_name for marker in _SKIP_MARKERS):
            return
        chapter_number = extract_chapter_number(file_name)
        scene_number = extract_scene_number(file_name)
        if chapter_number is None or scene_number is None:
            return
        path = os.path.join(logs_dir, file_name)
        if "scene_generation" in file_name:
            state.chapter(chapter_number).scene(scene_number).outline_path = path
            return
        if not _is_content_file(file_name):
            return
        rank = _content_priority(file_name, chapter_number, scene_number)
        if rank is None:
            rank = 5
        scene = state.chapter(chapter_number).scene(scene_number)
        if rank <= scene._content_rank:
            scene.content_path = path
            scene._content_rank = rank

    # -- loading ------------------------------------------------------------

    def _decode_chapter_json(self, raw: str) -> Chapter | ChapterOutline:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SerializationError(str(e)) from e
        for model in (Chapter, ChapterOutline):
            try:
                return model.model_validate(data)
            except ValidationError:
                continue
        raise SerializationError("JSON does not describe a chapter")

    def load_chapter_outline(
        self,
        state: ReconstructedState,
        chapter_number: int,
        book_outline: Outline | None = None,
    ) -> ChapterOutline | None:
        """Recover the outline of one chapter from its best artifact."""
        artifacts = state.chapters.get(chapter_number)
        book_outline = book_outline or state.outline
        fallback = book_outline.get_chapter(chapter_number) if book_outline else None
        if artifacts is None or artifacts.outline_path is None:
            return fallback

        raw = read_text(artifacts.outline_path) or ""
        outline: ChapterOutline
        try:
            decoded = self._decode_chapter_json(raw)
            outline = decoded.outline if isinstance(decoded, Chapter) else decoded
        except SerializationError as e:
            if artifacts.outline_source is OutlineSource.CHAPTER_JSON:
                logger.warning(
                    "Chapter JSON unreadable; parsing raw text instead.",
                    chapter=chapter_number,
                    error=str(e),
                )
            outline = self.parser.parse_chapter(raw)
            if not outline.scenes and fallback is not None and fallback.scenes:
                logger.info(
                    "No scenes recovered from chapter text; using book outline.",
                    chapter=chapter_number,
                )
                outline = fallback.model_copy(deep=True)
        if not outline.scenes and outline.description:
            self.parser.recover_scenes(outline)
        outline.number = chapter_number
        return outline

    def load_chapter(
        self,
        state: ReconstructedState,
        chapter_number: int,
        book_outline: Outline | None = None,
    ) -> Chapter | None:
        """Rebuild a chapter with its scenes and whatever prose exists.

        Content files are paired to scenes by the numbers in their names,
        never by directory order.
        """
        outline = self.load_chapter_outline(state, chapter_number, book_outline)
        if outline is None:
            return None
        artifacts = state.chapters.get(chapter_number) or ChapterArtifacts(chapter_number)

        scene_outlines = {s.number: s for s in outline.scenes}
        for number, scene_artifacts in sorted(artifacts.scenes.items()):
            if not scene_artifacts.has_outline:
                continue
            text = (read_text(scene_artifacts.outline_path) or "").strip()
            if number in scene_outlines:
                # The expanded outline supersedes the planned description.
                if text:
                    scene_outlines[number].description = text
                continue
            scene_outlines[number] = SceneOutline(
                number=number, title=f"Scene {number}", description=text
            )
        for number, scene_artifacts in artifacts.scenes.items():
            if number not in scene_outlines and scene_artifacts.has_content:
                scene_outlines[number] = SceneOutline(number=number, title=f"Scene {number}")

        full_text = (
            read_text(artifacts.full_chapter_path) if artifacts.full_chapter_path else None
        )
        scenes: list[Scene] = []
        for number in sorted(scene_outlines):
            scene_outline = scene_outlines[number]
            text = ""
            scene_artifacts = artifacts.scenes.get(number)
            if scene_artifacts is not None and scene_artifacts.content_path:
                text = (read_text(scene_artifacts.content_path) or "").strip()
            if not text and full_text:
                text = extract_scene_from_chapter(full_text, scene_outline.title) or ""
            scenes.append(
                Scene(
                    title=scene_outline.title,
                    outline=scene_outline,
                    outline_expanded=bool(scene_artifacts and scene_artifacts.has_outline),
                    content=Content(
                        text=text, chapter_number=chapter_number, scene_number=number
                    ),
                )
            )
        outline.scenes = [scene_outlines[n] for n in sorted(scene_outlines)]

        chapter = Chapter(
            number=chapter_number,
            title=outline.title or f"Chapter {chapter_number}",
            outline=outline,
            scenes=scenes,
        )
        chapter.content = chapter.assemble_content()
        return chapter

