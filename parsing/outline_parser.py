# parsing/outline_parser.py
"""Heuristic parser turning free-form generator output into an Outline.

The generator is asked for a strict ``Chapter N: Title`` / ``Scene N: Title``
layout but does not always comply. The parser is a single pass over the
lines of the text with two open slots (current chapter, current scene).
It never raises: anything it cannot classify ends up in a description.
"""

from __future__ import annotations

import structlog

from models import ChapterOutline, Outline, SceneOutline

logger = structlog.get_logger(__name__)

_CHAPTER_PREFIXES = ("Chapter ", "CHAPTER ")
_CHAPTER_EXACT = ("Introduction", "Conclusion")
_CHAPTER_STARTS = ("Prologue", "Epilogue")
_SCENE_SEPARATORS = (":", "-", ".")


def _normalize_line(line: str) -> str:
    """Trim whitespace and markdown heading/emphasis decoration."""
    return line.strip().strip(" \t#*_")


def is_chapter_marker(line: str) -> bool:
    if not line:
        return False
    return (
        line.startswith(_CHAPTER_PREFIXES)
        or line in _CHAPTER_EXACT
        or line.startswith(_CHAPTER_STARTS)
        or ("Chapter" in line and ":" in line)
    )


def is_scene_marker(line: str) -> bool:
    if not line:
        return False
    if line.startswith("Scene "):
        return True
    return "Scene" in line and any(sep in line for sep in _SCENE_SEPARATORS)


def extract_scene_title(line: str) -> str:
    """Return the text after the first separator, or the whole line."""
    positions = [line.find(sep) for sep in _SCENE_SEPARATORS if sep in line]
    if positions:
        title = line[min(positions) + 1 :].strip()
        if title:
            return title
    return line


class _OutlineBuilder:
    """Mutable state for one parse pass."""

    def __init__(self) -> None:
        self.chapters: list[ChapterOutline] = []
        self.chapter: ChapterOutline | None = None
        self.scene: SceneOutline | None = None

    def close_scene(self) -> None:
        if self.scene is None:
            return
        if self.chapter is not None:
            if not self.scene.number:
                self.scene.number = len(self.chapter.scenes) + 1
            self.chapter.scenes.append(self.scene)
        self.scene = None

    def close_chapter(self) -> None:
        self.close_scene()
        if self.chapter is None:
            return
        if not self.chapter.number:
            self.chapter.number = len(self.chapters) + 1
        self.chapters.append(self.chapter)
        self.chapter = None

    def open_chapter(self, title: str) -> None:
        self.close_chapter()
        self.chapter = ChapterOutline(title=title)

    def open_scene(self, title: str, description: str = "") -> None:
        self.close_scene()
        if self.chapter is None:
            raise RuntimeError("Cannot open a scene before a chapter.")
        self.scene = SceneOutline(
            number=len(self.chapter.scenes) + 1,
            title=title,
            description=description,
        )

    def feed(self, line: str) -> None:
        if is_chapter_marker(line):
            self.open_chapter(line)
            return
        if self.chapter is None:
            logger.debug("Ignoring text before the first chapter marker.", line=line)
            return
        if is_scene_marker(line):
            self.open_scene(extract_scene_title(line))
            return
        if self.scene is not None:
            if not self.scene.description:
                self.scene.description = line
                return
        elif not self.chapter.description:
            self.chapter.description = line
            return
        # Unmarked line after a complete description starts an implicit scene.
        self.open_scene(f"Scene {len(self.chapter.scenes) + 1}", line)


class OutlineParser:
    """Parse generator text into :class:`Outline` / :class:`ChapterOutline`."""

    def parse(self, text: str) -> Outline:
        if not text or not text.strip():
            return Outline()

        lines = [_normalize_line(raw) for raw in text.splitlines()]
        lines = [line for line in lines if line]

        builder = _OutlineBuilder()
        if not any(is_chapter_marker(line) for line in lines):
            if not any(is_scene_marker(line) for line in lines):
                logger.debug("No chapter or scene markers found; using raw text.")
                chapter = ChapterOutline(
                    number=1, title="Chapter 1", description=text.strip()
                )
                return Outline(chapters=[chapter])
            builder.open_chapter("Chapter 1")

        for line in lines:
            builder.feed(line)
        builder.close_chapter()

        outline = Outline(chapters=builder.chapters)
        for chapter in outline.chapters:
            if not chapter.scenes and chapter.description:
                self.recover_scenes(chapter)
        self._renumber(outline)
        logger.debug(
            "Parsed outline.",
            chapters=len(outline.chapters),
            scenes=sum(len(c.scenes) for c in outline.chapters),
        )
        return outline

    def parse_chapter(self, text: str) -> ChapterOutline:
        """Parse text describing a single chapter.

        Only the first chapter is returned when the text contains several.
        """
        outline = self.parse(text)
        if outline.is_empty():
            return ChapterOutline(number=1)
        return outline.chapters[0]

    def recover_scenes(self, chapter: ChapterOutline) -> ChapterOutline:
        """Re-scan a chapter description for scene markers embedded in it."""
        lines = [_normalize_line(raw) for raw in chapter.description.splitlines()]
        head: list[str] = []
        scenes: list[SceneOutline] = []
        for line in lines:
            if not line:
                continue
            if is_scene_marker(line):
                scenes.append(
                    SceneOutline(
                        number=len(scenes) + 1, title=extract_scene_title(line)
                    )
                )
            elif scenes:
                scene = scenes[-1]
                scene.description = (
                    f"{scene.description}\n{line}" if scene.description else line
                )
            else:
                head.append(line)
        if scenes:
            logger.debug(
                "Recovered inline scenes from chapter description.",
                chapter=chapter.title,
                scenes=len(scenes),
            )
            chapter.scenes = scenes
            chapter.description = "\n".join(head)
        return chapter

    @staticmethod
    def _renumber(outline: Outline) -> None:
        for chapter_position, chapter in enumerate(outline.chapters, start=1):
            chapter.number = chapter_position
            for scene_position, scene in enumerate(chapter.scenes, start=1):
                scene.number = scene_position


def parse_outline(text: str) -> Outline:
    return OutlineParser().parse(text)


def parse_chapter_outline(text: str) -> ChapterOutline:
    return OutlineParser().parse_chapter(text)
