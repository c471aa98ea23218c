# models/book_models.py
"""Pydantic models describing a book and the state of its generation."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SceneOutline(BaseModel):
    number: int = 0
    title: str = ""
    description: str = ""


class ChapterOutline(BaseModel):
    number: int = 0
    title: str = ""
    description: str = ""
    scenes: list[SceneOutline] = Field(default_factory=list)

    def to_text(self) -> str:
        """Render the chapter outline in the canonical text format."""
        lines = [self.title or f"Chapter {self.number}"]
        if self.description:
            lines.append(self.description)
        for scene in self.scenes:
            lines.append(f"Scene {scene.number}: {scene.title}")
            if scene.description:
                lines.append(scene.description)
        return "\n".join(lines)


class Outline(BaseModel):
    chapters: list[ChapterOutline] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.chapters

    def get_chapter(self, number: int) -> ChapterOutline | None:
        for chapter in self.chapters:
            if chapter.number == number:
                return chapter
        return None

    def to_text(self) -> str:
        return "\n\n".join(chapter.to_text() for chapter in self.chapters)


class Content(BaseModel):
    text: str = ""
    chapter_number: int
    scene_number: int

    def is_empty(self) -> bool:
        return not self.text.strip()


class Scene(BaseModel):
    title: str
    outline: SceneOutline
    content: Content
    outline_expanded: bool = False


class Chapter(BaseModel):
    number: int
    title: str
    outline: ChapterOutline
    scenes: list[Scene] = Field(default_factory=list)
    content: str = ""

    def get_scene(self, number: int) -> Scene | None:
        for scene in self.scenes:
            if scene.outline.number == number:
                return scene
        return None

    def assemble_content(self) -> str:
        """Concatenate scene prose under ``## title`` headings."""
        parts = []
        for scene in sorted(self.scenes, key=lambda s: s.outline.number):
            if scene.content.is_empty():
                continue
            parts.append(f"## {scene.title}\n\n{scene.content.text}\n\n")
        return "".join(parts)


class Genre(BaseModel):
    name: str
    description: str = ""

    @classmethod
    def parse(cls, text: str) -> Genre:
        """Build a genre from ``name: description`` text."""
        name, sep, description = text.strip().partition(":")
        if not sep:
            return cls(name=text.strip())
        return cls(name=name.strip(), description=description.strip())

    def __str__(self) -> str:
        return f"{self.name}: {self.description}" if self.description else self.name


class Character(BaseModel):
    name: str
    description: str = ""

    def __str__(self) -> str:
        return f"{self.name}: {self.description}" if self.description else self.name


def parse_characters(text: str) -> list[Character]:
    """Parse one ``name: description`` character per non-empty line."""
    characters: list[Character] = []
    for line in text.splitlines():
        line = line.strip().lstrip("-*").strip()
        if not line:
            continue
        name, sep, description = line.partition(":")
        if sep:
            characters.append(
                Character(name=name.strip(), description=description.strip())
            )
        else:
            characters.append(Character(name=line))
    return characters


def format_characters(characters: list[Character]) -> str:
    return "\n".join(str(character) for character in characters)


class TemporarySummary(BaseModel):
    """Cached continuity digest for the next generation call."""

    summary: str
    context_hash: str
    created_at: datetime = Field(default_factory=datetime.now)


class GenerationContext(BaseModel):
    """Everything upstream phases produced, owned by one run."""

    model_config = ConfigDict(validate_assignment=True)

    title: str
    braindump: str = ""
    genre: Genre | None = None
    style: str = ""
    characters: list[Character] = Field(default_factory=list)
    synopsis: str = ""
    outline: Outline = Field(default_factory=Outline)
    temporary_summary: TemporarySummary | None = None
    history: list[str] = Field(default_factory=list)

    def add_history(self, phase: str, output: str) -> None:
        self.history.append(f"{phase}:\n{output}")


class Book(BaseModel):
    title: str
    context: GenerationContext
    chapters: list[Chapter] = Field(default_factory=list)

    def get_chapter(self, number: int) -> Chapter | None:
        for chapter in self.chapters:
            if chapter.number == number:
                return chapter
        return None
