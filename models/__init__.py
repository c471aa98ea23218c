"""Central package for tomewright data models."""

from .book_models import (
    Book,
    Chapter,
    ChapterOutline,
    Character,
    Content,
    GenerationContext,
    Genre,
    Outline,
    Scene,
    SceneOutline,
    TemporarySummary,
    format_characters,
    parse_characters,
)

__all__ = [
    "Book",
    "Chapter",
    "ChapterOutline",
    "Character",
    "Content",
    "GenerationContext",
    "Genre",
    "Outline",
    "Scene",
    "SceneOutline",
    "TemporarySummary",
    "format_characters",
    "parse_characters",
]
