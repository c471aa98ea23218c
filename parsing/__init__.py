# parsing/__init__.py
"""Parsers for generator output."""

from .outline_parser import (
    OutlineParser,
    extract_scene_title,
    is_chapter_marker,
    is_scene_marker,
    parse_chapter_outline,
    parse_outline,
)

__all__ = [
    "OutlineParser",
    "extract_scene_title",
    "is_chapter_marker",
    "is_scene_marker",
    "parse_chapter_outline",
    "parse_outline",
]
