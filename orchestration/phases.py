# orchestration/phases.py
from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """Fixed, linear sequence of generation phases."""

    PREMISE = "Premise"
    GENRE = "Genre"
    STYLE = "Style"
    CAST = "Cast"
    SYNOPSIS = "Synopsis"
    OUTLINE = "Outline"
    CHAPTERS = "Chapters"
    SCENES = "Scenes"
    PROSE = "Prose"
    DONE = "Done"

    def next(self) -> Phase:
        members = list(Phase)
        index = members.index(self)
        return members[min(index + 1, len(members) - 1)]


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)
