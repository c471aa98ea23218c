# core/errors.py
"""Exception hierarchy for the generation pipeline."""

from __future__ import annotations


class TomewrightError(Exception):
    """Base class for all pipeline errors."""


class ProjectIOError(TomewrightError):
    """A filesystem operation on the project directory failed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message if path is None else f"{message}: {path}")
        self.path = path


class GeneratorUnavailableError(TomewrightError):
    """The text generator could not be reached or is temporarily down."""


class GeneratorOverloadedError(GeneratorUnavailableError):
    """The provider reported that it is overloaded or rate limiting."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerationError(TomewrightError):
    """A semantic failure while generating or validating output."""


class DuplicateChapterTitleError(GenerationError):
    def __init__(self, title: str, chapter_number: int | None = None) -> None:
        super().__init__(f"Duplicate chapter title: {title}")
        self.title = title
        self.chapter_number = chapter_number


class SerializationError(TomewrightError):
    """A persisted artifact could not be decoded."""


class MissingContextError(TomewrightError):
    """A phase needed upstream output that was never produced."""

    def __init__(self, section: str) -> None:
        super().__init__(f"Missing required context: {section}")
        self.section = section


class ConfigError(TomewrightError):
    pass


class MissingEnvVarError(ConfigError):
    def __init__(self, var_name: str) -> None:
        super().__init__(f"Missing environment variable: {var_name}")
        self.var_name = var_name


class RunTimeoutError(TomewrightError):
    """The run-level timeout expired before generation finished."""


__all__ = [
    "TomewrightError",
    "ProjectIOError",
    "GeneratorUnavailableError",
    "GeneratorOverloadedError",
    "GenerationError",
    "DuplicateChapterTitleError",
    "SerializationError",
    "MissingContextError",
    "ConfigError",
    "MissingEnvVarError",
    "RunTimeoutError",
]
