# orchestration/phase_orchestrator.py
"""Resumable driver for the book generation phases.

The orchestrator walks the fixed phase sequence, reusing whatever a
previous run already persisted in the project directory and calling the
generator only for the missing pieces. Every result is written to disk as
soon as it exists, so a run killed between two writes resumes cleanly.
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from collections.abc import Awaitable, Callable

import structlog

from config import settings
from core.errors import (
    DuplicateChapterTitleError,
    GenerationError,
    MissingContextError,
    RunTimeoutError,
)
from models import (
    Book,
    Chapter,
    ChapterOutline,
    Content,
    GenerationContext,
    Genre,
    Outline,
    Scene,
    TemporarySummary,
    format_characters,
    parse_characters,
)
from orchestration.phases import PHASE_ORDER, Phase
from orchestration.services import PipelineServices
from parsing import OutlineParser, is_chapter_marker
from prompt_renderer import render_prompt
from storage.artifact_scanner import (
    CHAPTERS_DIR_NAME,
    ArtifactScanner,
    OutlineSource,
    ReconstructedState,
)
from storage.file_manager import (
    FileManager,
    chapter_json_name,
    chapter_outline_log_name,
    content_log_name,
    log_timestamp,
    read_text,
    scene_outline_log_name,
    summary_log_name,
)
from storage.project_state import MetadataKey, ProjectState
from utils.text_utils import sanitize_directory_name, truncate_text

logger = structlog.get_logger(__name__)

CONTINUATION_MARKER = "Here is where we continue the story..."
SCENE_INDEX_STRIDE = 1000

_TITLE_NUMBER_PREFIX = re.compile(r"^\s*chapter\s+\d+\s*[:.\-]\s*", re.IGNORECASE)
_RECONSTRUCTABLE_SOURCES = (
    OutlineSource.CHAPTER_JSON,
    OutlineSource.CHAPTER_GENERATION,
    OutlineSource.CHAPTER_MARKDOWN,
)


def normalize_chapter_title(title: str) -> str:
    """Comparable form of a chapter title, without its ``Chapter N:`` prefix."""
    stripped = _TITLE_NUMBER_PREFIX.sub("", title).strip().lower()
    return stripped or title.strip().lower()


def scene_cache_index(chapter_number: int, scene_number: int) -> int:
    return chapter_number * SCENE_INDEX_STRIDE + scene_number


def _operation_slug(operation: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", operation.lower()).strip("_")


class PhaseOrchestrator:
    def __init__(
        self,
        project_dir: str,
        services: PipelineServices,
        *,
        title: str | None = None,
        braindump: str | None = None,
        max_chapters: int = settings.MAX_CHAPTERS,
        max_content_length: int = settings.MAX_CONTENT_LENGTH,
        summary_ttl: float | None = settings.SUMMARY_CACHE_DURATION,
        completion_threshold: float = settings.COMPLETION_THRESHOLD,
        reuse_existing: bool = True,
        scanner: ArtifactScanner | None = None,
        parser: OutlineParser | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.services = services
        self.store = ProjectState(project_dir)
        self.files = FileManager(project_dir)
        self.parser = parser or OutlineParser()
        self.scanner = scanner or ArtifactScanner(self.parser)
        self.max_chapters = max_chapters
        self.max_content_length = max_content_length
        self.summary_ttl = summary_ttl
        self.completion_threshold = completion_threshold
        self.reuse_existing = reuse_existing

        self.phase = Phase.PREMISE
        self.context: GenerationContext | None = None
        self.book: Book | None = None
        self._requested_title = title.strip() if title else None
        self._requested_braindump = braindump.strip() if braindump else None
        self._legacy_complete = False
        self._current_chapter: int | None = None
        self._run_start_time = 0.0

        self._phase_handlers: dict[Phase, Callable[[], Awaitable[None]]] = {
            Phase.PREMISE: self._premise_phase,
            Phase.GENRE: self._genre_phase,
            Phase.STYLE: self._style_phase,
            Phase.CAST: self._cast_phase,
            Phase.SYNOPSIS: self._synopsis_phase,
            Phase.OUTLINE: self._outline_phase,
            Phase.CHAPTERS: self._chapters_phase,
            Phase.SCENES: self._scenes_phase,
            Phase.PROSE: self._prose_phase,
        }

    @classmethod
    def for_title(
        cls,
        title: str,
        services: PipelineServices,
        base_output_dir: str | None = None,
        **kwargs,
    ) -> PhaseOrchestrator:
        """Create an orchestrator whose project directory is derived from ``title``."""
        project_dir = os.path.join(
            base_output_dir or settings.BASE_OUTPUT_DIR, sanitize_directory_name(title)
        )
        return cls(project_dir, services, title=title, **kwargs)

    # -- run ------------------------------------------------------------------

    async def run(self, timeout: float | None = None) -> Book:
        """Run every outstanding phase and return the finished book.

        ``timeout`` bounds the whole run; when it elapses the in-flight
        generator call is cancelled and :class:`RunTimeoutError` is raised.
        """
        if timeout is None:
            return await self._run()
        try:
            return await asyncio.wait_for(self._run(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                "Generation run timed out.",
                timeout=timeout,
                phase=self.phase.value,
                project=self.project_dir,
            )
            raise RunTimeoutError(
                f"Run exceeded {timeout}s during phase {self.phase.value}"
            ) from e

    async def _run(self) -> Book:
        self._run_start_time = time.monotonic()
        if self.store.is_marked_complete():
            logger.info(
                "Completion marker found; rebuilding book without generating.",
                project=self.project_dir,
            )
            self.book = self._load_completed_book()
            self.context = self.book.context
            self._set_phase(Phase.DONE)
            return self.book

        self.resume()
        if self._legacy_complete:
            logger.info(
                "Existing artifacts already cover the book; marking it complete.",
                project=self.project_dir,
            )
            self.store.save_book(self.book)
            self.store.mark_complete()
            self._set_phase(Phase.DONE)
            return self.book

        for phase in PHASE_ORDER:
            if phase is Phase.DONE:
                break
            self._set_phase(phase)
            await self._phase_handlers[phase]()

        await self._finalize()
        return self.book

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self.phase:
            logger.info(
                "Phase transition.",
                from_phase=self.phase.value,
                to_phase=phase.value,
            )
        else:
            logger.info("Entering phase.", phase=phase.value)
        self.phase = phase
        self._update_display()

    def _update_display(self) -> None:
        display = self.services.display
        if display is None:
            return
        display.update(
            title=self.context.title if self.context else self._requested_title,
            phase=self.phase.value,
            chapter_num=self._current_chapter,
            total_tokens=self.services.token_tracker.total_tokens,
        )

    async def _finalize(self) -> None:
        elapsed = time.monotonic() - self._run_start_time
        self.store.put(MetadataKey.GENERATION_TIME, f"{elapsed:.2f} seconds")
        self.store.put(
            "Total Token Usage", self.services.token_tracker.format_usage()
        )
        self.store.save_book(self.book)
        self.store.mark_complete()
        self._set_phase(Phase.DONE)
        logger.info(
            "Book generation complete.",
            title=self.book.title,
            chapters=len(self.book.chapters),
            seconds=round(elapsed, 2),
            total_tokens=self.services.token_tracker.total_tokens,
        )

    # -- resumption -------------------------------------------------------------

    def _resolve_title(self) -> str:
        stored = self.store.get(MetadataKey.TITLE)
        title = self._requested_title or stored
        if not title:
            raise MissingContextError(MetadataKey.TITLE.value)
        if stored != title:
            self.store.put(MetadataKey.TITLE, title)
        return title

    def resume(self) -> Book:
        """Rebuild context and book state from the project directory."""
        context = GenerationContext(title=self._resolve_title())
        if self.reuse_existing:
            context.braindump = self.store.get(MetadataKey.BRAINDUMP) or ""
            genre = self.store.get(MetadataKey.GENRE)
            context.genre = Genre.parse(genre) if genre else None
            context.style = self.store.get(MetadataKey.STYLE) or ""
            characters = self.store.get(MetadataKey.CHARACTERS)
            context.characters = parse_characters(characters) if characters else []
            context.synopsis = self.store.get(MetadataKey.SYNOPSIS) or ""
            context.outline = self._load_outline() or Outline()
        else:
            logger.info("Reuse disabled; regenerating premise through outline.")

        book = self.store.load_book()
        if book is not None:
            context.history = list(book.context.history)
            book.title = context.title
            book.context = context
            self._fill_from_artifacts(book, context.outline)
            logger.info(
                "Resuming from book.json.",
                chapters=len(book.chapters),
                project=self.project_dir,
            )
        else:
            state = self.scanner.scan(self.project_dir)
            book = Book(
                title=context.title,
                context=context,
                chapters=self._chapters_from_artifacts(state, context.outline),
            )
            self._legacy_complete = bool(book.chapters) and state.is_complete(
                threshold=self.completion_threshold
            )

        self.context = context
        self.book = book
        return book

    def _load_outline(self) -> Outline | None:
        outline = self.store.load_outline()
        if outline is not None and not outline.is_empty():
            return outline
        for source, text in (
            ("metadata", self.store.get(MetadataKey.BOOK_OUTLINE)),
            ("raw outline", self.store.load_raw_outline()),
        ):
            if not text:
                continue
            parsed = self.parser.parse(text)
            if not parsed.is_empty():
                logger.info(
                    "Recovered outline from text.",
                    source=source,
                    chapters=len(parsed.chapters),
                )
                return parsed
        return None

    def _chapters_from_artifacts(
        self, state: ReconstructedState, outline: Outline
    ) -> list[Chapter]:
        chapters: list[Chapter] = []
        for number in sorted(state.chapters):
            artifacts = state.chapters[number]
            if (
                artifacts.outline_source not in _RECONSTRUCTABLE_SOURCES
                and not artifacts.scenes
                and not artifacts.has_full_chapter
            ):
                logger.debug("Ignoring chapter with no usable artifacts.", chapter=number)
                continue
            chapter = self.scanner.load_chapter(state, number, outline)
            if chapter is not None:
                chapters.append(chapter)
        if chapters:
            logger.info("Imported chapters from legacy artifacts.", chapters=len(chapters))
        return chapters

    def _fill_from_artifacts(self, book: Book, outline: Outline) -> None:
        """Recover work written to logs after the last save of book.json."""
        state = self.scanner.scan(self.project_dir)
        known = {c.number for c in book.chapters}
        for number in sorted(state.chapters):
            artifacts = state.chapters[number]
            if (
                number in known
                or number > self.max_chapters
                or artifacts.outline_source is not OutlineSource.CHAPTER_JSON
            ):
                continue
            chapter = self.scanner.load_chapter(state, number, outline)
            if chapter is None:
                continue
            title = normalize_chapter_title(chapter.title)
            if any(normalize_chapter_title(c.title) == title for c in book.chapters):
                logger.warning(
                    "Ignoring chapter artifact with a duplicate title.",
                    chapter=number,
                    title=chapter.title,
                )
                continue
            book.chapters.append(chapter)
            logger.info("Recovered chapter missing from book.json.", chapter=number)
        book.chapters.sort(key=lambda c: c.number)

        for chapter in book.chapters:
            artifacts = state.chapters.get(chapter.number)
            if artifacts is None:
                continue
            for scene in chapter.scenes:
                found = artifacts.scenes.get(scene.outline.number)
                if found is None:
                    continue
                if not scene.outline_expanded and found.has_outline:
                    text = (read_text(found.outline_path) or "").strip()
                    if text:
                        self._apply_scene_outline(chapter, scene, text)
                if scene.content.is_empty() and found.has_content:
                    text = (read_text(found.content_path) or "").strip()
                    if text:
                        scene.content.text = text
                        logger.info(
                            "Recovered scene content from log.",
                            chapter=chapter.number,
                            scene=scene.outline.number,
                        )

    def _load_completed_book(self) -> Book:
        book = self.store.load_book()
        if book is not None:
            return book
        context = GenerationContext(title=self._resolve_title())
        context.outline = self._load_outline() or Outline()
        state = self.scanner.scan(self.project_dir)
        return Book(
            title=context.title,
            context=context,
            chapters=self._chapters_from_artifacts(state, context.outline),
        )

    # -- generator plumbing -----------------------------------------------------

    async def _generate(
        self, prompt: str, operation: str, log_name: str | None
    ) -> str:
        await self.files.save_prompt(_operation_slug(operation), prompt)
        text, usage = await self.services.generator.call(prompt, operation)
        if log_name is not None:
            await self.files.save_log(log_name, text)
        if usage:
            self.store.put(
                f"{operation} Token Usage",
                self.services.token_tracker.format_usage(usage),
            )
        self._update_display()
        return text

    async def _temporary_summary(
        self, kind: str, index: int, context_text: str
    ) -> TemporarySummary:
        async def compute(text: str) -> str:
            prompt = render_prompt(f"temporary_summary_{kind}", {"context": text})
            return await self._generate(
                prompt,
                f"Temporary Summary {kind.title()} {index}",
                summary_log_name(kind, index, log_timestamp()),
            )

        summary = await self.services.cache.get_or_compute(
            kind, index, context_text, self.summary_ttl, compute
        )
        self.context.temporary_summary = summary
        return summary

    def _require_outline(self) -> Outline:
        if self.book is None:
            self.resume()
        if self.context.outline.is_empty():
            raise MissingContextError(MetadataKey.BOOK_OUTLINE.value)
        return self.context.outline

    def _base_variables(self) -> dict[str, str]:
        context = self.context
        return {
            "title": context.title,
            "braindump": context.braindump,
            "genre": str(context.genre) if context.genre else "",
            "style": context.style,
            "characters": format_characters(context.characters),
            "synopsis": context.synopsis,
        }

    # -- premise to synopsis ------------------------------------------------------

    async def _text_phase(self, template: str, operation: str) -> str:
        prompt = render_prompt(template, self._base_variables())
        text = await self._generate(
            prompt, operation, f"{_operation_slug(operation)}_{log_timestamp()}.txt"
        )
        if not text.strip():
            raise GenerationError(f"Generator returned an empty {operation.lower()}.")
        return text.strip()

    def _record(self, key: MetadataKey, value: str) -> None:
        self.store.put(key, value)
        self.context.add_history(key.value, value)

    async def _premise_phase(self) -> None:
        if self.context.braindump:
            logger.info("Reusing existing braindump.")
            return
        if self._requested_braindump:
            braindump = self._requested_braindump
        else:
            braindump = await self._text_phase("braindump", "Braindump")
        self.context.braindump = braindump
        self._record(MetadataKey.BRAINDUMP, braindump)

    async def _genre_phase(self) -> None:
        if self.context.genre is not None:
            logger.info("Reusing existing genre.", genre=self.context.genre.name)
            return
        genre = Genre.parse(await self._text_phase("genre", "Genre"))
        self.context.genre = genre
        self._record(MetadataKey.GENRE, str(genre))

    async def _style_phase(self) -> None:
        if self.context.style:
            logger.info("Reusing existing style.")
            return
        self.context.style = await self._text_phase("style", "Style")
        self._record(MetadataKey.STYLE, self.context.style)

    async def _cast_phase(self) -> None:
        if self.context.characters:
            logger.info("Reusing existing characters.", count=len(self.context.characters))
            return
        characters = parse_characters(await self._text_phase("characters", "Characters"))
        if not characters:
            raise GenerationError("Generator returned no characters.")
        self.context.characters = characters
        self._record(MetadataKey.CHARACTERS, format_characters(characters))

    async def _synopsis_phase(self) -> None:
        if self.context.synopsis:
            logger.info("Reusing existing synopsis.")
            return
        self.context.synopsis = await self._text_phase("synopsis", "Synopsis")
        self._record(MetadataKey.SYNOPSIS, self.context.synopsis)

    # -- outline ----------------------------------------------------------------

    async def _outline_phase(self) -> None:
        if not self.context.outline.is_empty():
            logger.info(
                "Reusing existing outline.", chapters=len(self.context.outline.chapters)
            )
            if self.store.load_outline() is None:
                self.store.save_outline(self.context.outline)
            return

        prompt = render_prompt(
            "outline", {**self._base_variables(), "max_chapters": self.max_chapters}
        )
        raw = await self._generate(
            prompt, "Outline", f"outline_generation_{log_timestamp()}.txt"
        )
        self.store.save_raw_outline(raw)
        outline = self.parser.parse(raw)
        if outline.is_empty():
            raise GenerationError("no chapters produced")
        if len(outline.chapters) > self.max_chapters:
            logger.warning(
                "Outline exceeds chapter limit; truncating.",
                chapters=len(outline.chapters),
                max_chapters=self.max_chapters,
            )
            outline.chapters = outline.chapters[: self.max_chapters]

        self.store.save_outline(outline)
        self.context.outline = outline
        self._record(MetadataKey.BOOK_OUTLINE, outline.to_text())
        self.store.put(MetadataKey.CHAPTER_COUNT, str(len(outline.chapters)))
        logger.info("Outline generated.", chapters=len(outline.chapters))

    # -- chapters ---------------------------------------------------------------

    async def _chapters_phase(self) -> None:
        outline = self._require_outline()
        for planned in outline.chapters:
            if self.book.get_chapter(planned.number) is not None:
                logger.debug("Chapter outline already exists.", chapter=planned.number)
                continue
            await self.generate_chapter(planned.number)

    def _chapter_summary_context(self, chapter_number: int) -> str:
        variables = self._base_variables()
        previous = [
            chapter.outline.to_text()
            for chapter in sorted(self.book.chapters, key=lambda c: c.number)
            if chapter.number < chapter_number
        ]
        return "\n\n".join(
            [
                f"Title: {variables['title']}",
                f"Genre: {variables['genre']}",
                f"Style: {variables['style']}",
                f"Synopsis: {variables['synopsis']}",
                f"Book Outline:\n{self.context.outline.to_text()}",
                "Previous Chapters:\n" + ("\n\n".join(previous) or "(none)"),
            ]
        )

    def _check_duplicate_title(self, title: str, chapter_number: int) -> None:
        wanted = normalize_chapter_title(title)
        for chapter in self.book.chapters:
            if chapter.number == chapter_number:
                continue
            if normalize_chapter_title(chapter.title) == wanted:
                logger.error(
                    "Duplicate chapter title produced.",
                    title=title,
                    chapter=chapter_number,
                    existing_chapter=chapter.number,
                )
                raise DuplicateChapterTitleError(title, chapter_number)

    async def generate_chapter(self, chapter_number: int) -> Chapter:
        """Generate, validate and persist the outline of one chapter."""
        outline = self._require_outline()
        if chapter_number < 1 or chapter_number > len(outline.chapters):
            raise GenerationError(
                f"Chapter {chapter_number} is outside the outline "
                f"({len(outline.chapters)} chapters)."
            )
        if chapter_number > self.max_chapters:
            raise GenerationError(
                f"Chapter {chapter_number} exceeds the limit of {self.max_chapters} chapters."
            )
        planned = outline.get_chapter(chapter_number) or outline.chapters[chapter_number - 1]
        self._current_chapter = chapter_number

        summary = await self._temporary_summary(
            "chapter", chapter_number, self._chapter_summary_context(chapter_number)
        )
        prompt = render_prompt(
            "chapter",
            {
                **self._base_variables(),
                "book_outline": outline.to_text(),
                "temporary_summary": summary.summary,
                "chapter_number": chapter_number,
                "planned_chapter": planned.to_text(),
            },
        )
        # Logged only once accepted; a rejected chapter must not be importable.
        text = await self._generate(prompt, f"Chapter {chapter_number} Outline", None)

        chapter_outline = self._chapter_outline_from(text, planned)
        chapter_outline.number = chapter_number
        title = chapter_outline.title or planned.title or f"Chapter {chapter_number}"
        self._check_duplicate_title(title, chapter_number)

        await self.files.save_log(
            chapter_outline_log_name(chapter_number, log_timestamp()), text
        )
        await self.files.save_log(
            chapter_json_name(chapter_number), chapter_outline.model_dump_json(indent=2)
        )
        chapter = Chapter(
            number=chapter_number,
            title=title,
            outline=chapter_outline,
            scenes=[
                Scene(
                    title=scene.title or f"Scene {scene.number}",
                    outline=scene,
                    content=Content(
                        chapter_number=chapter_number, scene_number=scene.number
                    ),
                )
                for scene in chapter_outline.scenes
            ],
        )
        self.book.chapters = sorted(
            [c for c in self.book.chapters if c.number != chapter_number] + [chapter],
            key=lambda c: c.number,
        )
        self.store.save_book(self.book)
        self.context.add_history(f"Chapter {chapter_number}", chapter_outline.to_text())
        logger.info(
            "Chapter outline generated.",
            chapter=chapter_number,
            title=title,
            scenes=len(chapter.scenes),
        )
        return chapter

    def _chapter_outline_from(self, text: str, planned: ChapterOutline) -> ChapterOutline:
        parsed = self.parser.parse_chapter(text)
        has_marker = any(is_chapter_marker(line.strip()) for line in text.splitlines())
        if not has_marker:
            parsed.title = planned.title
        if not parsed.scenes and planned.scenes:
            logger.info(
                "Chapter output had no scenes; keeping the planned ones.",
                chapter=planned.number,
            )
            parsed.scenes = [scene.model_copy() for scene in planned.scenes]
            if not parsed.description:
                parsed.description = planned.description
        return parsed

    # -- scenes -------------------------------------------------------------------

    async def _scenes_phase(self) -> None:
        self._require_outline()
        for chapter in sorted(self.book.chapters, key=lambda c: c.number):
            if not chapter.outline.scenes:
                logger.info(
                    "Chapter has no scene outlines; skipping scene generation.",
                    chapter=chapter.number,
                )
                continue
            for scene in sorted(chapter.scenes, key=lambda s: s.outline.number):
                if scene.outline_expanded or not scene.content.is_empty():
                    continue
                await self.generate_scene_outline(chapter, scene)

    async def generate_scene_outline(self, chapter: Chapter, scene: Scene) -> Scene:
        """Expand one planned scene into a detailed scene outline."""
        chapter_number = chapter.number
        scene_number = scene.outline.number
        self._current_chapter = chapter_number
        previous = "\n\n".join(
            f"Scene {other.outline.number}: {other.title}\n{other.outline.description}"
            for other in sorted(chapter.scenes, key=lambda s: s.outline.number)
            if other.outline.number < scene_number
        )
        summary = await self._temporary_summary(
            "scene",
            scene_cache_index(chapter_number, scene_number),
            "\n\n".join(
                [
                    f"Title: {self.context.title}",
                    f"Synopsis: {self.context.synopsis}",
                    f"Chapter Outline:\n{chapter.outline.to_text()}",
                    f"Previous Scenes:\n{previous or '(none)'}",
                ]
            ),
        )
        prompt = render_prompt(
            "scene",
            {
                "synopsis": self.context.synopsis,
                "chapter_outline": chapter.outline.to_text(),
                "scene_number": scene_number,
                "scene_title": scene.title,
                "scene_description": scene.outline.description,
                "previous_scenes": previous,
                "temporary_summary": summary.summary,
            },
        )
        text = await self._generate(
            prompt,
            f"Chapter {chapter_number} Scene {scene_number} Outline",
            scene_outline_log_name(chapter_number, scene_number, log_timestamp()),
        )
        if not text.strip():
            raise GenerationError(
                f"Empty outline for chapter {chapter_number} scene {scene_number}."
            )

        self._apply_scene_outline(chapter, scene, text.strip())
        self.store.save_book(self.book)
        logger.info(
            "Scene outline generated.", chapter=chapter_number, scene=scene_number
        )
        return scene

    @staticmethod
    def _apply_scene_outline(chapter: Chapter, scene: Scene, description: str) -> None:
        scene.outline.description = description
        scene.outline_expanded = True
        for planned in chapter.outline.scenes:
            if planned.number == scene.outline.number:
                planned.description = description

    # -- prose --------------------------------------------------------------------

    async def _prose_phase(self) -> None:
        self._require_outline()
        for chapter in sorted(self.book.chapters, key=lambda c: c.number):
            pending = [s for s in chapter.scenes if s.content.is_empty()]
            if not pending:
                if chapter.content != chapter.assemble_content():
                    await self._write_chapter(chapter)
                continue
            for scene in sorted(chapter.scenes, key=lambda s: s.outline.number):
                if not scene.content.is_empty():
                    logger.debug(
                        "Scene already has content; skipping.",
                        chapter=chapter.number,
                        scene=scene.outline.number,
                    )
                    continue
                await self.generate_scene_content(chapter, scene)
            await self._write_chapter(chapter)

    def _running_context(self, chapter: Chapter, previous_content: str) -> str:
        variables = self._base_variables()
        scene_outlines = "\n".join(
            f"Scene {scene.outline.number}: {scene.title}\n{scene.outline.description}"
            for scene in sorted(chapter.scenes, key=lambda s: s.outline.number)
        )
        return "\n\n".join(
            [
                f"Title: {variables['title']}",
                f"Genre: {variables['genre']}",
                f"Style: {variables['style']}",
                f"Synopsis: {variables['synopsis']}",
                f"Chapter {chapter.number}: {chapter.title}",
                f"Scene Outlines:\n{scene_outlines}",
                f"Previous Content:\n{previous_content or '(none)'}",
                CONTINUATION_MARKER,
            ]
        )

    async def generate_scene_content(self, chapter: Chapter, scene: Scene) -> Scene:
        """Write prose for one scene, continuing from the scenes before it."""
        chapter_number = chapter.number
        scene_number = scene.outline.number
        self._current_chapter = chapter_number
        previous_content = "\n\n".join(
            other.content.text
            for other in sorted(chapter.scenes, key=lambda s: s.outline.number)
            if other.outline.number < scene_number and not other.content.is_empty()
        )
        running = self._running_context(chapter, previous_content)
        await self.files.save_log(f"temporary_content_summary_ch{chapter_number}.txt", running)
        summary = await self._temporary_summary(
            "content", scene_cache_index(chapter_number, scene_number), running
        )

        prompt = render_prompt(
            "content",
            {
                "style": self.context.style,
                "synopsis": self.context.synopsis,
                "chapter_outline": chapter.outline.to_text(),
                "scene_outline": (
                    f"Scene {scene_number}: {scene.title}\n{scene.outline.description}"
                ),
                "temporary_summary": summary.summary,
                "previous_content": truncate_text(
                    previous_content, self.max_content_length
                ),
            },
        )
        text = await self._generate(
            prompt,
            f"Chapter {chapter_number} Scene {scene_number} Content",
            content_log_name(chapter_number, scene_number),
        )
        if not text.strip():
            raise GenerationError(
                f"Empty content for chapter {chapter_number} scene {scene_number}."
            )
        scene.content.text = text.strip()
        self.store.save_book(self.book)
        logger.info(
            "Scene content generated.",
            chapter=chapter_number,
            scene=scene_number,
            characters=len(scene.content.text),
        )
        return scene

    async def _write_chapter(self, chapter: Chapter) -> None:
        chapter.content = chapter.assemble_content()
        path = os.path.join(
            self.project_dir, CHAPTERS_DIR_NAME, f"chapter_{chapter.number}.md"
        )
        await self.files.write_text(path, f"# {chapter.title}\n\n{chapter.content}")
        self.store.save_book(self.book)
        logger.info("Chapter assembled.", chapter=chapter.number, path=path)
