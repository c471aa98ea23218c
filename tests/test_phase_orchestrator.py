import asyncio
import os
import re

import httpx
import pytest

from core.availability import AvailabilityMonitor
from core.errors import (
    DuplicateChapterTitleError,
    GenerationError,
    MissingContextError,
    RunTimeoutError,
)
from core.llm_interface import GeneratorClient
from core.retrying_client import RetryingGeneratorClient
from core.usage import TokenUsage, TokenUsageTracker
from models import ChapterOutline, Outline, SceneOutline
from orchestration.phase_orchestrator import (
    PhaseOrchestrator,
    normalize_chapter_title,
    scene_cache_index,
)
from orchestration.phases import Phase
from orchestration.services import PipelineServices
from storage.project_state import MetadataKey, ProjectState
from storage.summary_cache import ContentAddressedCache

OUTLINE = (
    "Chapter 1: The Map\nAda finds a map.\nScene 1: Discovery\nAda opens the chest.\n"
    "Scene 2: Departure\nShe leaves town.\n\n"
    "Chapter 2: The River\nThe crossing.\nScene 1: Ferry\nBram rows.\n"
)
CHAPTERS = {
    1: "Chapter 1: The Map\nAda finds a map.\nScene 1: Discovery\nAda opens the chest.\n"
    "Scene 2: Departure\nShe leaves town.",
    2: "Chapter 2: The River\nThe crossing.\nScene 1: Ferry\nBram rows.",
}
RESPONSES = {
    "Genre": "Fantasy: Swords and sorcery",
    "Characters": "Ada: a cartographer\nBram: a smuggler",
}


class FakeGenerator:
    """Scripted generator keyed by operation name."""

    def __init__(self, outline=OUTLINE, chapters=None):
        self.outline = outline
        self.chapters = chapters or CHAPTERS
        self.calls: list[str] = []
        self.prompts: dict[str, str] = {}

    async def call(self, prompt, operation="generation"):
        self.calls.append(operation)
        self.prompts[operation] = prompt
        return self._respond(operation), TokenUsage(3, 5)

    def _respond(self, operation):
        if operation.startswith("Temporary Summary"):
            return f"Summary for {operation}"
        if operation == "Outline":
            return self.outline
        match = re.fullmatch(r"Chapter (\d+) Outline", operation)
        if match:
            return self.chapters[int(match.group(1))]
        if operation.endswith("Outline"):
            return f"Detailed {operation}"
        if operation.endswith("Content"):
            return f"Prose for {operation}."
        return RESPONSES.get(operation, f"{operation} text")

    @property
    def content_calls(self):
        return [
            c for c in self.calls if c.endswith("Content") and not c.startswith("Temporary")
        ]


class ExplodingGenerator:
    async def call(self, prompt, operation="generation"):
        raise AssertionError(f"generator must not be called ({operation})")


class FakeDisplay:
    def __init__(self):
        self.updates = []

    def update(self, **kwargs):
        self.updates.append(kwargs)


def _services(tmp_path, generator, display=None):
    return PipelineServices(
        generator=generator,
        cache=ContentAddressedCache(str(tmp_path / "cache")),
        token_tracker=TokenUsageTracker(),
        display=display,
    )


def _snapshot(root):
    result = {}
    for dirpath, _, files in os.walk(root):
        for name in files:
            full = os.path.join(dirpath, name)
            with open(full, "rb") as f:
                result[full] = f.read()
    return result


async def _complete_run(tmp_path, **kwargs):
    generator = FakeGenerator()
    orchestrator = PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, generator), title="The Salt Road", **kwargs
    )
    book = await orchestrator.run()
    return orchestrator, generator, book


@pytest.mark.asyncio
async def test_full_run_generates_and_persists_every_phase(tmp_path):
    orchestrator, generator, book = await _complete_run(tmp_path)

    assert orchestrator.phase is Phase.DONE
    assert [c.title for c in book.chapters] == ["Chapter 1: The Map", "Chapter 2: The River"]
    first, second = book.chapters
    assert [s.title for s in first.scenes] == ["Discovery", "Departure"]
    assert [s.content.text for s in first.scenes] == [
        "Prose for Chapter 1 Scene 1 Content.",
        "Prose for Chapter 1 Scene 2 Content.",
    ]
    assert first.scenes[0].outline.description == "Detailed Chapter 1 Scene 1 Outline"
    assert first.outline.scenes[0].description == "Detailed Chapter 1 Scene 1 Outline"
    assert all(s.outline_expanded for c in book.chapters for s in c.scenes)
    assert generator.content_calls == [
        "Chapter 1 Scene 1 Content",
        "Chapter 1 Scene 2 Content",
        "Chapter 2 Scene 1 Content",
    ]
    assert generator.calls[:6] == [
        "Braindump",
        "Genre",
        "Style",
        "Characters",
        "Synopsis",
        "Outline",
    ]

    store = ProjectState(str(tmp_path))
    assert store.is_marked_complete()
    assert store.get(MetadataKey.TITLE) == "The Salt Road"
    assert store.get(MetadataKey.GENRE) == "Fantasy: Swords and sorcery"
    assert store.get(MetadataKey.CHAPTER_COUNT) == "2"
    assert store.get(MetadataKey.GENERATION_TIME).endswith("seconds")
    assert store.get("Outline Token Usage").startswith("Prompt tokens: 3")
    assert len(store.load_outline().chapters) == 2
    assert store.load_raw_outline() == OUTLINE
    assert store.load_book().chapters == book.chapters

    chapter_file = (tmp_path / "chapters" / "chapter_1.md").read_text(encoding="utf-8")
    assert chapter_file.startswith("# Chapter 1: The Map\n\n## Discovery\n\n")
    logs = tmp_path / "logs"
    assert (logs / "chapter_1.json").exists()
    assert (logs / "content_generation_ch2_scene1.txt").read_text(
        encoding="utf-8"
    ) == "Prose for Chapter 2 Scene 1 Content."
    assert any(name.startswith("scene_generation_ch1_scene2_") for name in os.listdir(logs))
    assert (tmp_path / "cache" / f"summary_content_{scene_cache_index(1, 2)}.json").exists()


@pytest.mark.asyncio
async def test_later_scenes_receive_earlier_prose(tmp_path):
    _, generator, _ = await _complete_run(tmp_path)
    assert "Prose for Chapter 1 Scene 1 Content." in generator.prompts["Chapter 1 Scene 2 Content"]
    context_log = (tmp_path / "logs" / "temporary_content_summary_ch1.txt").read_text(
        encoding="utf-8"
    )
    assert context_log.endswith("Here is where we continue the story...")


@pytest.mark.asyncio
async def test_completed_project_is_rebuilt_without_generator_calls(tmp_path):
    _, _, first = await _complete_run(tmp_path)
    before = _snapshot(tmp_path)

    second = await PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, ExplodingGenerator())
    ).run()

    assert _snapshot(tmp_path) == before
    assert [c.model_dump() for c in second.chapters] == [
        c.model_dump() for c in first.chapters
    ]


@pytest.mark.asyncio
async def test_resume_without_marker_reuses_everything(tmp_path):
    await _complete_run(tmp_path)
    os.remove(tmp_path / "book_complete.flag")

    orchestrator = PhaseOrchestrator(str(tmp_path), _services(tmp_path, ExplodingGenerator()))
    book = await orchestrator.run()

    assert orchestrator.phase is Phase.DONE
    assert len(book.chapters) == 2
    assert ProjectState(str(tmp_path)).is_marked_complete()


@pytest.mark.asyncio
async def test_existing_scene_content_is_never_regenerated(tmp_path):
    await _complete_run(tmp_path)
    store = ProjectState(str(tmp_path))
    book = store.load_book()
    book.chapters[0].scenes[0].content.text = "Hand edited."
    book.chapters[0].scenes[1].content.text = ""
    store.save_book(book)
    os.remove(store.completion_flag_path)
    os.remove(tmp_path / "logs" / "content_generation_ch1_scene2.txt")

    generator = FakeGenerator()
    result = await PhaseOrchestrator(str(tmp_path), _services(tmp_path, generator)).run()

    assert generator.content_calls == ["Chapter 1 Scene 2 Content"]
    assert not [c for c in generator.calls if re.fullmatch(r"Chapter \d+( Scene \d+)? Outline", c)]
    texts = [s.content.text for s in result.chapters[0].scenes]
    assert texts == ["Hand edited.", "Prose for Chapter 1 Scene 2 Content."]
    assert result.chapters[1].scenes[0].content.text == "Prose for Chapter 2 Scene 1 Content."
    chapter_file = (tmp_path / "chapters" / "chapter_1.md").read_text(encoding="utf-8")
    assert "Hand edited." in chapter_file


@pytest.mark.asyncio
async def test_resume_recovers_work_logged_after_last_book_save(tmp_path):
    await _complete_run(tmp_path)
    store = ProjectState(str(tmp_path))
    book = store.load_book()
    interrupted = book.chapters[0].scenes[1]
    interrupted.content.text = ""
    interrupted.outline_expanded = False
    interrupted.outline.description = "She leaves town."
    book.chapters = book.chapters[:1]
    store.save_book(book)
    os.remove(store.completion_flag_path)

    generator = FakeGenerator()
    result = await PhaseOrchestrator(str(tmp_path), _services(tmp_path, generator)).run()

    assert generator.calls == []
    assert [c.number for c in result.chapters] == [1, 2]
    scene = result.chapters[0].scenes[1]
    assert scene.outline_expanded
    assert scene.outline.description == "Detailed Chapter 1 Scene 2 Outline"
    assert scene.content.text == "Prose for Chapter 1 Scene 2 Content."
    recovered = result.chapters[1]
    assert recovered.title == "Chapter 2: The River"
    assert recovered.scenes[0].outline.description == "Detailed Chapter 2 Scene 1 Outline"
    assert recovered.scenes[0].content.text == "Prose for Chapter 2 Scene 1 Content."
    saved = ProjectState(str(tmp_path)).load_book()
    assert [c.number for c in saved.chapters] == [1, 2]
    assert saved.chapters[0].scenes[1].content.text == scene.content.text


@pytest.mark.asyncio
async def test_chapter_without_scene_outlines_is_skipped(tmp_path):
    generator = FakeGenerator(
        outline="Chapter 1: Quiet\n\n" + CHAPTERS[2],
        chapters={1: "Chapter 1: Quiet", 2: CHAPTERS[2]},
    )
    orchestrator = PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, generator), title="The Salt Road"
    )

    book = await orchestrator.run()

    assert orchestrator.phase is Phase.DONE
    assert book.chapters[0].scenes == []
    assert not [c for c in generator.calls if c.startswith("Chapter 1 Scene")]
    assert "Chapter 2 Scene 1 Outline" in generator.calls
    assert generator.content_calls == ["Chapter 2 Scene 1 Content"]
    assert ProjectState(str(tmp_path)).is_marked_complete()

@pytest.mark.asyncio
async def test_duplicate_chapter_title_is_rejected_without_mutation(tmp_path):
    generator = FakeGenerator(
        chapters={
            1: CHAPTERS[1],
            2: "Chapter 2: The Map\nAgain.\nScene 1: Echo\nSame.",
        }
    )
    orchestrator = PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, generator), title="The Salt Road"
    )

    with pytest.raises(DuplicateChapterTitleError) as excinfo:
        await orchestrator.run()

    assert excinfo.value.chapter_number == 2
    assert [c.number for c in orchestrator.book.chapters] == [1]
    assert [c.number for c in ProjectState(str(tmp_path)).load_book().chapters] == [1]
    assert not (tmp_path / "logs" / "chapter_2.json").exists()
    assert not [
        name
        for name in os.listdir(tmp_path / "logs")
        if name.startswith("chapter_generation_2_")
    ]
    assert not ProjectState(str(tmp_path)).is_marked_complete()


@pytest.mark.asyncio
async def test_chapter_number_bounds(tmp_path):
    generator = FakeGenerator()
    orchestrator = PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, generator), title="T", max_chapters=1
    )
    orchestrator.store.save_outline(
        Outline(chapters=[ChapterOutline(number=1), ChapterOutline(number=2)])
    )
    orchestrator.resume()

    for number in (0, 2, 3):
        with pytest.raises(GenerationError):
            await orchestrator.generate_chapter(number)
    assert generator.calls == []


@pytest.mark.asyncio
async def test_generate_chapter_requires_outline(tmp_path):
    orchestrator = PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, FakeGenerator()), title="T"
    )
    with pytest.raises(MissingContextError) as excinfo:
        await orchestrator.generate_chapter(1)
    assert excinfo.value.section == "Book Outline"


@pytest.mark.asyncio
async def test_missing_title_is_fatal(tmp_path):
    orchestrator = PhaseOrchestrator(str(tmp_path), _services(tmp_path, ExplodingGenerator()))
    with pytest.raises(MissingContextError):
        await orchestrator.run()


@pytest.mark.asyncio
async def test_empty_outline_is_fatal(tmp_path):
    orchestrator = PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, FakeGenerator(outline="   ")), title="T"
    )
    with pytest.raises(GenerationError, match="no chapters produced"):
        await orchestrator.run()
    assert ProjectState(str(tmp_path)).get(MetadataKey.SYNOPSIS) == "Synopsis text"


@pytest.mark.asyncio
async def test_outline_is_truncated_to_chapter_limit(tmp_path):
    _, generator, book = await _complete_run(tmp_path, max_chapters=1)
    assert [c.number for c in book.chapters] == [1]
    assert ProjectState(str(tmp_path)).get(MetadataKey.CHAPTER_COUNT) == "1"
    assert "Chapter 2 Outline" not in generator.calls


@pytest.mark.asyncio
async def test_supplied_braindump_skips_generation(tmp_path):
    generator = FakeGenerator()
    orchestrator = PhaseOrchestrator(
        str(tmp_path),
        _services(tmp_path, generator),
        title="T",
        braindump="A lighthouse at the end of the world.",
    )
    await orchestrator.run()
    assert "Braindump" not in generator.calls
    assert (
        ProjectState(str(tmp_path)).get(MetadataKey.BRAINDUMP)
        == "A lighthouse at the end of the world."
    )


@pytest.mark.asyncio
async def test_disabling_reuse_regenerates_only_planning_phases(tmp_path):
    await _complete_run(tmp_path)
    os.remove(tmp_path / "book_complete.flag")

    generator = FakeGenerator()
    await PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, generator), reuse_existing=False
    ).run()

    assert generator.calls == [
        "Braindump",
        "Genre",
        "Style",
        "Characters",
        "Synopsis",
        "Outline",
    ]


@pytest.mark.asyncio
async def test_run_timeout_raises(tmp_path):
    class SlowGenerator:
        async def call(self, prompt, operation="generation"):
            await asyncio.sleep(10)

    orchestrator = PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, SlowGenerator()), title="T"
    )
    with pytest.raises(RunTimeoutError):
        await orchestrator.run(timeout=0.05)


def _legacy_project(tmp_path, with_content=True):
    store = ProjectState(str(tmp_path))
    store.put(MetadataKey.TITLE, "Legacy")
    store.put(MetadataKey.BRAINDUMP, "Old idea")
    store.put(MetadataKey.GENRE, "Mystery: whodunit")
    store.put(MetadataKey.STYLE, "Spare")
    store.put(MetadataKey.CHARACTERS, "Vera: detective")
    store.put(MetadataKey.SYNOPSIS, "A case.")
    store.put(MetadataKey.BOOK_OUTLINE, "Chapter 1: Clue\nA clue.\nScene 1: Study\nSearching.")
    logs = tmp_path / "logs"
    logs.mkdir(exist_ok=True)
    (logs / "chapter_1.json").write_text(
        ChapterOutline(
            number=1,
            title="Chapter 1: Clue",
            description="A clue.",
            scenes=[SceneOutline(number=1, title="Study", description="Searching.")],
        ).model_dump_json(),
        encoding="utf-8",
    )
    (logs / "scene_generation_ch1_scene1_20240101_000000.txt").write_text(
        "Vera searches the study.", encoding="utf-8"
    )
    if with_content:
        (logs / "content_generation_ch1_scene1.txt").write_text(
            "Legacy prose.", encoding="utf-8"
        )


@pytest.mark.asyncio
async def test_legacy_project_that_looks_complete_is_imported(tmp_path):
    _legacy_project(tmp_path)

    book = await PhaseOrchestrator(
        str(tmp_path), _services(tmp_path, ExplodingGenerator())
    ).run()

    assert book.title == "Legacy"
    assert book.chapters[0].scenes[0].content.text == "Legacy prose."
    store = ProjectState(str(tmp_path))
    assert store.is_marked_complete()
    assert store.load_book() is not None


@pytest.mark.asyncio
async def test_partial_legacy_project_resumes_at_prose(tmp_path):
    _legacy_project(tmp_path, with_content=False)
    generator = FakeGenerator()

    book = await PhaseOrchestrator(str(tmp_path), _services(tmp_path, generator)).run()

    assert generator.content_calls == ["Chapter 1 Scene 1 Content"]
    assert "Outline" not in generator.calls
    scene = book.chapters[0].scenes[0]
    assert scene.outline_expanded
    assert scene.outline.description == "Vera searches the study."
    assert scene.content.text == "Prose for Chapter 1 Scene 1 Content."


@pytest.mark.asyncio
async def test_display_is_updated(tmp_path):
    display = FakeDisplay()
    orchestrator = PhaseOrchestrator(
        str(tmp_path),
        _services(tmp_path, FakeGenerator(), display=display),
        title="The Salt Road",
    )
    await orchestrator.run()
    phases = [u["phase"] for u in display.updates]
    assert phases[0] == "Premise"
    assert phases[-1] == "Done"
    assert display.updates[-1]["title"] == "The Salt Road"


def test_for_title_derives_project_dir(tmp_path):
    orchestrator = PhaseOrchestrator.for_title(
        "The Salt Road!",
        _services(tmp_path, FakeGenerator()),
        base_output_dir=str(tmp_path),
    )
    assert orchestrator.project_dir == os.path.join(str(tmp_path), "the-salt-road")
    assert os.path.isdir(os.path.join(str(tmp_path), "the-salt-road", "logs"))


def test_normalize_chapter_title():
    assert normalize_chapter_title("Chapter 2: The Map") == "the map"
    assert normalize_chapter_title("CHAPTER 10 - The Map ") == "the map"
    assert normalize_chapter_title("Chapter 3") == "chapter 3"


@pytest.mark.asyncio
async def test_services_create_wires_retrying_client(tmp_path):
    client = GeneratorClient(
        provider="anthropic",
        api_base="https://api.test/v1",
        api_key="k",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))),
    )
    services = PipelineServices.create(str(tmp_path), client=client)

    assert isinstance(services.generator, RetryingGeneratorClient)
    assert isinstance(services.availability, AvailabilityMonitor)
    assert services.generator.token_tracker is services.token_tracker
    assert services.cache.cache_dir == os.path.join(str(tmp_path), "cache")
    await services.aclose()
