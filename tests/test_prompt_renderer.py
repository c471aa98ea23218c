import pytest
from jinja2 import DictLoader, Environment, StrictUndefined, UndefinedError

import prompt_renderer


def test_render_prompt_with_custom_env(monkeypatch):
    env = Environment(loader=DictLoader({"greet.j2": "Hello {{ name }}"}), autoescape=False)
    monkeypatch.setattr(prompt_renderer, "_env", env)
    assert prompt_renderer.render_prompt("greet", {"name": "Bob"}) == "Hello Bob"
    assert prompt_renderer.render_prompt("greet.j2", {"name": "Ann"}) == "Hello Ann"


def test_or_none_filter_fills_blanks(monkeypatch):
    env = Environment(
        loader=DictLoader({"t.j2": "[{{ a | or_none }}] [{{ b | or_none }}]"}),
        undefined=StrictUndefined,
    )
    env.filters["or_none"] = prompt_renderer._default_text
    monkeypatch.setattr(prompt_renderer, "_env", env)
    assert prompt_renderer.render_prompt("t", {"a": "  ", "b": "text"}) == "[(none)] [text]"


def test_missing_variables_fail_loudly():
    with pytest.raises(UndefinedError):
        prompt_renderer.render_prompt("genre", {"title": "T"})


def test_bundled_templates_render():
    base = {
        "title": "The Salt Road",
        "braindump": "Sailors.",
        "genre": "Adventure: sea",
        "style": "Terse",
        "characters": "Ada: captain",
        "synopsis": "A voyage.",
    }
    assert "The Salt Road" in prompt_renderer.render_prompt("braindump", base)
    outline = prompt_renderer.render_prompt("outline", {**base, "max_chapters": 12})
    assert "no more than 12 chapters" in outline
    chapter = prompt_renderer.render_prompt(
        "chapter",
        {
            **base,
            "book_outline": "Chapter 1: Go",
            "temporary_summary": "",
            "chapter_number": 3,
            "planned_chapter": "Chapter 3: Arrive",
        },
    )
    assert "Chapter 3: [Title]" in chapter
    assert "Temporary Summary: (none)" in chapter
    summary = prompt_renderer.render_prompt("temporary_summary_content", {"context": "CTX"})
    assert "CTX" in summary
    assert "Here is where we continue the story..." in summary
