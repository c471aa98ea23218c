import os
from unittest.mock import AsyncMock

import pytest

import main
from config import settings
from core.errors import GenerationError
from orchestration import cli_runner


@pytest.fixture
def fake_run(monkeypatch):
    runner = AsyncMock()
    monkeypatch.setattr(cli_runner, "_run", runner)
    monkeypatch.setattr(cli_runner, "setup_logging", lambda: None)
    return runner


def test_main_runs_title_in_output_dir(fake_run):
    assert main.main(["--title", "The Salt Road"]) == 0
    fake_run.assert_awaited_once_with(
        os.path.join(settings.BASE_OUTPUT_DIR, "the-salt-road"),
        "The Salt Road",
        None,
        settings.RUN_TIMEOUT_SECONDS,
        True,
    )


def test_main_passes_options(fake_run, tmp_path):
    code = main.main(
        [
            "--project-dir",
            str(tmp_path),
            "--braindump",
            "Lighthouse",
            "--timeout",
            "5",
            "--no-reuse",
        ]
    )
    assert code == 0
    fake_run.assert_awaited_once_with(str(tmp_path), None, "Lighthouse", 5.0, False)


def test_main_returns_failure_on_pipeline_error(fake_run):
    fake_run.side_effect = GenerationError("no chapters produced")
    assert main.main(["--title", "T"]) == 1


def test_main_requires_title_or_project_dir(fake_run):
    with pytest.raises(SystemExit) as excinfo:
        main.main([])
    assert excinfo.value.code == 2
    fake_run.assert_not_awaited()


def test_cleanup_logs_flag(monkeypatch, fake_run, tmp_path):
    calls = []

    def fake_cleanup(project_dir, retention_days):
        calls.append((project_dir, retention_days))
        return 3

    monkeypatch.setattr(cli_runner, "cleanup_logs", fake_cleanup)

    assert main.main(["--project-dir", str(tmp_path), "--cleanup-logs"]) == 0
    assert main.main(["--project-dir", str(tmp_path), "--cleanup-logs", "2"]) == 0
    assert calls == [
        (str(tmp_path), settings.LOG_RETENTION_DAYS),
        (str(tmp_path), 2),
    ]
    fake_run.assert_not_awaited()


def test_resolve_project_dir_prefers_explicit_dir():
    assert cli_runner.resolve_project_dir("Ignored", "/tmp/book") == "/tmp/book"
    with pytest.raises(ValueError):
        cli_runner.resolve_project_dir(None, None)
