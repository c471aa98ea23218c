# orchestration/cli_runner.py
"""Command-line runner for the phase orchestrator."""

from __future__ import annotations

import asyncio
import os

import structlog

from config import settings
from core.errors import TomewrightError
from orchestration.phase_orchestrator import PhaseOrchestrator
from orchestration.services import PipelineServices
from storage.log_cleanup import cleanup_logs
from ui.rich_display import RichDisplayManager
from utils.logging import setup_logging
from utils.text_utils import sanitize_directory_name

logger = structlog.get_logger(__name__)


def resolve_project_dir(title: str | None, project_dir: str | None) -> str:
    if project_dir:
        return project_dir
    if not title:
        raise ValueError("Either a title or a project directory is required.")
    return os.path.join(settings.BASE_OUTPUT_DIR, sanitize_directory_name(title))


async def _run(
    project_dir: str,
    title: str | None,
    braindump: str | None,
    timeout: float | None,
    reuse: bool,
) -> None:
    display = RichDisplayManager() if settings.ENABLE_RICH_PROGRESS else None
    services = PipelineServices.create(project_dir, display=display)
    services.start()
    try:
        orchestrator = PhaseOrchestrator(
            project_dir,
            services,
            title=title,
            braindump=braindump,
            reuse_existing=reuse,
        )
        book = await orchestrator.run(timeout=timeout)
        logger.info(
            "Run finished.",
            title=book.title,
            chapters=len(book.chapters),
            project=project_dir,
            usage=services.token_tracker.format_usage(),
        )
    finally:
        await services.aclose()


def run(
    title: str | None,
    braindump: str | None = None,
    project_dir: str | None = None,
    timeout: float | None = None,
    reuse: bool = True,
) -> int:
    """Run a generation and return the process exit code."""
    setup_logging()
    project_dir = resolve_project_dir(title, project_dir)
    if timeout is None:
        timeout = settings.RUN_TIMEOUT_SECONDS
    try:
        asyncio.run(_run(project_dir, title, braindump, timeout, reuse))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully due to KeyboardInterrupt...")
        return 130
    except TomewrightError as e:
        logger.critical(
            "Generation aborted: %s. Completed artifacts are kept for a future resume.",
            e,
            project=project_dir,
        )
        return 1
    return 0


def run_cleanup(project_dir: str, retention_days: int) -> int:
    setup_logging()
    removed = cleanup_logs(project_dir, retention_days=retention_days)
    logger.info("Log cleanup complete.", project=project_dir, removed=removed)
    return 0

