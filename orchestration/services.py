# orchestration/services.py
"""Shared collaborators injected into the phase orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import structlog

from config import settings
from core.availability import AvailabilityMonitor
from core.llm_interface import GeneratorClient
from core.retrying_client import RetryingGeneratorClient
from core.usage import TokenUsage, TokenUsageTracker
from storage.file_manager import CACHE_DIR_NAME
from storage.summary_cache import ContentAddressedCache

if TYPE_CHECKING:  # pragma: no cover - type hint import
    from ui.rich_display import RichDisplayManager

logger = structlog.get_logger(__name__)


class Generator(Protocol):
    async def call(
        self, prompt: str, operation: str = ...
    ) -> tuple[str, TokenUsage | None]: ...


@dataclass
class PipelineServices:
    """Everything the orchestrator shares with the outside world."""

    generator: Generator
    cache: ContentAddressedCache
    token_tracker: TokenUsageTracker
    availability: AvailabilityMonitor | None = None
    display: RichDisplayManager | None = None
    client: GeneratorClient | None = None

    @classmethod
    def create(
        cls,
        project_dir: str,
        client: GeneratorClient | None = None,
        display: RichDisplayManager | None = None,
    ) -> PipelineServices:
        """Build the production services for ``project_dir`` from settings."""
        client = client or GeneratorClient()
        tracker = TokenUsageTracker(
            input_cost_per_million=settings.INPUT_COST_PER_MILLION,
            output_cost_per_million=settings.OUTPUT_COST_PER_MILLION,
        )
        availability = AvailabilityMonitor(client.ping)
        generator = RetryingGeneratorClient(
            client.generate,
            model_id=settings.GENERATOR_MODEL,
            availability=availability,
            token_tracker=tracker,
        )
        cache = ContentAddressedCache(os.path.join(project_dir, CACHE_DIR_NAME))
        return cls(
            generator=generator,
            cache=cache,
            token_tracker=tracker,
            availability=availability,
            display=display,
            client=client,
        )

    def start(self) -> None:
        if self.availability is not None:
            self.availability.start()
        if self.display is not None:
            self.display.start()

    async def aclose(self) -> None:
        if self.availability is not None:
            await self.availability.stop()
        if self.display is not None:
            await self.display.stop()
        if self.client is not None:
            await self.client.aclose()
        logger.debug("Pipeline services closed.")
